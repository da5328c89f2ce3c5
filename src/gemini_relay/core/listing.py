"""Passthrough of the upstream model-listing call."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from gemini_relay.core.classifier import DEFAULT_ERROR_STATUS, upstream_error_message
from gemini_relay.core.payloads import models_url
from gemini_relay.core.transport import Transport, redact_secret

LOGGER = logging.getLogger("gemini_relay.listing")

LIST_FAILED = "Failed to fetch models"


@dataclass(frozen=True)
class ListingResult:
    status: int
    body: Any


async def list_models(transport: Transport, api_base: str, timeout: float, secret: str | None = None) -> ListingResult:
    """
    Fetch the upstream model list.

    Returns the upstream body unchanged on success; otherwise the upstream
    status (500 on network failure) with ``{"error": {"message": ...}}``.
    """
    result = await transport.get(models_url(api_base.rstrip("/")), timeout)
    if result.ok and result.body is not None:
        return ListingResult(status=200, body=result.body)

    status = result.status_code if result.status_code and result.status_code >= 400 else DEFAULT_ERROR_STATUS
    message = upstream_error_message(result.body) or LIST_FAILED
    message = redact_secret(message, secret)
    LOGGER.error("Models API error (%s): %s", status, result.error or message)
    return ListingResult(status=status, body={"error": {"message": message}})
