"""httpx-backed transport to the upstream generative-language API."""
from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from gemini_relay.common.schema import TransportResult

LOGGER = logging.getLogger("gemini_relay.transport")

API_KEY_HEADER = "x-goog-api-key"
REDACTED = "***"


def redact_secret(text: str, secret: str | None) -> str:
    if secret and text:
        return text.replace(secret, REDACTED)
    return text


class Transport(Protocol):
    async def call(self, url: str, body: dict[str, Any], timeout: float) -> TransportResult:
        ...

    async def get(self, url: str, timeout: float) -> TransportResult:
        ...


class HttpTransport:
    """
    Sends requests with a shared ``httpx.AsyncClient``.

    The API key goes in a header so it never shows up in URLs, access logs or
    exception texts. Network failures are returned, not raised.
    """

    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None) -> None:
        self._api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()

    async def call(self, url: str, body: dict[str, Any], timeout: float) -> TransportResult:
        return await self._send("POST", url, timeout, body)

    async def get(self, url: str, timeout: float) -> TransportResult:
        return await self._send("GET", url, timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _send(self, method: str, url: str, timeout: float, body: dict[str, Any] | None = None) -> TransportResult:
        headers = {API_KEY_HEADER: self._api_key, "Content-Type": "application/json"}
        try:
            response = await self.client.request(method, url, headers=headers, json=body, timeout=timeout)
        except httpx.TimeoutException as e:
            message = f"Upstream request timed out after {timeout:g}s"
            LOGGER.error("%s %s timed out: %s", method, url, redact_secret(repr(e), self._api_key))
            return TransportResult(status_code=None, error=message)
        except httpx.RequestError as e:
            message = redact_secret(str(e).strip() or e.__class__.__name__, self._api_key)
            LOGGER.error("%s %s failed: %s", method, url, message)
            return TransportResult(status_code=None, error=message)

        try:
            payload: Any = response.json()
        except ValueError:
            payload = None
        error = None
        if payload is None and response.content:
            error = redact_secret(response.text[:500], self._api_key)
        return TransportResult(status_code=response.status_code, body=payload, error=error)
