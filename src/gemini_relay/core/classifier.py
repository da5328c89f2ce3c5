"""Turn a raw upstream transport result into an UpstreamOutcome."""
from __future__ import annotations

from typing import Any

from gemini_relay.common.messages import NO_CANDIDATES_REASON
from gemini_relay.common.schema import (
    AuthError,
    CallShape,
    Filtered,
    NotFound,
    ShapeMismatch,
    Success,
    TransientError,
    TransportResult,
    UpstreamOutcome,
)

DEFAULT_ERROR_STATUS = 500
MALFORMED_STATUS = 502
MALFORMED_MESSAGE = "Malformed upstream response"

_AUTH_STATUSES = {401, 403}
_SHAPE_STATUSES = {405, 501}
_AUTH_REASONS = {"API_KEY_INVALID", "API_KEY_EXPIRED"}
_SHAPE_MARKERS = ("invalid json payload", "unknown name", "cannot find field")


def upstream_error_message(body: Any) -> str | None:
    """Extract ``error.message`` from an upstream error body, if any."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
    return None


def _error_reasons(body: Any) -> set[str]:
    reasons: set[str] = set()
    if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
        return reasons
    for detail in body["error"].get("details") or []:
        if isinstance(detail, dict) and isinstance(detail.get("reason"), str):
            reasons.add(detail["reason"])
    return reasons


def _is_shape_rejection(status: int, body: Any, message: str) -> bool:
    if status in _SHAPE_STATUSES:
        return True
    if status != 400:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in _SHAPE_MARKERS)


def _classify_error(result: TransportResult) -> UpstreamOutcome:
    status = result.status_code
    body = result.body
    message = upstream_error_message(body) or result.error or f"Upstream request failed with status {status}"

    if status is None:
        return TransientError(status=DEFAULT_ERROR_STATUS, message=result.error or "Upstream request failed")
    if status == 404:
        return NotFound(message=message)
    if status in _AUTH_STATUSES or (status == 400 and _error_reasons(body) & _AUTH_REASONS):
        return AuthError(message=message)
    if _is_shape_rejection(status, body, message):
        return ShapeMismatch(status=status, message=message)
    return TransientError(status=status, message=message)


def _content_text(candidate: dict[str, Any]) -> str:
    content = candidate.get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts") or []
    texts = [part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
    return "".join(texts)


def _message_text(candidate: dict[str, Any]) -> str:
    content = candidate.get("content")
    return content if isinstance(content, str) else ""


def _block_reason(body: dict[str, Any], shape: CallShape) -> str | None:
    if shape is CallShape.CONTENT:
        feedback = body.get("promptFeedback")
        if isinstance(feedback, dict) and isinstance(feedback.get("blockReason"), str):
            return feedback["blockReason"]
        return None
    filters = body.get("filters")
    if isinstance(filters, list) and filters and isinstance(filters[0], dict) and isinstance(filters[0].get("reason"), str):
        return filters[0]["reason"]
    return None


def classify(result: TransportResult, shape: CallShape = CallShape.CONTENT) -> UpstreamOutcome:
    """
    Classify one upstream generate call.

    Args:
        result: What the transport returned.
        shape: Call shape the request was sent with; decides where text lives.

    Returns:
        The outcome the orchestrator acts on.
    """
    if not result.ok:
        return _classify_error(result)

    body = result.body
    if not isinstance(body, dict):
        return TransientError(status=MALFORMED_STATUS, message=MALFORMED_MESSAGE)

    candidates = body.get("candidates")
    if not candidates:
        return Filtered(reason=_block_reason(body, shape) or NO_CANDIDATES_REASON)
    if not isinstance(candidates, list):
        return TransientError(status=MALFORMED_STATUS, message=MALFORMED_MESSAGE)

    candidate = candidates[0]
    if not isinstance(candidate, dict):
        return TransientError(status=MALFORMED_STATUS, message=MALFORMED_MESSAGE)

    text = _content_text(candidate) if shape is CallShape.CONTENT else _message_text(candidate)
    text = text.strip()
    if text:
        return Success(text=text)

    finish_reason = candidate.get("finishReason")
    if isinstance(finish_reason, str) and finish_reason:
        return Filtered(reason=finish_reason)
    return TransientError(status=MALFORMED_STATUS, message=MALFORMED_MESSAGE)
