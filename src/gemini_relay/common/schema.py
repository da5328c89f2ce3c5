"""Dataclasses for requests, candidates, upstream outcomes and results."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class CallShape(str, Enum):
    """Upstream request body layout."""
    CONTENT = "content"
    MESSAGE = "message"

    @property
    def other(self) -> "CallShape":
        return CallShape.MESSAGE if self is CallShape.CONTENT else CallShape.CONTENT


@dataclass(frozen=True)
class GenerationRequest:
    """A single "generate text" call as received from the client."""
    prompt_text: str
    temperature: float
    max_output_tokens: int
    model_hint: str | None = None


@dataclass(frozen=True)
class CandidateEndpoint:
    model_id: str
    call_shape: CallShape


@dataclass(frozen=True)
class TransportResult:
    """
    Raw outcome of one upstream HTTP call.

    ``status_code`` is None when the call never produced a response
    (timeout, connection reset, DNS failure).
    """
    status_code: int | None
    body: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


@dataclass(frozen=True)
class Success:
    text: str


@dataclass(frozen=True)
class Filtered:
    reason: str


@dataclass(frozen=True)
class NotFound:
    message: str = ""


@dataclass(frozen=True)
class AuthError:
    message: str = ""


@dataclass(frozen=True)
class TransientError:
    status: int
    message: str


@dataclass(frozen=True)
class ShapeMismatch:
    status: int
    message: str


UpstreamOutcome = Union[Success, Filtered, NotFound, AuthError, TransientError, ShapeMismatch]


class ResultKind(str, Enum):
    OK = "ok"
    FILTERED = "filtered"
    CLIENT_INPUT = "client_input"
    NOT_FOUND = "not_found"
    AUTH = "auth"
    UPSTREAM = "upstream"
    CONFIG = "config"


@dataclass(frozen=True)
class GenerationResult:
    """
    Normalized value handed back to the caller.

    Exactly one of ``output_text`` or ``error_message`` is set.
    """
    kind: ResultKind
    output_text: str | None = None
    error_message: str | None = None
    http_status: int = 200
    model_id: str | None = None

    def __post_init__(self) -> None:
        if (self.output_text is None) == (self.error_message is None):
            raise ValueError("GenerationResult needs exactly one of output_text or error_message")

    @classmethod
    def text(cls, output_text: str, kind: ResultKind = ResultKind.OK, model_id: str | None = None) -> "GenerationResult":
        return cls(kind=kind, output_text=output_text, model_id=model_id)

    @classmethod
    def error(cls, kind: ResultKind, message: str, status: int, model_id: str | None = None) -> "GenerationResult":
        return cls(kind=kind, error_message=message, http_status=status, model_id=model_id)

    @property
    def is_error(self) -> bool:
        return self.error_message is not None
