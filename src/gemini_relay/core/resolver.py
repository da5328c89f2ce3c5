"""Ordered candidate endpoints for a generate request."""
from __future__ import annotations

from collections.abc import Iterable

from gemini_relay.common.schema import CallShape, CandidateEndpoint
from gemini_relay.common.settings import Settings

_MODEL_PREFIX = "models/"
_UNSAFE_MODEL_CHARS = frozenset("/:?#%\\")


class ResolverConfigError(RuntimeError):
    """No candidate endpoint can be produced; fixing it needs a config change."""


class InvalidModelError(ValueError):
    """A model identifier that cannot be placed safely in the upstream URL path."""


def normalize_model_id(model: str | None) -> str:
    if not model:
        return ""
    normalized = model.strip()
    if normalized.startswith(_MODEL_PREFIX):
        normalized = normalized[len(_MODEL_PREFIX):].strip()
    if any(ch in _UNSAFE_MODEL_CHARS or ch.isspace() for ch in normalized):
        raise InvalidModelError(f"Invalid model name: {normalized!r}")
    return normalized


def _dedupe_preserving_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        output.append(value)
    return output


class EndpointResolver:
    """
    Turns an optional caller hint plus the configured fallback list into the
    sequence of endpoints to try, most preferred first.

    Holds only immutable configuration, so one instance is shared by all
    requests.
    """

    def __init__(
        self,
        fallback_models: Iterable[str],
        honor_model_hint: bool = True,
        default_shape: CallShape = CallShape.CONTENT,
        message_shape_models: Iterable[str] = (),
    ) -> None:
        try:
            self._fallbacks = tuple(_dedupe_preserving_order(normalize_model_id(m) for m in fallback_models))
            self._message_models = frozenset(normalize_model_id(m) for m in message_shape_models)
        except InvalidModelError as e:
            raise ResolverConfigError(f"Bad model list configuration: {e}") from e
        self._honor_hint = honor_model_hint
        self._default_shape = default_shape

    @classmethod
    def from_settings(cls, settings: Settings) -> "EndpointResolver":
        return cls(
            fallback_models=settings.fallback_models_list,
            honor_model_hint=settings.honor_model_hint,
            default_shape=settings.default_call_shape,
            message_shape_models=settings.message_shape_models_list,
        )

    @property
    def fallback_models(self) -> tuple[str, ...]:
        return self._fallbacks

    def shape_for(self, model_id: str) -> CallShape:
        if model_id in self._message_models:
            return CallShape.MESSAGE
        return self._default_shape

    def candidates(self, model_hint: str | None = None) -> list[CandidateEndpoint]:
        hint = normalize_model_id(model_hint) if self._honor_hint else ""
        model_ids = _dedupe_preserving_order([hint, *self._fallbacks])
        if not model_ids:
            raise ResolverConfigError(
                "No upstream models configured: set FALLBACK_MODELS or send a model hint"
            )
        return [CandidateEndpoint(model_id=m, call_shape=self.shape_for(m)) for m in model_ids]
