"""Candidate loop: resolve, attempt, classify, decide."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from gemini_relay.common.messages import DEFAULT_LOCALE, refusal_message
from gemini_relay.common.schema import (
    AuthError,
    CallShape,
    CandidateEndpoint,
    Filtered,
    GenerationRequest,
    GenerationResult,
    NotFound,
    ResultKind,
    ShapeMismatch,
    Success,
    TransientError,
    UpstreamOutcome,
)
from gemini_relay.common.settings import Settings, TransientPolicy
from gemini_relay.core.classifier import classify
from gemini_relay.core.payloads import build_body, generate_url
from gemini_relay.core.resolver import EndpointResolver, InvalidModelError, ResolverConfigError
from gemini_relay.core.transport import Transport, redact_secret

LOGGER = logging.getLogger("gemini_relay.orchestrator")

PROMPT_REQUIRED = "Prompt is required"
AUTH_FAILED = "API key invalid or quota exceeded."
MISCONFIGURED = "Proxy misconfigured: no upstream models available to try."


class GenerationOrchestrator:
    """
    Runs one generate request against the resolver's candidates, one at a time.

    Attempts are sequential so that an auth or quota failure on the first
    candidate stops the request without spending further upstream calls. The
    only suspension point is the transport call; cancelling the surrounding
    task abandons the remaining candidates.
    """

    def __init__(
        self,
        resolver: EndpointResolver,
        transport: Transport,
        api_base: str,
        timeout_seconds: float = 30.0,
        transient_policy: TransientPolicy = TransientPolicy.CHAIN,
        shape_fallback: bool = True,
        top_p: float | None = None,
        top_k: int | None = None,
        safety_settings: list[dict[str, Any]] | None = None,
        locale: str = DEFAULT_LOCALE,
        secret: str | None = None,
    ) -> None:
        self._resolver = resolver
        self._transport = transport
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout_seconds
        self._transient_policy = transient_policy
        self._shape_fallback = shape_fallback
        self._top_p = top_p
        self._top_k = top_k
        self._safety_settings = list(safety_settings or [])
        self._locale = locale
        self._secret = secret

    @classmethod
    def from_settings(cls, settings: Settings, transport: Transport) -> "GenerationOrchestrator":
        return cls(
            resolver=EndpointResolver.from_settings(settings),
            transport=transport,
            api_base=settings.api_base,
            timeout_seconds=settings.generate_timeout_seconds,
            transient_policy=settings.transient_policy,
            shape_fallback=settings.shape_fallback_enabled,
            top_p=settings.top_p,
            top_k=settings.top_k,
            safety_settings=settings.safety_settings,
            locale=settings.refusal_locale,
            secret=settings.gemini_api_key.get_secret_value(),
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if not request.prompt_text.strip():
            return GenerationResult.error(ResultKind.CLIENT_INPUT, PROMPT_REQUIRED, 400)

        try:
            candidates = self._resolver.candidates(request.model_hint)
        except InvalidModelError as e:
            return GenerationResult.error(ResultKind.CLIENT_INPUT, str(e), 400)
        except ResolverConfigError as e:
            LOGGER.error("Cannot resolve candidates: %s", e)
            return GenerationResult.error(ResultKind.CONFIG, MISCONFIGURED, 500)

        failed_before = 0
        last_transient: TransientError | None = None
        last_model = candidates[0].model_id
        for candidate in candidates:
            last_model = candidate.model_id
            try:
                outcome = await self._attempt(candidate, request)
            except asyncio.CancelledError:
                LOGGER.info("Generation cancelled during model %s; abandoning remaining candidates", last_model)
                raise

            if isinstance(outcome, Success):
                return GenerationResult.text(outcome.text, model_id=last_model)
            if isinstance(outcome, Filtered):
                LOGGER.warning("Model %s declined to answer: %s", last_model, outcome.reason)
                return GenerationResult.text(
                    refusal_message(outcome.reason, self._locale),
                    kind=ResultKind.FILTERED,
                    model_id=last_model,
                )
            if isinstance(outcome, AuthError):
                LOGGER.warning("Auth failure on model %s: %s", last_model, self._safe(outcome.message))
                return GenerationResult.error(ResultKind.AUTH, AUTH_FAILED, 403, model_id=last_model)
            if isinstance(outcome, NotFound):
                LOGGER.warning("Model %s not found, trying next candidate", last_model)
                last_transient = None
                failed_before += 1
                continue

            if not isinstance(outcome, TransientError):
                outcome = TransientError(status=outcome.status, message=outcome.message)
            LOGGER.warning(
                "Model %s failed with status %s: %s", last_model, outcome.status, self._safe(outcome.message)
            )
            if not self._continue_after_transient(failed_before):
                return self._transient_result(outcome, last_model)
            last_transient = outcome
            failed_before += 1

        if last_transient is not None:
            return self._transient_result(last_transient, last_model)
        return GenerationResult.error(
            ResultKind.NOT_FOUND,
            f'Model "{last_model}" not found or not accessible. '
            "Check your API key or the available models at GET /api/models.",
            404,
            model_id=last_model,
        )

    async def _attempt(self, candidate: CandidateEndpoint, request: GenerationRequest) -> UpstreamOutcome:
        outcome = await self._call(candidate.model_id, candidate.call_shape, request)
        if not isinstance(outcome, ShapeMismatch):
            return outcome
        if self._shape_fallback:
            alternate = candidate.call_shape.other
            LOGGER.info(
                "Model %s rejected %s shape, retrying once with %s shape",
                candidate.model_id,
                candidate.call_shape.value,
                alternate.value,
            )
            outcome = await self._call(candidate.model_id, alternate, request)
            if not isinstance(outcome, ShapeMismatch):
                return outcome
        return TransientError(status=outcome.status, message=outcome.message)

    async def _call(self, model_id: str, shape: CallShape, request: GenerationRequest) -> UpstreamOutcome:
        url = generate_url(self._api_base, model_id, shape)
        body = build_body(shape, request, self._top_p, self._top_k, self._safety_settings)
        LOGGER.info("Generating with model: %s (%s shape)", model_id, shape.value)
        result = await self._transport.call(url, body, self._timeout)
        return classify(result, shape)

    def _continue_after_transient(self, failed_before: int) -> bool:
        if self._transient_policy is TransientPolicy.CONTINUE:
            return True
        if self._transient_policy is TransientPolicy.STOP:
            return False
        return failed_before > 0

    def _transient_result(self, outcome: TransientError, model_id: str) -> GenerationResult:
        return GenerationResult.error(ResultKind.UPSTREAM, self._safe(outcome.message), outcome.status, model_id=model_id)

    def _safe(self, message: str) -> str:
        return redact_secret(message, self._secret)
