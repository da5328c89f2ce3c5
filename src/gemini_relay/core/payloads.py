"""Upstream URLs and request bodies for each call shape."""
from __future__ import annotations

from typing import Any

from gemini_relay.common.schema import CallShape, GenerationRequest

_METHODS = {
    CallShape.CONTENT: "generateContent",
    CallShape.MESSAGE: "generateMessage",
}


def generate_url(api_base: str, model_id: str, shape: CallShape) -> str:
    return f"{api_base}/models/{model_id}:{_METHODS[shape]}"


def models_url(api_base: str) -> str:
    return f"{api_base}/models"


def build_body(
    shape: CallShape,
    request: GenerationRequest,
    top_p: float | None = None,
    top_k: int | None = None,
    safety_settings: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    Build the JSON body for one generate attempt.

    The content shape nests sampling under ``generationConfig`` and carries the
    safety overrides; the legacy message shape keeps sampling at top level and
    has no safety settings field.
    """
    if shape is CallShape.CONTENT:
        generation_config: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_output_tokens,
        }
        if top_p is not None:
            generation_config["topP"] = top_p
        if top_k is not None:
            generation_config["topK"] = top_k
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.prompt_text}]}],
            "generationConfig": generation_config,
        }
        if safety_settings:
            body["safetySettings"] = [dict(item) for item in safety_settings]
        return body

    body = {
        "prompt": {"messages": [{"author": "user", "content": request.prompt_text}]},
        "temperature": request.temperature,
        "maxOutputTokens": request.max_output_tokens,
        "candidateCount": 1,
    }
    if top_p is not None:
        body["topP"] = top_p
    if top_k is not None:
        body["topK"] = top_k
    return body


def sampling_of(body: dict[str, Any]) -> dict[str, Any]:
    """Return the sampling parameters carried by a body of either shape."""
    source = body.get("generationConfig", body)
    return {key: source[key] for key in ("temperature", "maxOutputTokens") if key in source}
