from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

import gemini_relay.serve.fastapi_app as app_mod
from gemini_relay.common.messages import refusal_message
from gemini_relay.common.schema import GenerationRequest, GenerationResult, TransportResult
from gemini_relay.common.settings import get_settings
from gemini_relay.core.orchestrator import GenerationOrchestrator
from gemini_relay.core.resolver import EndpointResolver
from transport_test_utils import FakeTransport, content_ok, upstream_error


@pytest.fixture(autouse=True)
def _env(monkeypatch: Any) -> Iterator[None]:
    monkeypatch.setenv("GEMINI_API_KEY", "sk-test-key")
    monkeypatch.setenv("GEMINI_BASE_URL", "http://upstream/v1beta/")
    monkeypatch.setenv("FALLBACK_MODELS", "m1,m2")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@contextmanager
def _client(transport: FakeTransport) -> Iterator[TestClient]:
    with TestClient(app_mod.app) as client:
        app_mod.install(app_mod.app, app_mod.app.state.settings, transport)
        yield client


def test_health_ok() -> None:
    with _client(FakeTransport()) as client:
        r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data.get("models") == ["m1", "m2"]


def test_index_lists_endpoints() -> None:
    with _client(FakeTransport()) as client:
        r = client.get("/")
    assert r.status_code == 200
    assert "/api/generate" in r.text


def test_generate_success() -> None:
    transport = FakeTransport(content_ok(" Hello test \n"))
    with _client(transport) as client:
        r = client.post("/api/generate", json={"promptText": "test", "temperature": 0.9, "maxOutputTokens": 64})
    assert r.status_code == 200
    assert r.json() == {"outputText": "Hello test"}
    url, body, timeout = transport.calls[0]
    assert url == "http://upstream/v1beta/models/m1:generateContent"
    assert body["generationConfig"]["temperature"] == 0.9
    assert body["generationConfig"]["maxOutputTokens"] == 64
    assert timeout == 30.0


def test_generate_accepts_prompt_alias_and_model_hint() -> None:
    transport = FakeTransport(content_ok("ok"))
    with _client(transport) as client:
        r = client.post("/generate", json={"prompt": "hi", "model": "models/gemini-1.5-pro"})
    assert r.status_code == 200
    assert transport.urls == ["http://upstream/v1beta/models/gemini-1.5-pro:generateContent"]


def test_generate_applies_configured_defaults(monkeypatch: Any) -> None:
    monkeypatch.setenv("DEFAULT_TEMPERATURE", "0.25")
    monkeypatch.setenv("DEFAULT_MAX_OUTPUT_TOKENS", "99")
    get_settings.cache_clear()
    transport = FakeTransport(content_ok("ok"))
    with _client(transport) as client:
        client.post("/api/generate", json={"promptText": "hi"})
    config = transport.calls[0][1]["generationConfig"]
    assert config["temperature"] == 0.25
    assert config["maxOutputTokens"] == 99
    assert config["topP"] == 0.8
    assert config["topK"] == 40


def test_generate_blank_prompt_is_400_without_upstream_call() -> None:
    transport = FakeTransport()
    with _client(transport) as client:
        r = client.post("/api/generate", json={"promptText": "   "})
    assert r.status_code == 400
    assert r.json() == {"errorMessage": "Prompt is required", "error": {"message": "Prompt is required"}}
    assert transport.calls == []


@pytest.mark.parametrize(
    "payload",
    [
        {"promptText": "hi", "temperature": 2.5},
        {"promptText": "hi", "maxOutputTokens": 0},
        {"promptText": ["not", "a", "string"]},
    ],
)
def test_generate_invalid_input_is_400(payload: dict[str, Any]) -> None:
    transport = FakeTransport()
    with _client(transport) as client:
        r = client.post("/api/generate", json=payload)
    assert r.status_code == 400
    assert r.json()["errorMessage"].startswith("Invalid request")
    assert transport.calls == []


def test_generate_not_found_everywhere() -> None:
    transport = FakeTransport(upstream_error(404), upstream_error(404))
    with _client(transport) as client:
        r = client.post("/api/generate", json={"promptText": "hi"})
    assert r.status_code == 404
    assert '"m2"' in r.json()["errorMessage"]


def test_generate_auth_error() -> None:
    transport = FakeTransport(upstream_error(403, "quota"))
    with _client(transport) as client:
        r = client.post("/api/generate", json={"promptText": "hi"})
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "API key invalid or quota exceeded."
    assert len(transport.calls) == 1


def test_generate_filtered_is_200() -> None:
    transport = FakeTransport(TransportResult(status_code=200, body={"candidates": [{"finishReason": "SAFETY"}]}))
    with _client(transport) as client:
        r = client.post("/api/generate", json={"promptText": "hi"})
    assert r.status_code == 200
    assert r.json() == {"outputText": refusal_message("SAFETY")}


def test_models_passthrough() -> None:
    listing = TransportResult(status_code=200, body={"models": [{"name": "models/gemini-pro"}]})
    transport = FakeTransport(listing=listing)
    with _client(transport) as client:
        r = client.get("/api/models")
    assert r.status_code == 200
    assert r.json() == {"models": [{"name": "models/gemini-pro"}]}
    assert transport.gets == [("http://upstream/v1beta/models", 20.0)]


def test_models_error_keeps_upstream_status() -> None:
    transport = FakeTransport(listing=upstream_error(403, "API key expired"))
    with _client(transport) as client:
        r = client.get("/models")
    assert r.status_code == 403
    assert r.json() == {"error": {"message": "API key expired"}}


def test_models_network_failure_is_500() -> None:
    transport = FakeTransport(listing=TransportResult(status_code=None, error="connection refused"))
    with _client(transport) as client:
        r = client.get("/api/models")
    assert r.status_code == 500
    assert r.json() == {"error": {"message": "Failed to fetch models"}}


def test_startup_fails_without_api_key(monkeypatch: Any) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    get_settings.cache_clear()
    with pytest.raises(ValidationError):
        with TestClient(app_mod.app):
            pass


class _DisconnectingRequest:
    """Reports the client as gone from the given poll onwards."""

    def __init__(self, disconnect_on_poll: int) -> None:
        self.polls = 0
        self._disconnect_on_poll = disconnect_on_poll

    async def is_disconnected(self) -> bool:
        self.polls += 1
        return self.polls >= self._disconnect_on_poll


class _HangingTransport:
    def __init__(self) -> None:
        self.calls = 0
        self.cancelled = False

    async def call(self, url: str, body: dict[str, Any], timeout: float) -> TransportResult:
        self.calls += 1
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("unreachable")

    async def get(self, url: str, timeout: float) -> TransportResult:
        raise AssertionError("unexpected listing call")


def test_client_disconnect_cancels_in_flight_generation(monkeypatch: Any) -> None:
    monkeypatch.setattr(app_mod, "DISCONNECT_POLL_SECONDS", 0.01)
    transport = _HangingTransport()
    orchestrator = GenerationOrchestrator(
        resolver=EndpointResolver(["m1", "m2"]), transport=transport, api_base="http://upstream/v1beta"
    )
    request = _DisconnectingRequest(disconnect_on_poll=2)
    gen_request = GenerationRequest(prompt_text="hi", temperature=0.4, max_output_tokens=10)

    async def scenario() -> GenerationResult | None:
        return await app_mod._run_until_disconnect(request, orchestrator.generate(gen_request))  # type: ignore[arg-type]

    result = asyncio.run(scenario())

    assert result is None
    assert transport.cancelled is True
    assert transport.calls == 1
    assert request.polls == 2


def test_connected_client_gets_the_result(monkeypatch: Any) -> None:
    monkeypatch.setattr(app_mod, "DISCONNECT_POLL_SECONDS", 0.01)
    request = _DisconnectingRequest(disconnect_on_poll=1000)

    async def slow_work() -> GenerationResult:
        await asyncio.sleep(0.05)
        return GenerationResult.text("done")

    async def scenario() -> GenerationResult | None:
        return await app_mod._run_until_disconnect(request, slow_work())  # type: ignore[arg-type]

    result = asyncio.run(scenario())

    assert result is not None
    assert result.output_text == "done"
    assert request.polls >= 1


def test_generate_rejects_unsafe_model_hint() -> None:
    transport = FakeTransport()
    with _client(transport) as client:
        r = client.post("/api/generate", json={"promptText": "hi", "model": "x:generateMessage?alt="})
    assert r.status_code == 400
    assert "Invalid model name" in r.json()["errorMessage"]
    assert transport.calls == []
