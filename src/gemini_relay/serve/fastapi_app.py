"""FastAPI proxy for the Gemini generative-language API.

Endpoints:
- GET  /                status page
- GET  /health
- GET  /api/models      upstream model list passthrough
- POST /api/generate    { "promptText": "...", "model"?, "temperature"?, "maxOutputTokens"? }
"""
from __future__ import annotations
import asyncio
import contextlib
import logging
from typing import Any, Awaitable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from gemini_relay.common.logging_setup import setup_logging
from gemini_relay.common.schema import GenerationRequest, GenerationResult
from gemini_relay.common.settings import Settings, get_server_settings, get_settings
from gemini_relay.core.listing import list_models
from gemini_relay.core.orchestrator import GenerationOrchestrator
from gemini_relay.core.transport import HttpTransport, Transport

LOGGER = logging.getLogger("gemini_relay.app")
SERVER_SETTINGS = get_server_settings()
setup_logging(SERVER_SETTINGS.log_level)

DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499


class GenerateIn(BaseModel):
    model: str | None = None
    prompt_text: str = Field(default="", validation_alias=AliasChoices("promptText", "prompt"))
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_output_tokens: int | None = Field(
        default=None, gt=0, validation_alias=AliasChoices("maxOutputTokens", "max_output_tokens")
    )


class GenerateOut(BaseModel):
    outputText: str


app = FastAPI(title="Gemini Relay")
app.add_middleware(
    CORSMiddleware,
    allow_origins=SERVER_SETTINGS.cors_allow_origins_list,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def _error_response(message: str, status: int) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"errorMessage": message, "error": {"message": message}},
    )


def install(app_obj: FastAPI, settings: Settings, transport: Transport) -> None:
    """Wire settings, transport and orchestrator into the app state."""
    app_obj.state.settings = settings
    app_obj.state.transport = transport
    app_obj.state.orchestrator = GenerationOrchestrator.from_settings(settings, transport)


@app.on_event("startup")
async def _startup() -> None:
    try:
        settings = get_settings()
    except ValidationError as e:
        LOGGER.error("GEMINI_API_KEY is missing or configuration is invalid: %s", e)
        raise
    setup_logging(settings.log_level)
    transport = HttpTransport(api_key=settings.gemini_api_key.get_secret_value())
    app.state.http_transport = transport
    install(app, settings, transport)
    if not settings.fallback_models_list:
        LOGGER.warning("FALLBACK_MODELS is empty; requests without a model hint will fail")
    LOGGER.info("Fallback models: %s", ", ".join(settings.fallback_models_list) or "(none)")


@app.on_event("shutdown")
async def _shutdown() -> None:
    transport: HttpTransport | None = getattr(app.state, "http_transport", None)
    if transport is not None:
        await transport.close()
        app.state.http_transport = None


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body') or 'body'}: {err.get('msg', 'invalid')}"
        for err in errors
    )
    return _error_response(f"Invalid request: {detail}", 400)


async def _run_until_disconnect(request: Request, work: Awaitable[GenerationResult]) -> GenerationResult | None:
    """
    Await ``work`` while polling for client disconnect.

    Returns None if the client went away; the in-flight upstream call is
    cancelled in that case.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                LOGGER.info("Client disconnected; cancelling generation")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                return None
    finally:
        if not task.done():
            task.cancel()


@app.get("/", response_class=HTMLResponse)
def index() -> str:
    return """
    <h2>Gemini Relay</h2>
    <p>Status: Running</p>
    <p>Endpoints:</p>
    <ul>
      <li>GET /api/models</li>
      <li>POST /api/generate</li>
    </ul>
    <p><a href="/api/models" target="_blank">Test /api/models</a></p>
    """


@app.get("/health")
def health(request: Request) -> dict[str, Any]:
    settings: Settings = request.app.state.settings
    return {"status": "ok", "models": settings.fallback_models_list}


@app.get("/api/models")
@app.get("/models", include_in_schema=False)
async def models(request: Request) -> Response:
    settings: Settings = request.app.state.settings
    result = await list_models(
        request.app.state.transport,
        settings.api_base,
        settings.list_timeout_seconds,
        secret=settings.gemini_api_key.get_secret_value(),
    )
    return JSONResponse(status_code=result.status, content=result.body)


@app.post("/api/generate", response_model=GenerateOut)
@app.post("/generate", response_model=GenerateOut, include_in_schema=False)
async def generate(body: GenerateIn, request: Request) -> Response:
    settings: Settings = request.app.state.settings
    orchestrator: GenerationOrchestrator = request.app.state.orchestrator
    gen_request = GenerationRequest(
        prompt_text=body.prompt_text,
        temperature=body.temperature if body.temperature is not None else settings.default_temperature,
        max_output_tokens=body.max_output_tokens or settings.default_max_output_tokens,
        model_hint=body.model,
    )

    result = await _run_until_disconnect(request, orchestrator.generate(gen_request))
    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    if result.is_error:
        return _error_response(result.error_message or "", result.http_status)
    return JSONResponse(content=GenerateOut(outputText=result.output_text or "").model_dump())
