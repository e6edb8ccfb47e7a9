"""
omnia.proxy — The streaming relay service (FastAPI).

A thin HTTP layer in front of the turn orchestrator.  It:

1. Accepts a chat turn on ``POST /api/claude`` or ``POST /api/gemini``.
2. Starts the turn's orchestrator as a background task.
3. Streams the orchestrator's NDJSON events back as they are produced.

Every streaming response is ``200 application/x-ndjson`` and ends right after
the turn's terminal event; failures, including a malformed body, are reported
in-band as ``error`` events.  ``POST /api/summarize`` is a plain JSON
endpoint that refreshes the rolling conversation summary the browser sends
back with each turn.

Runs on ``http://127.0.0.1:8000`` by default.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from omnia import __version__
from omnia.adapters import BaseAdapter, create_adapter
from omnia.collaborators import Collaborators, build_collaborators
from omnia.core.errors import ConfigurationError, RelayError
from omnia.core.models import ChatRequest, ErrorEvent, Provider, RelayConfig, SummarizeRequest
from omnia.relay.emitter import NDJSONEmitter
from omnia.relay.orchestrator import RequestContext, TurnOrchestrator
from omnia.tools.definitions import RELAY_TOOLS, preparing_label

logger = logging.getLogger("omnia.proxy")

NDJSON_MEDIA_TYPE = "application/x-ndjson"
NDJSON_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
STREAMING_PATHS = frozenset({"/api/claude", "/api/gemini"})


# ---------------------------------------------------------------------------
# Application state (module-level singletons, initialised in lifespan)
# ---------------------------------------------------------------------------

_config: RelayConfig | None = None
_collaborators: Collaborators | None = None
_adapters: dict[Provider, BaseAdapter] = {}
_turn_tasks: set[asyncio.Task] = set()


def _load_config() -> RelayConfig:
    return RelayConfig.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build config, collaborators and provider adapters on startup; close them on shutdown."""
    global _config, _collaborators

    _config = _load_config()
    _collaborators = build_collaborators(_config)
    _adapters[Provider.ANTHROPIC] = create_adapter(
        "anthropic", api_key=_config.anthropic_api_key, base_url=_config.anthropic_base_url
    )
    _adapters[Provider.GOOGLE] = create_adapter(
        "google", api_key=_config.google_api_key, base_url=_config.gemini_base_url
    )

    logger.info(
        "Omnia relay started: claude=%s gemini=%s storage=%s",
        "configured" if _config.anthropic_api_key else "missing key",
        "configured" if _config.google_api_key else "missing key",
        _config.storage_bucket,
    )

    yield

    # Teardown
    for task in list(_turn_tasks):
        task.cancel()
    for adapter in _adapters.values():
        await adapter.close()
    _adapters.clear()
    if _collaborators:
        await _collaborators.close()
    logger.info("Omnia relay shut down.")


# ---------------------------------------------------------------------------
# FastAPI App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Omnia Relay",
    description="Streams Claude and Gemini turns as NDJSON and executes the tools they invoke.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError) -> Response:
    """Streaming routes answer a malformed body in-band; other routes keep FastAPI's 422."""
    if request.url.path not in STREAMING_PATHS:
        return await request_validation_exception_handler(request, exc)

    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or "body"
    body = getattr(exc, "body", None)
    request_id = ""
    if isinstance(body, dict):
        request_id = str(body.get("requestId") or body.get("request_id") or "")

    event = ErrorEvent(
        message=f"Invalid request ({location}): {first.get('msg', 'malformed body')}",
        retryable=False,
        code="invalid_request",
        request_id=request_id,
    )
    logger.warning("[%s] Rejected %s body: %s", request_id or "no-id", request.url.path, event.message)
    return Response(content=event.to_line(), media_type=NDJSON_MEDIA_TYPE, headers=NDJSON_HEADERS)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _start_turn(provider: Provider, payload: ChatRequest, request: Request) -> StreamingResponse:
    assert _config is not None and _collaborators is not None

    context = RequestContext.from_request(payload, provider, _config)
    emitter = NDJSONEmitter(context.request_id)
    orchestrator = TurnOrchestrator(_adapters[provider], _collaborators, emitter)

    logger.info(
        "[%s] %s turn: %d message(s), model=%s image_mode=%s deep_reasoning=%s",
        context.request_id or "no-id", provider.value, len(context.messages),
        context.model_id, context.image_mode, context.deep_reasoning,
    )

    task = asyncio.create_task(orchestrator.run(context, _bearer_token(request)))
    _turn_tasks.add(task)
    task.add_done_callback(_turn_tasks.discard)

    return StreamingResponse(
        emitter.stream(request.is_disconnected),
        media_type=NDJSON_MEDIA_TYPE,
        headers=NDJSON_HEADERS,
    )


# ---------------------------------------------------------------------------
# Streaming chat endpoints
# ---------------------------------------------------------------------------

@app.post("/api/claude", response_model=None)
async def claude_turn(payload: ChatRequest, request: Request) -> StreamingResponse:
    """Relay one chat turn to Claude."""
    return _start_turn(Provider.ANTHROPIC, payload, request)


@app.post("/api/gemini", response_model=None)
async def gemini_turn(payload: ChatRequest, request: Request) -> StreamingResponse:
    """Relay one chat turn to Gemini."""
    return _start_turn(Provider.GOOGLE, payload, request)


# ---------------------------------------------------------------------------
# Conversation summary
# ---------------------------------------------------------------------------

@app.post("/api/summarize", response_model=None)
async def summarize(payload: SummarizeRequest) -> JSONResponse | dict[str, Any]:
    """Fold the latest messages into the rolling conversation summary."""
    assert _collaborators is not None
    if not payload.messages:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "No messages provided for summarization"},
        )

    try:
        if _collaborators.summarizer is None:
            raise ConfigurationError("Summarizer not configured")
        result = await _collaborators.summarizer.summarize(payload.messages, payload.previous_summary)
    except RelayError as exc:
        logger.error("Summarization failed: %s", exc)
        return JSONResponse(
            status_code=502 if exc.retryable else 500,
            content={"success": False, "error": str(exc), "code": exc.code, "retryable": exc.retryable},
        )

    return {"success": True, "summary": result.summary, "metadata": result.to_metadata()}


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------

@app.get("/api/tools")
async def list_tools() -> list[dict[str, Any]]:
    """Client-executed tool definitions with their progress labels."""
    return [
        {**t["function"], "label": preparing_label(t["function"]["name"])}
        for t in RELAY_TOOLS
    ]


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "omnia-relay", "version": __version__}
