"""Chat stream service: FastAPI app serving the streaming agent chat endpoint.

Loads the YAML config on startup. Exposes /api/chat-stream for SSE streaming,
plus operational endpoints for health and hot-reload.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from chatstream.agents.llm import ChatModel, build_chat_model
from chatstream.agents.orchestrator import run_chat_stream
from chatstream.agents.registry import ChatVariantRegistry
from chatstream.config import ServiceConfig, get_config, load_config, reload_config
from chatstream.errors import CollaboratorError, CollaboratorTimeout
from chatstream.runtime import SSE_HEADERS, initialize_chat, sse_stream, validate_request
from chatstream.tools import ToolCallRouter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CHAT_STREAM_PATH = "/api/chat-stream"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load config, build the variant registry and open shared clients."""
    config = load_config()
    app.state.registry = ChatVariantRegistry.from_config(config)
    app.state.http_client = httpx.AsyncClient()
    app.state.chat_model = build_chat_model(config.llm)
    logger.info(
        f"Chat stream started (origins={config.allowed_origins}, "
        f"chat_types={app.state.registry.names()}, default={app.state.registry.default}, "
        f"model={config.llm.model}, max_loops={config.orchestrator.max_loops})"
    )
    yield
    await app.state.http_client.aclose()
    logger.info("Chat stream shutting down")


# Load config early so we can read allowed_origins for CORS middleware.
_boot_config = load_config()

app = FastAPI(title="Chat Stream", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_boot_config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_service_config() -> ServiceConfig:
    return get_config()


def get_registry(request: Request) -> ChatVariantRegistry:
    return request.app.state.registry


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_chat_model(request: Request) -> ChatModel | None:
    return getattr(request.app.state, "chat_model", None)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ---------------------------------------------------------------------------
# Chat stream endpoint
# ---------------------------------------------------------------------------


@app.post(CHAT_STREAM_PATH)
async def chat_stream(
    request: Request,
    config: ServiceConfig = Depends(get_service_config),
    registry: ChatVariantRegistry = Depends(get_registry),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    chat_model: ChatModel | None = Depends(get_chat_model),
):
    """Run the agent chat loop for one user message.

    Streams response as Server-Sent Events (SSE).
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "Request body must be valid JSON")

    try:
        chat_request, variant = validate_request(body, registry, config.user_id_prefix)
    except ValueError as e:
        return _error(400, str(e))

    base_url = config.collaborator_base_url or str(request.base_url)

    try:
        session = await initialize_chat(
            http_client,
            base_url,
            chat_request,
            variant,
            timeout=config.orchestrator.init_timeout_seconds,
        )
    except CollaboratorTimeout as e:
        logger.error(f"Chat init timed out: {e}")
        return _error(504, str(e))
    except CollaboratorError as e:
        return JSONResponse(status_code=e.status_code, content=e.body)

    if chat_model is None:
        return _error(500, "API key not configured")

    router = None
    if variant.has_tools:
        router = ToolCallRouter(
            http_client, base_url, timeout=config.orchestrator.tool_timeout_seconds
        )

    events = run_chat_stream(
        chat_model,
        variant,
        session,
        router=router,
        max_loops=config.orchestrator.max_loops,
        is_cancelled=request.is_disconnected,
    )

    return StreamingResponse(
        sse_stream(events),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@app.api_route(CHAT_STREAM_PATH, methods=["GET", "PUT", "PATCH", "DELETE"])
async def chat_stream_method_not_allowed():
    return _error(405, "Method not allowed")


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health(registry: ChatVariantRegistry = Depends(get_registry)):
    """Liveness check."""
    return {
        "status": "healthy",
        "chat_types": registry.names(),
        "default_chat_type": registry.default,
    }


@app.post("/reload")
async def reload(request: Request):
    """Hot-reload the YAML config without a restart.

    Rebuilds the variant registry; in-flight streams keep the registry
    they started with.
    """
    try:
        new_config = reload_config()
        request.app.state.registry = ChatVariantRegistry.from_config(new_config)
        request.app.state.chat_model = build_chat_model(new_config.llm)
        return {
            "status": "reloaded",
            "chat_types": request.app.state.registry.names(),
        }
    except Exception as e:
        logger.error(f"Reload failed: {e}", exc_info=True)
        return _error(500, f"Reload failed: {e}")
