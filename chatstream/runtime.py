"""Runtime: bridges HTTP requests to the chat stream loop.

Validates requests against the chat type, initialises the session through
the variant's init endpoint, and frames loop events as SSE.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from chatstream.agents.state import ChatSession, history_to_messages
from chatstream.errors import CollaboratorError, CollaboratorTimeout
from chatstream.schemas import ChatStreamRequest, StreamEvent

if TYPE_CHECKING:
    from chatstream.agents.registry import ChatVariantRegistry, ResolvedVariant

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def validate_request(
    body: Any, registry: ChatVariantRegistry, user_id_prefix: str = "u-"
) -> tuple[ChatStreamRequest, ResolvedVariant]:
    """Check the request body and resolve its chat type.

    Raises ValueError with a client-facing message on failure.
    """
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")

    try:
        request = ChatStreamRequest.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValueError(f"Invalid field '{location}': {first['msg']}")

    chat_type = request.chatType if request.has_field("chatType") else registry.default
    variant = registry.resolve(chat_type) if chat_type is not None else None
    if variant is None:
        raise ValueError(
            f"Invalid chatType: {chat_type}. Available: {', '.join(registry.names())}"
        )

    if not request.userId or not request.userId.startswith(user_id_prefix):
        raise ValueError("Valid userId is required")

    if not request.message or not request.message.strip():
        raise ValueError("message is required")

    for name in variant.required_fields:
        if not request.field_value(name):
            raise ValueError(f"{name} is required for {variant.name} chat")

    return request, variant


def collect_fields(request: ChatStreamRequest, names: tuple[str, ...]) -> dict[str, Any]:
    """Pick the named fields the client actually sent."""
    return {name: request.field_value(name) for name in names if request.has_field(name)}


def build_init_body(request: ChatStreamRequest, variant: ResolvedVariant) -> dict[str, Any]:
    """Init endpoint body: ``{userId, ...init_fields}``."""
    return {"userId": request.userId, **collect_fields(request, variant.init_fields)}


async def initialize_chat(
    client: httpx.AsyncClient,
    base_url: str,
    request: ChatStreamRequest,
    variant: ResolvedVariant,
    timeout: float = 20.0,
) -> ChatSession:
    """Call the variant's init endpoint and build the session for the loop.

    Raises CollaboratorError (collaborator status passed through) or
    CollaboratorTimeout.
    """
    url = f"{base_url.rstrip('/')}{variant.init_endpoint}"
    logger.info(f"Initialising {variant.name} chat via {variant.init_endpoint}")

    try:
        response = await client.post(url, json=build_init_body(request, variant), timeout=timeout)
    except httpx.TimeoutException as e:
        raise CollaboratorTimeout(variant.init_endpoint, timeout) from e
    except httpx.HTTPError as e:
        logger.error(f"Init endpoint {variant.init_endpoint} unreachable: {e}")
        raise CollaboratorError(502, {"error": f"Chat initialisation failed: {e}"}) from e

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.is_success:
        logger.warning(f"Init endpoint {variant.init_endpoint} returned {response.status_code}")
        if not isinstance(data, dict):
            data = {"error": response.text or response.reason_phrase}
        raise CollaboratorError(response.status_code, data)

    if not isinstance(data, dict) or not isinstance(data.get("systemMessages"), list):
        raise CollaboratorError(502, {"error": "Chat initialisation returned no systemMessages"})

    return ChatSession(
        user_id=request.userId,
        messages=history_to_messages(request.chatHistory, request.message),
        system=data["systemMessages"],
        tools=data.get("tools") or [],
        context=collect_fields(request, variant.tool_fields),
    )


def format_sse(event: StreamEvent) -> str:
    """Frame one event as ``data: <json>\\n\\n``."""
    return f"data: {json.dumps(event.model_dump())}\n\n"


async def sse_stream(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield format_sse(event)
