"""LLM collaborator: streaming, tool-capable chat completion.

The orchestrator only depends on the ``ChatModel`` protocol. ``AnthropicChatModel``
is the production implementation; tests substitute a scripted fake.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Union

from anthropic import AsyncAnthropic

if TYPE_CHECKING:
    from chatstream.config import LLMConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ModelTurn:
    """The finalised assistant message of one round."""

    content: list[dict[str, Any]] = field(default_factory=list)
    stop_reason: str | None = None


StreamPart = Union[TextDelta, ModelTurn]


class ChatModel(Protocol):
    def stream_turn(
        self,
        system: list[dict[str, Any]],
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        """Yield text deltas as they arrive, then exactly one ModelTurn."""
        ...


class AnthropicChatModel:
    """ChatModel backed by the Anthropic Messages streaming API."""

    def __init__(self, config: LLMConfig, api_key: str, client: AsyncAnthropic | None = None):
        self.model = config.model
        self.max_tokens = config.max_tokens
        self._client = client or AsyncAnthropic(
            api_key=api_key,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
        )

    async def stream_turn(
        self,
        system: list[dict[str, Any]],
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        async with self._client.messages.stream(**kwargs) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield TextDelta(event.delta.text)
            final = await stream.get_final_message()

        logger.debug(f"Model turn finished: stop_reason={final.stop_reason}")
        yield ModelTurn(
            content=[block.model_dump(exclude_none=True) for block in final.content],
            stop_reason=final.stop_reason,
        )


def build_chat_model(config: LLMConfig) -> AnthropicChatModel | None:
    """Create the production model, or None if ANTHROPIC_API_KEY is not set."""
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        logger.warning("ANTHROPIC_API_KEY environment variable is not set")
        return None
    return AnthropicChatModel(config, api_key=api_key)
