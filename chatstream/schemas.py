"""Request/response models: the contract between the chat stream and clients."""

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict


class ChatMessage(BaseModel):
    """One prior conversation turn. Content is plain text or a list of content blocks."""

    role: str
    content: Union[str, list[dict[str, Any]]]


class ChatStreamRequest(BaseModel):
    """Incoming request body.

    Variant-specific fields (``agentId``, ``actionContext``, ``timezone`` …)
    are kept as extras and forwarded according to the chat type's config.
    """

    model_config = ConfigDict(extra="allow")

    userId: str | None = None
    message: str | None = None
    chatHistory: list[ChatMessage] = []
    chatType: str | None = None

    def field_value(self, name: str) -> Any:
        """Return a declared or extra field by its wire name, or None."""
        if name in type(self).model_fields:
            return getattr(self, name)
        return (self.model_extra or {}).get(name)

    def has_field(self, name: str) -> bool:
        if name in type(self).model_fields:
            return name in self.model_fields_set
        return name in (self.model_extra or {})


class Signal(BaseModel):
    """A structured event extracted from the model's final text."""

    type: str
    data: dict[str, Any]


# ---------------------------------------------------------------------------
# SSE events
# ---------------------------------------------------------------------------


class TokenEvent(BaseModel):
    """A text delta, forwarded as soon as the model produces it."""

    type: Literal["token"] = "token"
    text: str


class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    tool: str


class ToolCompleteEvent(BaseModel):
    type: Literal["tool_complete"] = "tool_complete"
    tool: str


class DoneEvent(BaseModel):
    """Terminal event. Carries the last round's text and the parsed signal, if any."""

    type: Literal["done"] = "done"
    fullResponse: str
    signal: Signal | None = None
    hasSignal: bool = False


class ErrorEvent(BaseModel):
    """Terminal event for a failed stream."""

    type: Literal["error"] = "error"
    error: str


StreamEvent = Union[TokenEvent, ToolStartEvent, ToolCompleteEvent, DoneEvent, ErrorEvent]
