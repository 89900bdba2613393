"""Per-request loop state: lives for the duration of one streamed response."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LoopPhase(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    STREAMING_TEXT = "streaming_text"
    EVALUATING_TURN = "evaluating_turn"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ToolUse:
    """A tool call requested by the model."""

    id: str
    name: str
    input: dict[str, Any]

    @classmethod
    def from_block(cls, block: dict[str, Any]) -> ToolUse:
        return cls(id=block["id"], name=block["name"], input=block.get("input") or {})

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "input": self.input}


@dataclass
class LoopState:
    """State carried across rounds of the tool-use loop.

    messages    : conversation sent to the model; grows by two messages
                  (assistant turn + tool result) per tool round.
    round_count : completed tool rounds.
    full_text   : text streamed in the current round only.
    phase       : where the state machine currently is.
    """

    messages: list[dict[str, Any]]
    round_count: int = 0
    full_text: str = ""
    phase: LoopPhase = LoopPhase.AWAITING_MODEL
    model_calls: int = 0
    tool_calls: list[str] = field(default_factory=list)


def find_tool_uses(content: list[dict[str, Any]]) -> list[ToolUse]:
    """Return every tool_use block in an assistant turn, in order."""
    return [ToolUse.from_block(b) for b in content if b.get("type") == "tool_use"]


def history_to_messages(history: list[Any], message: str) -> list[dict[str, Any]]:
    """Normalise prior chat history and append the current user message.

    Any role other than ``assistant`` is sent as ``user``.
    """
    messages = []
    for msg in history:
        role = msg.role if hasattr(msg, "role") else msg.get("role")
        content = msg.content if hasattr(msg, "content") else msg.get("content")
        messages.append({"role": "assistant" if role == "assistant" else "user", "content": content})
    messages.append({"role": "user", "content": message})
    return messages


@dataclass
class ChatSession:
    """Everything the loop needs that is fixed before the first round.

    system  : system message blocks from the init endpoint, sent verbatim.
    tools   : tool schemas from the init endpoint; empty for signal-only variants.
    context : variant-specific request fields (e.g. agentId) for the tool router.
    """

    user_id: str
    messages: list[dict[str, Any]]
    system: list[dict[str, Any]] = field(default_factory=list)
    tools: list[dict[str, Any]] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
