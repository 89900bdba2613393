"""Stream orchestrator: the bounded tool-use loop behind every chat stream.

Each round streams one model turn to the client token by token. If the turn
ends in a tool call the tool is executed, its result is folded back into the
conversation and the model is called again, up to ``max_loops`` model calls.
The first round without a tool call ends the stream with a ``done`` event
carrying any signal found in that round's text.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import aclosing
from typing import TYPE_CHECKING

from chatstream.agents import signals
from chatstream.agents.llm import ModelTurn, TextDelta
from chatstream.agents.state import ChatSession, LoopPhase, LoopState, find_tool_uses
from chatstream.schemas import (
    DoneEvent,
    ErrorEvent,
    StreamEvent,
    TokenEvent,
    ToolCompleteEvent,
    ToolStartEvent,
)
from chatstream.tools import tool_result_message

if TYPE_CHECKING:
    from chatstream.agents.llm import ChatModel
    from chatstream.agents.registry import ResolvedVariant
    from chatstream.tools import ToolCallRouter

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOOPS = 5
TOOL_USE_STOP_REASON = "tool_use"


def _transition(state: LoopState, phase: LoopPhase) -> None:
    logger.debug(f"Loop round={state.round_count}: {state.phase.value} -> {phase.value}")
    state.phase = phase


async def run_chat_stream(
    model: ChatModel,
    variant: ResolvedVariant,
    session: ChatSession,
    router: ToolCallRouter | None = None,
    max_loops: int = DEFAULT_MAX_LOOPS,
    is_cancelled: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncGenerator[StreamEvent, None]:
    """Run the tool-use loop and yield stream events.

    Yields zero or more token / tool_start / tool_complete events followed by
    exactly one ``done`` or ``error`` event. If ``is_cancelled`` reports that
    the client went away, the loop stops before its next model or tool call
    and yields nothing further.
    """
    if max_loops < 1:
        raise ValueError("max_loops must be at least 1")

    state = LoopState(messages=list(session.messages))
    tools = session.tools or None

    async def cancelled() -> bool:
        if is_cancelled is not None and await is_cancelled():
            logger.info(
                f"Client disconnected, abandoning {variant.name} stream "
                f"at round {state.round_count} ({state.phase.value})"
            )
            return True
        return False

    try:
        while True:
            if await cancelled():
                return

            _transition(state, LoopPhase.AWAITING_MODEL)
            state.full_text = ""
            state.model_calls += 1
            logger.info(f"[{variant.name}] model call {state.model_calls}/{max_loops}")

            turn: ModelTurn | None = None
            _transition(state, LoopPhase.STREAMING_TEXT)
            async with aclosing(model.stream_turn(session.system, state.messages, tools)) as parts:
                async for part in parts:
                    if isinstance(part, TextDelta):
                        if part.text:
                            state.full_text += part.text
                            yield TokenEvent(text=part.text)
                    else:
                        turn = part

            if turn is None:
                raise RuntimeError("Model stream ended without a final message")

            _transition(state, LoopPhase.EVALUATING_TURN)
            tool_uses = find_tool_uses(turn.content)
            actionable = (
                bool(tool_uses)
                and turn.stop_reason == TOOL_USE_STOP_REASON
                and variant.has_tools
                and router is not None
            )

            if not actionable:
                _transition(state, LoopPhase.DONE)
                signal = (
                    signals.parse(state.full_text, variant.signal_patterns)
                    if variant.signal_patterns
                    else None
                )
                if signal is not None:
                    logger.info(f"[{variant.name}] signal detected: {signal.type}")
                yield DoneEvent(
                    fullResponse=state.full_text,
                    signal=signal,
                    hasSignal=signal is not None,
                )
                return

            if len(tool_uses) > 1:
                logger.warning(
                    f"[{variant.name}] model requested {len(tool_uses)} tools in one turn; "
                    f"only '{tool_uses[0].name}' will run"
                )
            tool_use = tool_uses[0]

            if await cancelled():
                return

            yield ToolStartEvent(tool=tool_use.name)
            _transition(state, LoopPhase.EXECUTING_TOOL)
            result = await router.execute(tool_use, variant, session.user_id, session.context)
            state.tool_calls.append(tool_use.name)
            yield ToolCompleteEvent(tool=tool_use.name)

            state.messages.append({"role": "assistant", "content": turn.content})
            state.messages.append(tool_result_message(tool_use, result, skipped=tool_uses[1:]))
            state.round_count += 1

            if state.round_count >= max_loops:
                logger.warning(
                    f"[{variant.name}] loop limit reached after {state.round_count} tool rounds "
                    f"({state.tool_calls}); completing with current text"
                )
                _transition(state, LoopPhase.DONE)
                yield DoneEvent(fullResponse=state.full_text, signal=None, hasSignal=False)
                return

    except Exception as e:
        _transition(state, LoopPhase.ERROR)
        logger.error(f"[{variant.name}] chat stream error: {e}", exc_info=True)
        yield ErrorEvent(error=str(e) or "Unknown error occurred")
