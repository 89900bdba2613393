import asyncio
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from chatstream.agents import llm
from chatstream.agents.llm import AnthropicChatModel, ModelTurn, TextDelta, build_chat_model
from chatstream.config import LLMConfig


class _Block:
    def __init__(self, **data):
        self.data = data

    def model_dump(self, exclude_none=False):
        return {k: v for k, v in self.data.items() if not (exclude_none and v is None)}


class _Stream:
    def __init__(self, events, final):
        self.events = events
        self.final = final

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            yield event

    async def get_final_message(self):
        return self.final


class _Messages:
    def __init__(self, stream):
        self.stream_obj = stream
        self.kwargs = None

    def stream(self, **kwargs):
        self.kwargs = kwargs
        return self.stream_obj


def _delta(kind, **fields):
    return SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type=kind, **fields))


def _drain(model, tools):
    async def run():
        return [p async for p in model.stream_turn([{"type": "text", "text": "sys"}], [], tools)]

    return asyncio.run(run())


def _model(events, final):
    messages = _Messages(_Stream(events, final))
    client = SimpleNamespace(messages=messages)
    return AnthropicChatModel(LLMConfig(max_tokens=512), api_key="test", client=client), messages


def test_streams_text_deltas_then_final_turn():
    final = SimpleNamespace(
        content=[
            _Block(type="text", text="Hi!", citations=None),
            _Block(type="tool_use", id="toolu_1", name="create_action", input={"title": "x"}),
        ],
        stop_reason="tool_use",
    )
    events = [
        SimpleNamespace(type="message_start"),
        _delta("text_delta", text="Hi"),
        SimpleNamespace(type="text", text="Hi"),
        _delta("text_delta", text="!"),
        _delta("input_json_delta", partial_json='{"title"'),
    ]
    model, messages = _model(events, final)

    parts = _drain(model, [{"name": "create_action"}])

    assert parts[:2] == [TextDelta("Hi"), TextDelta("!")]
    assert parts[-1] == ModelTurn(
        content=[
            {"type": "text", "text": "Hi!"},
            {"type": "tool_use", "id": "toolu_1", "name": "create_action", "input": {"title": "x"}},
        ],
        stop_reason="tool_use",
    )
    assert messages.kwargs["max_tokens"] == 512
    assert messages.kwargs["tools"] == [{"name": "create_action"}]


def test_tools_omitted_when_empty():
    final = SimpleNamespace(content=[], stop_reason="end_turn")
    model, messages = _model([], final)

    _drain(model, [])

    assert "tools" not in messages.kwargs
    assert messages.kwargs["system"] == [{"type": "text", "text": "sys"}]


def test_build_chat_model_requires_api_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert build_chat_model(LLMConfig()) is None

    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    assert isinstance(build_chat_model(LLMConfig()), AnthropicChatModel)


def test_server_error_is_not_retried(monkeypatch):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(
            500, json={"type": "error", "error": {"type": "api_error", "message": "boom"}}
        )

    real_client = llm.AsyncAnthropic

    def client_with_transport(**kwargs):
        return real_client(
            **kwargs, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

    monkeypatch.setattr(llm, "AsyncAnthropic", client_with_transport)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

    model = build_chat_model(LLMConfig())

    with pytest.raises(anthropic.InternalServerError):
        _drain(model, [])
    assert len(requests) == 1
