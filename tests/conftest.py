import asyncio
import json
import os
from pathlib import Path

import httpx
import pytest

# chatstream.main loads its config at import time.
TEST_CONFIG = Path(__file__).parent / "config.test.yaml"
os.environ["CHATSTREAM_CONFIG"] = str(TEST_CONFIG)

from chatstream.agents.llm import ModelTurn, TextDelta  # noqa: E402
from chatstream.agents.registry import ChatVariantRegistry  # noqa: E402
from chatstream.config import load_config  # noqa: E402

COLLAB_BASE = "http://collab.test"
SYSTEM_MESSAGES = [{"type": "text", "text": "You are a helpful agent."}]
TOOLS = [
    {
        "name": "create_action",
        "description": "Create an action",
        "input_schema": {"type": "object", "properties": {"title": {"type": "string"}}},
    }
]


def text_turn(*chunks, stop_reason="end_turn"):
    """A scripted model turn that only streams text."""
    text = "".join(chunks)
    content = [{"type": "text", "text": text}] if text else []
    return list(chunks), ModelTurn(content=content, stop_reason=stop_reason)


def tool_turn(name="create_action", tool_input=None, text="", tool_id="toolu_1", stop_reason="tool_use"):
    """A scripted model turn that ends in a tool call."""
    content = [{"type": "text", "text": text}] if text else []
    content.append({"type": "tool_use", "id": tool_id, "name": name, "input": tool_input or {}})
    return ([text] if text else []), ModelTurn(content=content, stop_reason=stop_reason)


class FakeChatModel:
    """ChatModel that replays scripted turns and records what it was sent.

    Once the script runs out the last turn is repeated.
    """

    def __init__(self, turns, error=None):
        self.turns = list(turns)
        self.error = error
        self.calls = []

    async def stream_turn(self, system, messages, tools=None):
        self.calls.append(
            {"system": system, "messages": json.loads(json.dumps(messages)), "tools": tools}
        )
        if self.error is not None:
            raise self.error
        index = min(len(self.calls) - 1, len(self.turns) - 1)
        chunks, turn = self.turns[index]
        for chunk in chunks:
            yield TextDelta(chunk)
        yield turn


class FakeCollaborators:
    """httpx MockTransport handler standing in for the init and tool-execute endpoints."""

    def __init__(self):
        self.requests = []
        self.init_status = 200
        self.init_body = {"systemMessages": SYSTEM_MESSAGES, "tools": TOOLS}
        self.init_error = None
        self.tool_status = 200
        self.tool_body = {"success": True, "result": {"ok": True}}
        self.tool_error = None

    @staticmethod
    def _respond(status, body):
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.url.path, body))
        if request.url.path.endswith("-chat-init"):
            if self.init_error is not None:
                raise self.init_error
            return self._respond(self.init_status, self.init_body)
        if request.url.path.endswith("-tool-execute"):
            if self.tool_error is not None:
                raise self.tool_error
            return self._respond(self.tool_status, self.tool_body)
        return httpx.Response(404, json={"error": "not found"})

    def bodies(self, path):
        return [body for p, body in self.requests if p == path]


def collect(events):
    """Drain an async event generator into a list."""

    async def _drain():
        return [event async for event in events]

    return asyncio.run(_drain())


def parse_sse(text):
    """Split an SSE body into decoded JSON events."""
    events = []
    for frame in text.split("\n\n"):
        if not frame.strip():
            continue
        assert frame.startswith("data: "), frame
        events.append(json.loads(frame[len("data: "):]))
    return events


@pytest.fixture
def service_config():
    return load_config(str(TEST_CONFIG))


@pytest.fixture
def registry(service_config):
    return ChatVariantRegistry.from_config(service_config)


@pytest.fixture
def collaborators():
    return FakeCollaborators()


@pytest.fixture
def http_client(collaborators):
    return httpx.AsyncClient(transport=httpx.MockTransport(collaborators))
