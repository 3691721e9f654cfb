"""Shared fixtures: scripted gateway replies, tool registries, canned HTTP backends."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from aiedit.proxy.agent import (
    FunctionTool,
    TokenUsage,
    ToolCallRequest,
    ToolCallResult,
    ToolDefinition,
    ToolRegistry,
    Turn,
)
from aiedit.proxy.backend import BackendClient


def tool_call_reply(*calls: tuple[str, str, dict], text: str | None = None, input_tokens: int = 10) -> Turn:
    """Assistant turn requesting ``calls`` given as (id, name, arguments)."""
    return Turn.assistant(
        text,
        [ToolCallRequest(cid, name, args) for cid, name, args in calls],
        TokenUsage(input_tokens=input_tokens, output_tokens=5),
    )


def final_reply(text: str = "All done.", input_tokens: int = 10) -> Turn:
    return Turn.assistant(text, (), TokenUsage(input_tokens=input_tokens, output_tokens=5))


def make_gateway(replies) -> MagicMock:
    gateway = MagicMock()
    gateway.provider_id = "test"
    gateway.model = "test-model"
    gateway.send.side_effect = list(replies)
    return gateway


def recording_tool(name: str, content: str = "ok", is_error: bool = False) -> FunctionTool:
    """A tool that records the arguments of every call in ``tool.calls``."""
    calls: list[dict] = []

    def run(arguments: dict) -> ToolCallResult:
        calls.append(dict(arguments))
        return ToolCallResult("", content, is_error)

    tool = FunctionTool(
        ToolDefinition(name, f"{name} tool", {"type": "object", "properties": {"url": {"type": "string"}}}),
        run,
    )
    tool.calls = calls
    return tool


@pytest.fixture
def registry():
    return ToolRegistry([
        recording_tool("read_source", "REPORT zfoo."),
        recording_tool("write_source", "written"),
        recording_tool("create_source", "created"),
    ])


@pytest.fixture
def backend_store():
    """In-memory text store behind an httpx.MockTransport, keyed by request path."""
    store: dict[str, str] = {}
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if request.method == "GET":
            if path == "/":
                return httpx.Response(200, text="ok")
            if path not in store:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, text=store[path])
        if request.method == "PUT":
            if path not in store:
                return httpx.Response(404, text="not found")
            store[path] = request.content.decode()
            return httpx.Response(200, text="")
        if request.method == "POST":
            if path in store:
                return httpx.Response(
                    409,
                    text=json.dumps({"error": {"message": f"{path} already exists"}}),
                )
            store[path] = request.content.decode()
            return httpx.Response(201, text="")
        return httpx.Response(405)

    client = httpx.Client(base_url="http://backend.test", transport=httpx.MockTransport(handler))
    backend = BackendClient("http://backend.test", client=client)
    backend.store = store
    backend.requests = requests
    yield backend
    client.close()
