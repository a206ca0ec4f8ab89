"""
Pytest configuration and fixtures for qaprobe tests.

Run with:
$ pytest -q
"""

import json
from types import SimpleNamespace
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

import pytest

from qaprobe.agent.mcp_client import MCPConnection
from qaprobe.agent.planner_interface import BasePlanner
from qaprobe.config import settings


# ---------------------------------------------------------------------------
# Stubs
# ---------------------------------------------------------------------------
def text_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    """An MCP-style tool result with one text item."""
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def tool_call(name: str, args: Any = None, call_id: str = "call_1") -> Dict[str, Any]:
    """A tool call in the chat-completions dict format."""
    arguments = args if isinstance(args, str) else json.dumps(args or {})
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


class FakeSession:
    """Stands in for ``mcp.ClientSession``."""

    def __init__(self, tools: Optional[List[str]] = None, results: Optional[Dict[str, Any]] = None):
        self.tool_names = tools or []
        self.results = results or {}
        self.calls: List[tuple] = []
        self.list_error: Optional[Exception] = None

    async def list_tools(self) -> Any:
        if self.list_error is not None:
            raise self.list_error
        return SimpleNamespace(
            tools=[
                SimpleNamespace(
                    name=name,
                    description=f"remote {name}",
                    inputSchema={"type": "object", "properties": {}},
                )
                for name in self.tool_names
            ]
        )

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append((name, arguments))
        result = self.results.get(name, text_result(f"{name} ok"))
        if isinstance(result, Exception):
            raise result
        return result


class ScriptedPlanner(BasePlanner):
    """Replays a list of assistant messages; repeats the last one when exhausted."""

    def __init__(self, replies: List[Dict[str, Any]]):
        self.replies = replies
        self.calls: List[List[Dict[str, Any]]] = []
        self.tools_seen: List[List[str]] = []

    async def complete(self, messages, tools):
        self.calls.append([dict(m) for m in messages])
        self.tools_seen.append([t.name for t in tools])
        index = min(len(self.calls), len(self.replies)) - 1
        return dict(self.replies[index])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every file the app writes into a temp directory and keep MCP off."""
    monkeypatch.setattr(settings, "PROJECT_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "TESTS_DIR", "tests")
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "SKIP_MCP", True)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    monkeypatch.setattr(settings, "MAX_ITERATIONS", 50)
    return tmp_path


@pytest.fixture
def fake_session() -> FakeSession:
    """A fake MCP session exposing two browser tools."""
    return FakeSession(tools=["browser_navigate", "browser_snapshot"])


@pytest.fixture
def connection(fake_session) -> MCPConnection:
    """An MCP connection wired to *fake_session* (not yet initialised)."""

    async def connector(_stack):
        connector.count += 1
        return fake_session

    connector.count = 0
    conn = MCPConnection(connector=connector, prepare=None, skip=False)
    conn.connector = connector  # expose the call counter to tests
    return conn
