"""Tests for the agent orchestration loop."""

import asyncio
import json

import pytest

from conftest import (
    ScriptedPlanner,
    text_result,
    tool_call,
)
from qaprobe.agent.agent_loop import (
    QAAgent,
    format_final_answer,
    run_agent,
)
from qaprobe.agent.mcp_client import MCPConnection
from qaprobe.core.errors import MissingCredentialError
from qaprobe.memory.run_store import load_runs

FINAL_JSON = json.dumps(
    {
        "summary": "ok",
        "generatedFiles": ["a.spec.ts"],
        "commandsRun": ["run a.spec.ts"],
        "results": {"status": "passed", "details": "all green"},
        "nextSteps": [],
    }
)


def _final(content: str | None = FINAL_JSON) -> dict:
    return {"role": "assistant", "content": content}


def _calls(*calls: dict) -> dict:
    return {"role": "assistant", "content": None, "tool_calls": list(calls)}


def _run(agent: QAAgent, url: str = "https://example.com", schema: str | None = None):
    events = []
    outcome = asyncio.run(agent.run(url, schema, events.append))
    return outcome, events


def _local_only() -> MCPConnection:
    return MCPConnection(prepare=None, skip=True)


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------
def test_final_answer_on_first_call_finishes_in_one_iteration() -> None:
    planner = ScriptedPlanner([_final()])
    agent = QAAgent(planner, connection=_local_only())

    outcome, events = _run(agent)

    assert outcome.success is True
    assert len(planner.calls) == 1
    assert agent.state.iteration_count == 0
    assert "Summary: ok" in outcome.message
    assert "GeneratedFiles: a.spec.ts" in outcome.message
    assert "Results: passed - all green" in outcome.message
    assert events[0].type == "agent"
    assert events[-1].type == "success"


def test_max_iterations_stops_after_exact_bound() -> None:
    planner = ScriptedPlanner([_calls(tool_call("listTestFiles"))])
    agent = QAAgent(planner, connection=_local_only(), max_iterations=3)

    outcome, events = _run(agent)

    assert outcome.success is False
    assert outcome.error == "Agent reached maximum iterations (3)"
    assert len(planner.calls) == 3
    assert agent.state.iteration_count == 3
    assert [e.message for e in events if e.type == "agent"] == [
        "Agent iteration 1: Thinking...",
        "Agent iteration 2: Thinking...",
        "Agent iteration 3: Thinking...",
    ]


def test_zero_iteration_bound_is_not_replaced_by_default() -> None:
    planner = ScriptedPlanner([_final()])
    agent = QAAgent(planner, connection=_local_only(), max_iterations=0)

    outcome, _ = _run(agent)

    assert agent.max_iterations == 0
    assert planner.calls == []
    assert outcome.success is False
    assert outcome.error == "Agent reached maximum iterations (0)"


def test_non_json_final_answer_is_used_verbatim() -> None:
    planner = ScriptedPlanner([_final("All done, tests pass.")])
    outcome, _ = _run(QAAgent(planner, connection=_local_only()))
    assert outcome.message == "All done, tests pass."


def test_empty_final_answer_gets_default_message() -> None:
    planner = ScriptedPlanner([_final(None)])
    outcome, _ = _run(QAAgent(planner, connection=_local_only()))
    assert outcome.success is True
    assert outcome.message == "Agent completed successfully."


def test_final_report_formatting() -> None:
    text = format_final_answer(FINAL_JSON)
    assert text.splitlines() == [
        "Summary: ok",
        "GeneratedFiles: a.spec.ts",
        "CommandsRun: run a.spec.ts",
        "Results: passed - all green",
        "NextSteps: none",
    ]


def test_fenced_final_report_is_parsed() -> None:
    assert format_final_answer(f"```json\n{FINAL_JSON}\n```").startswith("Summary: ok")


# ---------------------------------------------------------------------------
# Transcript and tool calls
# ---------------------------------------------------------------------------
def test_every_tool_call_gets_one_matching_tool_message() -> None:
    planner = ScriptedPlanner(
        [
            _calls(
                tool_call("saveTestFile", {"filePath": "a.spec.ts", "content": "test()"}, "c1"),
                tool_call("listTestFiles", {}, "c2"),
            ),
            _final(),
        ]
    )
    outcome, events = _run(QAAgent(planner, connection=_local_only()))

    transcript = planner.calls[1]
    assert [m["role"] for m in transcript] == ["system", "user", "assistant", "tool", "tool"]
    assert [m["tool_call_id"] for m in transcript[3:]] == ["c1", "c2"]
    assert json.loads(transcript[4]["content"])["result"]["files"] == ["a.spec.ts"]
    assert outcome.test_files == ["a.spec.ts"]
    assert any(e.message == "✓ Test file saved: a.spec.ts" for e in events)
    assert any(e.message == "Executing tool: saveTestFile (a.spec.ts)" for e in events)


def test_system_and_user_prompts_name_target_and_schema() -> None:
    planner = ScriptedPlanner([_final()])
    _run(QAAgent(planner, connection=_local_only()), "https://www.saucedemo.com", "openapi: 3.0.0")

    system, user = planner.calls[0][0]["content"], planner.calls[0][1]["content"]
    assert "openapi: 3.0.0" in system
    assert "SauceDemo requirements" in system
    assert "https://www.saucedemo.com" in user


def test_planner_sees_local_tools() -> None:
    planner = ScriptedPlanner([_final()])
    _run(QAAgent(planner, connection=_local_only()))
    assert {"saveTestFile", "runPlaywrightTests", "listTestFiles"} <= set(planner.tools_seen[0])


def test_bad_arguments_fall_back_to_empty_object() -> None:
    planner = ScriptedPlanner([_calls(tool_call("saveTestFile", "{not json", "c1")), _final()])
    outcome, events = _run(QAAgent(planner, connection=_local_only()))

    tool_message = planner.calls[1][3]
    assert json.loads(tool_message["content"]) == {"success": False, "error": "filePath is required"}
    assert outcome.success is True
    assert any(e.type == "error" for e in events)


def test_failed_tool_does_not_stop_the_batch() -> None:
    planner = ScriptedPlanner(
        [
            _calls(
                tool_call("browser_navigate", {"url": "https://x"}, "c1"),
                tool_call("listTestFiles", {}, "c2"),
            ),
            _final(),
        ]
    )
    _run(QAAgent(planner, connection=_local_only()))

    first, second = planner.calls[1][3], planner.calls[1][4]
    assert json.loads(first["content"]) == {"success": False, "error": "MCP client not initialized"}
    assert json.loads(second["content"])["success"] is True


def test_remote_tools_are_dispatched_through_connection(connection, fake_session) -> None:
    planner = ScriptedPlanner(
        [_calls(tool_call("browser_navigate", {"url": "https://x"}, "c1")), _final()]
    )
    _run(QAAgent(planner, connection=connection))

    assert fake_session.calls == [("browser_navigate", {"url": "https://x"})]
    assert planner.tools_seen[0][:2] == ["browser_navigate", "browser_snapshot"]
    assert json.loads(planner.calls[1][3]["content"]) == text_result("browser_navigate ok")


def test_navigate_back_loop_is_blocked_without_dispatch(connection, fake_session) -> None:
    back = [tool_call("browser_navigate_back", {}, f"b{i}") for i in range(4)]
    planner = ScriptedPlanner([_calls(*back), _final()])
    agent = QAAgent(planner, connection=connection)

    _, events = _run(agent)

    assert len(fake_session.calls) == 2
    tool_messages = planner.calls[1][3:]
    assert len(tool_messages) == 4
    assert all("Blocked browser_navigate_back" in m["content"] for m in tool_messages[2:])
    assert sum(1 for e in events if e.type == "warning") == 2
    assert agent.state.consecutive_guarded_calls == 4


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------
def test_planner_exception_becomes_failure_outcome() -> None:
    class Exploding(ScriptedPlanner):
        async def complete(self, messages, tools):
            raise RuntimeError("rate limited")

    outcome, events = _run(QAAgent(Exploding([]), connection=_local_only()))
    assert outcome.success is False
    assert outcome.error == "rate limited"
    assert events[-1].type == "error"
    assert events[-1].message == "Agent error: rate limited"


def test_missing_credential_fails_fast() -> None:
    with pytest.raises(MissingCredentialError):
        asyncio.run(run_agent("https://example.com"))


def test_run_agent_records_history_and_shuts_down_owned_connection(monkeypatch) -> None:
    shutdowns = []

    async def fake_shutdown(self):
        shutdowns.append(self)

    monkeypatch.setattr(MCPConnection, "shutdown", fake_shutdown)
    outcome = asyncio.run(run_agent("https://example.com", planner=ScriptedPlanner([_final()])))

    assert outcome.success is True
    assert len(shutdowns) == 1
    runs = load_runs()
    assert runs[-1]["target_url"] == "https://example.com"
    assert runs[-1]["outcome"]["success"] is True
