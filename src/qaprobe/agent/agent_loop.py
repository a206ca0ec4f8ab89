"""
Main orchestration loop for qaprobe.

One run drives the planner until it returns a final answer or the iteration bound is hit:

    transcript -> planner -> (final answer | tool calls) -> dispatcher -> transcript

Tool calls within an iteration run strictly in order, and every assistant message with tool
calls is followed by exactly one ``tool`` message per call before the planner is asked again.
Tool failures are recorded in the transcript, never raised; only a missing API key aborts a run
before it starts.
"""

from __future__ import annotations

import logging
import re
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
)

from qaprobe.agent.guard import NavigationLoopGuard
from qaprobe.agent.mcp_client import MCPConnection
from qaprobe.agent.planner_interface import (
    BasePlanner,
    load_planner,
)
from qaprobe.agent.prompts import (
    build_system_prompt,
    build_user_prompt,
)
from qaprobe.agent.tool_executor import (
    execute_tool,
    get_all_tools,
)
from qaprobe.config import settings
from qaprobe.core.errors import (
    MaxIterationsExceeded,
    MissingCredentialError,
)
from qaprobe.core.schema import (
    FinalReport,
    LogEvent,
    LogEventType,
    LoopState,
    RunOutcome,
    ToolCall,
    ToolResult,
    utc_timestamp,
)
from qaprobe.memory.run_store import save_run
from qaprobe.tools import LocalTool

logger = logging.getLogger(__name__)

LogCallback = Callable[[LogEvent], None]

SAVE_TOOL = "saveTestFile"
RUN_TOOL = "runPlaywrightTests"
LIST_TOOL = "listTestFiles"
DEFAULT_FINAL_MESSAGE = "Agent completed successfully."

_LOG_LEVELS = {
    "info": logging.INFO,
    "agent": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.+?)\s*```$", re.DOTALL)


def _strip_code_fence(text: str) -> str:
    """Drop a markdown code fence some models wrap around their JSON."""
    match = _CODE_FENCE.match(text.strip())
    return match.group(1) if match else text


def format_final_answer(content: str) -> str:
    """Format the planner's final JSON report, or return the raw text if it is not one."""
    report = FinalReport.parse(_strip_code_fence(content))
    return report.format() if report is not None else content


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------
class QAAgent:
    """Explores a site, writes Playwright tests and runs them, driven by a planner LLM."""

    def __init__(
        self,
        planner: BasePlanner,
        connection: Optional[MCPConnection] = None,
        max_iterations: Optional[int] = None,
        local_tools: Optional[Iterable[LocalTool]] = None,
        record_runs: bool = True,
    ) -> None:
        self.planner = planner
        self.connection = connection
        self.max_iterations = settings.MAX_ITERATIONS if max_iterations is None else max_iterations
        self.local_tools = list(local_tools) if local_tools is not None else None
        self.record_runs = record_runs
        self.state = LoopState()
        self._on_log: Optional[LogCallback] = None

    def _emit(self, event_type: LogEventType, message: str) -> None:
        logger.log(_LOG_LEVELS[event_type], message)
        if self._on_log is not None:
            self._on_log(LogEvent(type=event_type, message=message))

    async def run(
        self, target_url: str, schema: Optional[str] = None, on_log: Optional[LogCallback] = None
    ) -> RunOutcome:
        """
        Run the agent against *target_url*.

        Parameters
        ----------
        target_url:
            Site to explore and test.
        schema:
            Optional Swagger/OpenAPI document given to the planner as extra context.
        on_log:
            Observer called with every :class:`LogEvent`.

        Returns
        -------
        RunOutcome
            Never raises; failures are reported through ``success=False`` and ``error``.
        """
        self._on_log = on_log
        self.state = LoopState()
        started_at = utc_timestamp()

        try:
            outcome = await self._run(target_url, schema)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Agent run against %s aborted", target_url)
            self._emit("error", f"Agent error: {exc}")
            outcome = RunOutcome(success=False, error=str(exc))

        if self.record_runs:
            save_run(target_url, started_at, outcome)
        return outcome

    async def _run(self, target_url: str, schema: Optional[str]) -> RunOutcome:
        if self.connection is not None:
            await self.connection.initialize()
        tools, local_table = await get_all_tools(self.connection, self.local_tools)

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(target_url, schema)},
            {"role": "user", "content": build_user_prompt(target_url)},
        ]
        guard = NavigationLoopGuard()

        while self.state.iteration_count < self.max_iterations:
            self._emit("agent", f"Agent iteration {self.state.iteration_count + 1}: Thinking...")

            assistant = await self.planner.complete(messages, tools)
            messages.append(assistant)

            raw_calls = assistant.get("tool_calls") or []
            if not raw_calls:
                return await self._finish(assistant.get("content"), local_table)

            for raw_call in raw_calls:
                call = ToolCall.from_openai(raw_call)
                result = await self._handle_call(call, guard, local_table)
                self.state.consecutive_guarded_calls = guard.consecutive
                messages.append(
                    {"role": "tool", "tool_call_id": call.id, "content": result.to_content()}
                )

            self.state.iteration_count += 1

        error = MaxIterationsExceeded(self.max_iterations)
        self._emit("error", str(error))
        return RunOutcome(success=False, error=str(error))

    async def _handle_call(
        self, call: ToolCall, guard: NavigationLoopGuard, local_table: Dict[str, LocalTool]
    ) -> ToolResult:
        args = call.parse_arguments()
        file_note = f" ({args['filePath']})" if isinstance(args.get("filePath"), str) else ""
        self._emit("info", f"Executing tool: {call.name}{file_note}")

        blocked = guard.check(call.name)
        if blocked is not None:
            self._emit("warning", blocked.error_message or "Tool call blocked")
            return blocked

        result = await execute_tool(call.name, args, local_table, self.connection)

        if call.name == SAVE_TOOL and result.success:
            self._emit("success", f"✓ Test file saved: {args.get('filePath')}")
        elif call.name == RUN_TOOL:
            self._emit(
                "success" if result.success else "warning",
                f"Test execution {'completed' if result.success else 'failed'}",
            )
        elif not result.success:
            self._emit("error", f"Tool execution failed: {result.error_message}")
        return result

    async def _finish(
        self, content: Optional[str], local_table: Dict[str, LocalTool]
    ) -> RunOutcome:
        summary = format_final_answer(content or DEFAULT_FINAL_MESSAGE)
        self._emit("success", f"Agent completed:\n{summary}")
        return RunOutcome(
            success=True, message=summary, test_files=await self._saved_test_files(local_table)
        )

    async def _saved_test_files(self, local_table: Dict[str, LocalTool]) -> List[str]:
        if LIST_TOOL not in local_table:
            return []
        listed = await execute_tool(LIST_TOOL, {}, local_table, None)
        if not listed.success or not isinstance(listed.payload, dict):
            return []
        files = (listed.payload.get("result") or {}).get("files")
        return list(files) if isinstance(files, list) else []


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
async def run_agent(
    target_url: str,
    schema: Optional[str] = None,
    on_log: Optional[LogCallback] = None,
    *,
    planner: Optional[BasePlanner] = None,
    connection: Optional[MCPConnection] = None,
    max_iterations: Optional[int] = None,
) -> RunOutcome:
    """
    Run one agent session and return its outcome.

    When no *connection* is passed, one is created for this run and shut down afterwards.

    Raises
    ------
    MissingCredentialError
        If no planner is given and ``OPENAI_API_KEY`` is not configured.
    """
    if planner is None:
        if not settings.OPENAI_API_KEY:
            raise MissingCredentialError("OPENAI_API_KEY environment variable is not set")
        planner = load_planner("openai")

    owned = connection is None
    if connection is None:
        connection = MCPConnection()

    agent = QAAgent(planner, connection=connection, max_iterations=max_iterations)
    try:
        return await agent.run(target_url, schema, on_log)
    finally:
        if owned:
            await connection.shutdown()
