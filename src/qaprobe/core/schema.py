"""
Schema definitions for planner <-> agent <-> tool messages.

These data models serve as the contract between the planner LLM, the orchestration loop, the
local tools and the MCP tool server.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.
"""

import json
import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

logger = logging.getLogger(__name__)

LogEventType = Literal["info", "warning", "error", "success", "agent"]


def utc_timestamp() -> str:
    """Return the current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
class ToolDescriptor(BaseModel):
    """A tool the planner may call, whether local or discovered over MCP."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Tool name, unique across the aggregated set")
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of the tool arguments",
    )

    def to_openai(self) -> Dict[str, Any]:
        """Render the descriptor in the chat-completions ``tools`` format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolCall(BaseModel):
    """A call that the planner wants the agent to execute."""

    id: str = Field(..., description="Identifier echoed back in the matching tool message")
    name: str = Field(..., description="Tool name")
    raw_arguments: str = Field("", description="Arguments as JSON text authored by the LLM")

    @classmethod
    def from_openai(cls, tool_call: Any) -> "ToolCall":
        """Build from an SDK tool-call object or its dict form."""
        if isinstance(tool_call, dict):
            function = tool_call.get("function") or {}
            return cls(
                id=tool_call.get("id", ""),
                name=function.get("name", ""),
                raw_arguments=function.get("arguments") or "",
            )
        return cls(
            id=tool_call.id,
            name=tool_call.function.name,
            raw_arguments=tool_call.function.arguments or "",
        )

    def parse_arguments(self) -> Dict[str, Any]:
        """
        Decode the LLM-authored arguments.

        Bad planner output must never abort the loop, so anything that is not a JSON object
        decodes to an empty dict.
        """
        if not self.raw_arguments.strip():
            return {}
        try:
            parsed = json.loads(self.raw_arguments)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON arguments for tool '%s': %r", self.name, self.raw_arguments)
            return {}
        if not isinstance(parsed, dict):
            logger.warning("Arguments for tool '%s' are not an object: %r", self.name, parsed)
            return {}
        return parsed


class ToolResult(BaseModel):
    """Canonical outcome of one tool call, local or remote."""

    success: bool
    payload: Any = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, payload: Any) -> "ToolResult":
        """Successful result carrying *payload*."""
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, message: str) -> "ToolResult":
        """Failed result; the payload mirrors what the planner sees."""
        return cls(success=False, payload={"success": False, "error": message}, error_message=message)

    def to_content(self) -> str:
        """Text appended to the transcript as the ``tool`` message content."""
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, indent=2, default=_json_default)


def _json_default(obj: Any) -> Any:
    # MCP results are pydantic models; anything else falls back to its repr
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", exclude_none=True)
    return str(obj)


# ---------------------------------------------------------------------------
# Loop bookkeeping
# ---------------------------------------------------------------------------
class LoopState(BaseModel):
    """Mutable counters for one run."""

    iteration_count: int = 0
    consecutive_guarded_calls: int = 0


class LogEvent(BaseModel):
    """A timestamped event sent to the run observer."""

    type: LogEventType
    message: str
    timestamp: str = Field(default_factory=utc_timestamp)


# ---------------------------------------------------------------------------
# Final answer
# ---------------------------------------------------------------------------
class TestResults(BaseModel):
    """Outcome of the generated tests as reported by the planner."""

    __test__ = False  # not a pytest class

    status: str = "unknown"  # usually "passed", "failed" or "unknown"; printed as given
    details: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _status_or_unknown(cls, value: Any) -> Any:
        return "unknown" if value in (None, "") else value

    @field_validator("details", mode="before")
    @classmethod
    def _details_or_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class FinalReport(BaseModel):
    """
    The JSON object the planner returns when it is done.

    Only ``summary`` is required.  Missing or ``null`` fields fall back to empty values so a
    slightly-off answer still formats.
    """

    model_config = ConfigDict(populate_by_name=True)

    summary: str
    generated_files: List[str] = Field(default_factory=list, alias="generatedFiles")
    commands_run: List[str] = Field(default_factory=list, alias="commandsRun")
    results: TestResults = Field(default_factory=TestResults)
    next_steps: List[str] = Field(default_factory=list, alias="nextSteps")

    @field_validator("generated_files", "commands_run", "next_steps", mode="before")
    @classmethod
    def _empty_list_if_null(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("results", mode="before")
    @classmethod
    def _default_results_if_null(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def parse(cls, text: str) -> Optional["FinalReport"]:
        """Return the report, or *None* when *text* is not a valid report."""
        try:
            return cls.model_validate_json(text)
        except ValidationError as exc:
            logger.debug("Final answer is not a structured report: %s", exc)
            return None

    def format(self) -> str:
        """Human-readable five-line summary."""
        return (
            f"Summary: {self.summary}\n"
            f"GeneratedFiles: {', '.join(self.generated_files) or 'none'}\n"
            f"CommandsRun: {', '.join(self.commands_run) or 'none'}\n"
            f"Results: {self.results.status} - {self.results.details}\n"
            f"NextSteps: {' | '.join(self.next_steps) or 'none'}"
        )


class RunOutcome(BaseModel):
    """What a run returns to its caller."""

    success: bool
    message: Optional[str] = None
    test_files: Optional[List[str]] = None
    error: Optional[str] = None
