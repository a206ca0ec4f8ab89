"""
Aggregates local and MCP tools and dispatches tool calls.

Every call ends up as a :class:`~qaprobe.core.schema.ToolResult`:

* local tools are run directly and never reach the MCP server, even when it defines a tool with
  the same name;
* raw MCP results come in several shapes (an ``isError`` flag, error text inside the content
  array, or a plain structured result) and are normalised by :func:`normalize_mcp_result`;
* exceptions are sorted by :func:`classify_error`.  A dropped connection or a timeout is an
  expected, transient event: the planner gets an informational (successful) result and may
  reissue the call.  Anything else becomes a failed result.  Tool failures never raise out of
  :func:`execute_tool`.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
    Union,
)

import anyio

from qaprobe.agent.mcp_client import MCPConnection
from qaprobe.core.errors import (
    ClientNotInitializedError,
    ToolExecutionError,
)
from qaprobe.core.schema import (
    ToolDescriptor,
    ToolResult,
)
from qaprobe.tools import (
    LocalTool,
    get_local_tools,
)

logger = logging.getLogger(__name__)

UNKNOWN_MCP_ERROR = "Unknown error from MCP tool"


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
async def get_all_tools(
    connection: Optional[MCPConnection],
    local_tools: Optional[Iterable[LocalTool]] = None,
) -> Tuple[List[ToolDescriptor], Dict[str, LocalTool]]:
    """
    Return every tool the planner may call and the table of local tools.

    MCP tools come first, then local tools, each in the order their source lists them.  A remote
    tool whose name collides with a local one is dropped.
    """
    local_table = {tool.name: tool for tool in (local_tools or get_local_tools())}

    remote: List[ToolDescriptor] = []
    if connection is not None:
        for descriptor in await connection.list_tools():
            if descriptor.name in local_table:
                logger.warning("MCP tool '%s' is shadowed by a local tool", descriptor.name)
                continue
            remote.append(descriptor)

    all_tools = remote + [tool.descriptor for tool in local_table.values()]
    logger.info("Tools available: %d MCP, %d local", len(remote), len(local_table))
    return all_tools, local_table


# ---------------------------------------------------------------------------
# MCP result normalisation
# ---------------------------------------------------------------------------
class ExternalStructured(NamedTuple):
    """A successful MCP result, passed through untouched."""

    raw: Any


class ExternalErrorFlagged(NamedTuple):
    """An MCP result carrying ``isError``."""

    message: str


class ExternalTextError(NamedTuple):
    """An MCP result whose text content reports an error."""

    message: str


ExternalResult = Union[ExternalStructured, ExternalErrorFlagged, ExternalTextError]


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _text_items(raw: Any) -> List[str]:
    content = _field(raw, "content")
    if not isinstance(content, (list, tuple)):
        return []
    texts = []
    for item in content:
        text = _field(item, "text")
        if _field(item, "type") == "text" and isinstance(text, str) and text:
            texts.append(text)
    return texts


def _error_text(text: str) -> Optional[str]:
    """Return the error message if *text* reports an error, else *None*."""
    lowered = text.lower()
    marker = lowered.find("error:")
    if marker >= 0:
        return text[marker + len("error:") :].strip() or text
    if "unknown error" in lowered:
        return text
    return None


def classify_mcp_result(raw: Any) -> ExternalResult:
    """Sort a raw MCP tool result into one of the known shapes."""
    texts = _text_items(raw)
    if _field(raw, "isError"):
        for text in texts:
            message = _error_text(text)
            if message is not None:
                return ExternalErrorFlagged(message)
        if texts:
            return ExternalErrorFlagged(texts[0])
        message = _field(raw, "message")
        return ExternalErrorFlagged(message if isinstance(message, str) and message else UNKNOWN_MCP_ERROR)
    for text in texts:
        message = _error_text(text)
        if message is not None:
            return ExternalTextError(message)
    return ExternalStructured(raw)


def normalize_mcp_result(raw: Any) -> ToolResult:
    """Map a raw MCP tool result to the canonical :class:`ToolResult`."""
    shape = classify_mcp_result(raw)
    if isinstance(shape, ExternalStructured):
        return ToolResult.ok(shape.raw)
    return ToolResult.fail(shape.message)


def normalize_local_result(result: Any) -> ToolResult:
    """Wrap a local tool's ``{"success": ..., ...}`` dict (or bare value)."""
    if isinstance(result, Mapping) and "success" in result:
        success = bool(result["success"])
        error = result.get("error")
        return ToolResult(
            success=success,
            payload=dict(result),
            error_message=None if success else str(error or "Local tool failed"),
        )
    return ToolResult.ok(result)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------
class ErrorKind(str, Enum):
    """How a tool-call exception is handled."""

    CONNECTION_LOST = "connection_lost"
    TIMEOUT = "timeout"
    FATAL = "fatal"


_CONNECTION_LOST_PATTERNS = ("connection closed", "not connected")
_TIMEOUT_PATTERNS = ("timed out", "timeout")
_CONNECTION_LOST_TYPES = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream)


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Decide whether a tool-call exception is transient.

    The MCP SDK reports most transport problems only through the message text, so apart from a
    few exception types this matches on message substrings.  Keep all such matching here.
    """
    if isinstance(exc, _CONNECTION_LOST_TYPES):
        return ErrorKind.CONNECTION_LOST
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT

    message = str(exc).lower()
    if any(pattern in message for pattern in _CONNECTION_LOST_PATTERNS):
        return ErrorKind.CONNECTION_LOST
    if any(pattern in message for pattern in _TIMEOUT_PATTERNS):
        return ErrorKind.TIMEOUT
    return ErrorKind.FATAL


def _informational(text: str) -> ToolResult:
    return ToolResult.ok({"content": [{"type": "text", "text": text}]})


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
async def _run_local(tool: LocalTool, args: Dict[str, Any]) -> ToolResult:
    if inspect.iscoroutinefunction(tool.execute):
        result = await tool.execute(args)
    else:
        result = await asyncio.to_thread(tool.execute, args)
    return normalize_local_result(result)


async def execute_tool(
    name: str,
    args: Dict[str, Any],
    local_tools: Mapping[str, LocalTool],
    connection: Optional[MCPConnection],
) -> ToolResult:
    """
    Run tool *name* with *args* and return its normalised result.

    Parameters
    ----------
    name:
        Tool name requested by the planner.
    args:
        Parsed argument object.
    local_tools:
        Table of local tools; checked before the MCP server.
    connection:
        The MCP connection, or *None* for local tools only.
    """
    local = local_tools.get(name)
    if local is not None:
        logger.debug("Executing local tool '%s' with args=%s", name, args)
        try:
            return await _run_local(local, args)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unhandled error in local tool '%s'", name)
            return ToolResult.fail(str(ToolExecutionError(name, str(exc))))

    try:
        if connection is not None and not connection.active and connection.lost:
            logger.info("Reconnecting to MCP server before calling '%s'", name)
            await connection.initialize()
        if connection is None or not connection.active:
            raise ClientNotInitializedError()

        logger.info("Executing MCP tool: %s", name)
        raw = await connection.call_tool(name, args)
        return normalize_mcp_result(raw)

    except ClientNotInitializedError as exc:
        logger.warning("Cannot run '%s': %s", name, exc)
        return ToolResult.fail(str(exc))

    except Exception as exc:  # pylint: disable=broad-except
        kind = classify_error(exc)
        if kind is ErrorKind.CONNECTION_LOST:
            logger.warning("MCP connection lost for tool '%s'. Browser may still be starting.", name)
            if connection is not None:
                await connection.invalidate()
            return _informational("MCP connection lost. Reinitializing browser connection...")
        if kind is ErrorKind.TIMEOUT:
            logger.warning("Tool '%s' timed out. Browser may be slow to respond.", name)
            return _informational(f'Tool "{name}" timed out. Retrying...')

        logger.error("MCP tool execution error for %s: %s", name, exc)
        return ToolResult.fail(str(ToolExecutionError(name, str(exc) or type(exc).__name__)))
