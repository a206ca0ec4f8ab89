"""Exception types raised by the agent and its tool layer."""


class QAProbeError(RuntimeError):
    """Base class for all qaprobe errors."""


class MissingCredentialError(QAProbeError):
    """Raised before any LLM call when no API key is configured."""


class ClientNotInitializedError(QAProbeError):
    """Raised when a remote tool is requested but no MCP session is live."""

    def __init__(self, message: str = "MCP client not initialized") -> None:
        super().__init__(message)


class ToolExecutionError(QAProbeError):
    """Raised when a requested tool cannot run or fails."""

    def __init__(self, tool_name: str, detail: str) -> None:
        super().__init__(f'tool "{tool_name}" failed: {detail}')
        self.tool_name = tool_name
        self.detail = detail


class MaxIterationsExceeded(QAProbeError):
    """The planner never produced a final answer within the iteration bound."""

    def __init__(self, max_iterations: int) -> None:
        super().__init__(f"Agent reached maximum iterations ({max_iterations})")
        self.max_iterations = max_iterations
