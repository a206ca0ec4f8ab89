"""Blocks runaway ``browser_navigate_back`` loops before they reach the browser."""

import logging
from typing import Optional

from qaprobe.core.schema import ToolResult

logger = logging.getLogger(__name__)

NAVIGATE_BACK_TOOL = "browser_navigate_back"
MAX_CONSECUTIVE_BACK = 2

BLOCKED_MESSAGE = (
    f"Blocked {NAVIGATE_BACK_TOOL}: navigation history likely exhausted. "
    "Instead, navigate using explicit URLs (browser_navigate) or click links/buttons."
)


class NavigationLoopGuard:
    """
    Counts consecutive back-navigation requests.

    The third and every later consecutive ``browser_navigate_back`` is blocked; any other tool
    call resets the count.
    """

    def __init__(self, tool_name: str = NAVIGATE_BACK_TOOL, threshold: int = MAX_CONSECUTIVE_BACK):
        self.tool_name = tool_name
        self.threshold = threshold
        self.consecutive = 0

    @property
    def blocked(self) -> bool:
        return self.consecutive > self.threshold

    def check(self, tool_name: str) -> Optional[ToolResult]:
        """Record a request; return the canned error result if it must be skipped."""
        if tool_name != self.tool_name:
            self.consecutive = 0
            return None

        self.consecutive += 1
        if not self.blocked:
            return None
        logger.warning("Blocked %s call #%d in a row", tool_name, self.consecutive)
        return ToolResult.fail(BLOCKED_MESSAGE)
