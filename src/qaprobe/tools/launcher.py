"""
Resolve how to launch the Playwright MCP server.

On POSIX hosts ``npx`` is invoked directly.  Windows needs more care because ``npx``/``npm`` are
``.cmd`` shims that cannot be spawned without a shell, so we try a few discovery strategies in
order and fall back to ``cmd.exe /c npm.cmd exec`` if none of them finds anything.
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import (
    Callable,
    List,
    NamedTuple,
    Optional,
    Union,
)

from qaprobe.config import settings

logger = logging.getLogger(__name__)


class DirectLaunch(NamedTuple):
    """Spawn *command* directly."""

    command: str
    args: List[str]


class ShellWrappedLaunch(NamedTuple):
    """Spawn through a shell (``cmd.exe /c ...``)."""

    command: str
    args: List[str]


LaunchSpec = Union[DirectLaunch, ShellWrappedLaunch]


def _is_windows() -> bool:
    return sys.platform == "win32"


def _project_npx() -> Optional[LaunchSpec]:
    """A project-local ``node_modules/.bin/npx.cmd``."""
    local = Path(settings.PROJECT_DIR).resolve() / "node_modules" / ".bin" / "npx.cmd"
    if local.exists():
        logger.info("Found local npx at: %s", local)
        return DirectLaunch(str(local), ["-y", settings.MCP_PACKAGE])
    return None


def _npm_next_to_node() -> Optional[LaunchSpec]:
    """``npm.cmd`` installed alongside the ``node`` executable."""
    node = shutil.which("node")
    if not node:
        return None
    npm = Path(node).parent / "npm.cmd"
    if npm.exists():
        logger.info("Using npm from node directory: %s", npm)
        return ShellWrappedLaunch("cmd.exe", ["/c", str(npm), "exec", "-y", settings.MCP_PACKAGE])
    return None


def _npm_via_where() -> Optional[LaunchSpec]:
    """Ask ``where`` for ``npm.cmd``."""
    proc = subprocess.run(
        ["where", "npm.cmd"],
        capture_output=True,
        text=True,
        timeout=10,
        check=False,
    )
    lines = [line.strip() for line in (proc.stdout or "").splitlines() if line.strip()]
    if proc.returncode == 0 and lines and os.path.exists(lines[0]):
        logger.info("Found npm via where command: %s", lines[0])
        return ShellWrappedLaunch("cmd.exe", ["/c", "npm.cmd", "exec", "-y", settings.MCP_PACKAGE])
    return None


_WINDOWS_STRATEGIES: List[Callable[[], Optional[LaunchSpec]]] = [
    _project_npx,
    _npm_next_to_node,
    _npm_via_where,
]


def resolve_launch_command() -> LaunchSpec:
    """
    Return the command used to start the MCP server.

    Never raises: a strategy that errors is skipped, and when every strategy comes up empty the
    most permissive shell-wrapped invocation is returned.
    """
    if not _is_windows():
        return DirectLaunch("npx", ["-y", settings.MCP_PACKAGE])

    for strategy in _WINDOWS_STRATEGIES:
        try:
            spec = strategy()
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Launch strategy %s failed: %s", strategy.__name__, exc)
            continue
        if spec is not None:
            return spec

    logger.warning("Using npm.cmd via cmd.exe (assuming it's in PATH)")
    return ShellWrappedLaunch("cmd.exe", ["/c", "npm.cmd", "exec", "-y", settings.MCP_PACKAGE])
