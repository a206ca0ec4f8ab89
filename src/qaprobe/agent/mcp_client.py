"""
Connection to the Playwright MCP server.

:class:`MCPConnection` owns the stdio transport (the server subprocess) and the connected
``ClientSession``.  It is created once per process (or per test), handed by reference to the tool
aggregator and dispatcher, and is **not** safe to share between concurrent runs.

Failures never propagate out of :meth:`MCPConnection.initialize` or
:meth:`MCPConnection.list_tools`: the agent degrades to local tools only.
"""

import asyncio
import logging
import os
import subprocess
from contextlib import AsyncExitStack
from pathlib import Path
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
)

from mcp import (
    ClientSession,
    StdioServerParameters,
)
from mcp.client.stdio import stdio_client
from mcp.types import Implementation

from qaprobe.config import settings
from qaprobe.core.errors import ClientNotInitializedError
from qaprobe.core.schema import ToolDescriptor
from qaprobe.tools.launcher import resolve_launch_command

logger = logging.getLogger(__name__)

CLIENT_NAME = "qaprobe"
CLIENT_VERSION = "0.1.0"

Connector = Callable[[AsyncExitStack], Awaitable[Any]]
"""Opens a transport inside the exit stack and returns an initialised session."""


# ---------------------------------------------------------------------------
# Environment preparation
# ---------------------------------------------------------------------------
def browsers_path() -> str:
    """Where Playwright keeps its downloaded browsers."""
    return settings.PLAYWRIGHT_BROWSERS_PATH or str(Path.home() / ".cache" / "ms-playwright")


def ensure_playwright_browser() -> None:
    """
    Install the bundled Chromium build if it is missing.

    The install command is idempotent.  Any failure is only logged: the browser may already be
    present, and the MCP server will try on its own otherwise.
    """
    path = browsers_path()
    logger.info("Ensuring Playwright Chromium browser is installed (%s)", path)
    try:
        subprocess.run(
            ["npx", "playwright", "install", "chromium"],
            capture_output=True,
            text=True,
            timeout=settings.BROWSER_INSTALL_TIMEOUT,
            check=True,
            env={**os.environ, "PLAYWRIGHT_BROWSERS_PATH": path},
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("Could not install Chromium: %s", exc)
        logger.warning("Browser installation will be attempted by the MCP server if needed")
        return
    logger.info("Playwright Chromium browser ready")


async def _connect_stdio(stack: AsyncExitStack) -> ClientSession:
    """Start the MCP server as a subprocess and open a session on its stdio."""
    launch = resolve_launch_command()
    logger.info("Initializing MCP client with: %s %s", launch.command, " ".join(launch.args))

    params = StdioServerParameters(
        command=launch.command,
        args=list(launch.args),
        env={**os.environ, "PLAYWRIGHT_BROWSERS_PATH": browsers_path()},
    )
    read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
    session = await stack.enter_async_context(
        ClientSession(
            read_stream,
            write_stream,
            client_info=Implementation(name=CLIENT_NAME, version=CLIENT_VERSION),
        )
    )
    await session.initialize()
    return session


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------
class MCPConnection:
    """
    Lazily-started, reusable session to the MCP tool server.

    The transport is entered and exited by a single owner task.  ``stdio_client`` keeps an anyio
    task group open for the life of the session, and a task group can only be closed by the task
    that opened it, so :meth:`shutdown` signals the owner instead of closing the stack itself.
    """

    def __init__(
        self,
        connector: Optional[Connector] = None,
        prepare: Optional[Callable[[], None]] = ensure_playwright_browser,
        skip: Optional[bool] = None,
    ) -> None:
        self._connector = connector or _connect_stdio
        self._prepare = prepare
        self._skip = settings.SKIP_MCP if skip is None else skip
        self._owner: Optional["asyncio.Task[None]"] = None
        self._closing: Optional[asyncio.Event] = None
        self._session: Optional[Any] = None
        self.lost = False  # set when the session dropped and should be re-created

    @property
    def active(self) -> bool:
        """Whether a session is currently connected."""
        return self._session is not None

    @property
    def skipped(self) -> bool:
        """Whether MCP is disabled by configuration."""
        return self._skip

    async def initialize(self) -> None:
        """Connect if not already connected; a no-op when connected or disabled."""
        if self._session is not None:
            return
        if self._skip:
            logger.info("Skipping MCP initialization (SKIP_MCP=true). Using local tools only.")
            return

        if self._prepare is not None:
            try:
                await asyncio.to_thread(self._prepare)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Browser preparation failed: %s", exc)

        ready: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        closing = asyncio.Event()
        owner = asyncio.create_task(self._own_transport(ready, closing), name="mcp-transport")
        try:
            session = await ready
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to initialize MCP client: %s", exc)
            logger.warning("Falling back to local tools only")
            await owner
            return

        self._owner = owner
        self._closing = closing
        self._session = session
        self.lost = False
        logger.info("MCP client connected successfully")

    async def _own_transport(self, ready: "asyncio.Future[Any]", closing: asyncio.Event) -> None:
        """Open the transport, publish the session, and hold it open until *closing* is set."""
        stack = AsyncExitStack()
        try:
            session = await self._connector(stack)
            ready.set_result(session)
            await closing.wait()
        except Exception as exc:  # pylint: disable=broad-except
            if not ready.done():
                ready.set_exception(exc)
            else:
                logger.error("MCP transport failed: %s", exc)
        finally:
            if not ready.done():
                ready.cancel()
            await self._close_stack(stack)

    async def list_tools(self) -> List[ToolDescriptor]:
        """Discover the server's tools; an empty list if none can be listed."""
        if self._session is None:
            return []
        try:
            response = await self._session.list_tools()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Could not list MCP tools, using local tools only: %s", exc)
            await self.invalidate()
            return []

        descriptors = []
        for tool in getattr(response, "tools", response) or []:
            schema = getattr(tool, "inputSchema", None)
            if not isinstance(schema, dict):
                schema = {"type": "object", "properties": {}}
            descriptors.append(
                ToolDescriptor(
                    name=tool.name,
                    description=getattr(tool, "description", None) or "",
                    parameters=schema,
                )
            )
        logger.debug("Discovered %d MCP tools", len(descriptors))
        return descriptors

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke a remote tool and return the raw MCP result."""
        if self._session is None:
            raise ClientNotInitializedError()
        return await self._session.call_tool(name, arguments=arguments)

    async def invalidate(self) -> None:
        """Drop a dead session so the next use reconnects."""
        logger.warning("MCP session invalidated")
        await self.shutdown()
        self.lost = True

    async def shutdown(self) -> None:
        """Close the transport and forget the session.  Never raises."""
        owner, closing = self._owner, self._closing
        self._owner = self._closing = None
        self._session = None
        if owner is None or owner.done():
            return
        closing.set()
        await owner

    @staticmethod
    async def _close_stack(stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Error closing MCP transport: %s", exc)
