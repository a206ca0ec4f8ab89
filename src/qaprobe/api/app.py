"""
Core API backend for qaprobe.

It exposes the following endpoints:
- **GET /health** - liveness probe for health checks.
- **POST /runs**  - run the agent against a URL: {"url": "...", "schema": "..."}
- **GET /runs**   - recorded run history.
- **GET /tests**  - generated test files on disk.

Runs are serialised: the MCP connection is shared by the whole process and is not re-entrant.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    List,
    Optional,
)

from fastapi import (
    FastAPI,
    HTTPException,
)

from qaprobe.agent.agent_loop import run_agent
from qaprobe.agent.mcp_client import MCPConnection
from qaprobe.api.models import (
    RunHistoryResponse,
    RunRequest,
    RunResponse,
    TestFilesResponse,
)
from qaprobe.common import (
    AnsiColors,
    colored_print,
)
from qaprobe.config import settings
from qaprobe.core.errors import MissingCredentialError
from qaprobe.core.schema import LogEvent
from qaprobe.memory.run_store import (
    init_run_store,
    load_runs,
)
from qaprobe.tools.test_files import list_test_files

logger = logging.getLogger(__name__)

_connection: Optional[MCPConnection] = None
_run_lock = asyncio.Lock()


def get_connection() -> MCPConnection:
    """The process-wide MCP connection, created on first use."""
    global _connection  # pylint: disable=global-statement
    if _connection is None:
        _connection = MCPConnection()
    return _connection


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Prepare storage on startup; close the MCP server on shutdown."""
    init_run_store()
    yield
    if _connection is not None:
        await _connection.shutdown()


app = FastAPI(
    title="qaprobe API",
    version="0.1.0",
    description="Autonomous web QA agent API",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/runs", response_model=RunResponse, summary="Run the agent")
async def create_run(req: RunRequest) -> RunResponse:
    """Explore *url*, generate and run tests, and return the outcome with its log events."""
    logs: List[LogEvent] = []

    async with _run_lock:
        try:
            outcome = await run_agent(
                req.url,
                req.schema_text,
                logs.append,
                connection=get_connection(),
                max_iterations=req.max_iterations,
            )
        except MissingCredentialError as exc:
            logger.error("Refusing run: %s", exc)
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    return RunResponse(**outcome.model_dump(), logs=logs)


@app.get("/runs", response_model=RunHistoryResponse, summary="Run history")
async def list_runs(limit: int = 20) -> RunHistoryResponse:
    """Return the most recent recorded runs."""
    return RunHistoryResponse(runs=load_runs(limit))


@app.get("/tests", response_model=TestFilesResponse, summary="Generated test files")
async def get_test_files() -> TestFilesResponse:
    """List the test files saved by the agent."""
    listed = list_test_files({})
    return TestFilesResponse(files=listed["result"]["files"])


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload.
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting qaprobe API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    logger.debug("API settings: %s", settings.model_dump(exclude={"OPENAI_API_KEY"}))

    colored_print(f"qaprobe API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(
        f"Visit http://localhost:{port}/docs for API documentation.",
        AnsiColors.BLUE,
    )
    uvicorn.run(
        "qaprobe.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m qaprobe.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
