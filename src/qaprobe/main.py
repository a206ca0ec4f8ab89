"""
qaprobe entry point.

This file handles startup concerns (arg-parsing, env setup, logging) and launches the appropriate
interface: the REST API, the CLI client talking to it, or a single in-process run.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from qaprobe.config import settings
from qaprobe.core.errors import MissingCredentialError
from qaprobe.core.schema import LogEvent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # The OpenAI SDK logs every request through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _read_schema(path: str | None) -> str | None:
    if not path:
        return None
    return Path(path).read_text(encoding="utf-8")


def _run_local(url: str, schema: str | None) -> int:
    """Run the agent in this process and print its events as they happen."""
    # Lazy import so `--mode api` does not pull in the MCP client up front
    from qaprobe.agent.agent_loop import (  # pylint: disable=import-outside-toplevel
        run_agent,
    )
    from qaprobe.client.cli import (  # pylint: disable=import-outside-toplevel
        print_outcome,
    )
    from qaprobe.common import (  # pylint: disable=import-outside-toplevel
        print_event,
    )

    def on_log(event: LogEvent) -> None:
        print_event(event.type, event.message, event.timestamp)

    try:
        outcome = asyncio.run(run_agent(url, schema, on_log))
    except MissingCredentialError as exc:
        logger.error("%s", exc)
        return 1

    print_outcome(outcome.model_dump())
    return 0 if outcome.success else 1


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the qaprobe application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in API, CLI or single-run mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Autonomous web QA agent")
    parser.add_argument(
        "--mode",
        choices=["api", "cli", "run"],
        type=str.lower,
        default="run",
        help="Serve the REST API, call a running API from the CLI, or run once in-process "
        "(default: %(default)s)",
    )
    parser.add_argument("--url", help="Web application to test (cli and run modes)")
    parser.add_argument("--schema-file", help="Swagger/OpenAPI document to give the agent")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    if args.mode in ("cli", "run") and not args.url:
        parser.error(f"--url is required in {args.mode} mode")

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level
    _init_logging(settings.LOG_LEVEL)

    # Ensure the data directory exists and is writable
    data_dir = Path(settings.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    if not data_dir.is_dir() or not os.access(data_dir, os.W_OK):
        logger.error("Data directory is not writable: %s", data_dir)
        sys.exit(1)

    logger.info("Starting qaprobe [%s mode]", args.mode)
    logger.debug("Settings: %s", settings.model_dump(exclude={"OPENAI_API_KEY"}))

    try:
        schema = _read_schema(args.schema_file)
    except OSError as exc:
        parser.error(f"cannot read schema file: {exc}")

    if args.mode == "api":
        # Lazy import to avoid web dependencies if not needed
        from qaprobe.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
    elif args.mode == "cli":
        from qaprobe.client.cli import run_cli  # pylint: disable=import-outside-toplevel

        sys.exit(0 if run_cli(args.url, schema) else 1)
    else:
        sys.exit(_run_local(args.url, schema))


if __name__ == "__main__":
    main()
