"""Persist finished runs to a lightweight JSON-lines log."""

import json
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
)

from qaprobe.config import settings
from qaprobe.core.schema import (
    RunOutcome,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


def _log_path() -> Path:
    return Path(settings.DATA_DIR) / "runs.jsonl"


def init_run_store() -> None:
    """
    Initialize the run store by ensuring the log file exists.
    This is called at application startup to prepare the environment.
    """
    path = _log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.touch()  # Create an empty file if it doesn't exist


def save_run(target_url: str, started_at: str, outcome: RunOutcome) -> None:
    """
    Append one finished run to the audit trail.

    Only the outcome is recorded; the conversation transcript is never persisted.
    """
    record = {
        "target_url": target_url,
        "started_at": started_at,
        "finished_at": utc_timestamp(),
        "outcome": outcome.model_dump(),
    }
    try:
        init_run_store()
        with _log_path().open("a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
    except OSError as exc:
        logger.error("Failed to record run for %s: %s", target_url, exc)


def load_runs(limit: int | None = None) -> List[Dict[str, Any]]:
    """Return recorded runs, oldest first; the last *limit* only if given."""
    path = _log_path()
    if not path.exists():
        return []
    runs = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                runs.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt run record: %s", line[:80])
    if limit is not None:
        runs = runs[-limit:] if limit > 0 else []
    return runs
