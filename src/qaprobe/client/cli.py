"""CLI client for the qaprobe API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    cast,
)

import httpx

from qaprobe.common import (
    AnsiColors,
    colored_print,
    print_event,
)
from qaprobe.config import settings

logger = logging.getLogger(__name__)

# Agent runs take minutes; only the connect phase should fail fast
RUN_TIMEOUT = httpx.Timeout(None, connect=10.0)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def call_api(endpoint: str, data: Dict[str, Any], max_retries: int = 5) -> Dict[str, Any]:
    """Make a POST request to the API and return the response with retries."""
    api_url = f"http://localhost:{settings.API_PORT}{endpoint}"

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=RUN_TIMEOUT) as client:
                response = client.post(api_url, json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.ConnectError as e:
            # On connection refused, retry with exponential backoff
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                time.sleep(retry_delay)
                continue
            logger.error("API request error: %s", str(e))
            return {"success": False, "error": f"Error connecting to API: {str(e)}"}
        except httpx.HTTPStatusError as e:
            error_msg = f"API error: {e.response.status_code}"
            try:
                error_data = e.response.json()
                if "detail" in error_data:
                    error_msg = f"API error: {error_data['detail']}"
            except ValueError:
                pass
            logger.error("API request error: %s", error_msg)
            return {"success": False, "error": error_msg}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            return {"success": False, "error": f"Error connecting to API: {str(e)}"}

    # If we've exhausted all retries without returning
    return {"success": False, "error": f"Failed to connect to API after {max_retries} attempts"}


def print_outcome(outcome: Dict[str, Any]) -> None:
    """Print a run outcome returned by the API or by an in-process run."""
    if outcome.get("success"):
        colored_print(outcome.get("message") or "Agent completed.", AnsiColors.GREEN)
        files = outcome.get("test_files") or []
        if files:
            colored_print("Test files:\n  " + "\n  ".join(files), AnsiColors.BLUE)
    else:
        colored_print(f"Run failed: {outcome.get('error') or 'unknown error'}", AnsiColors.RED)


def run_cli(url: str, schema: str | None = None) -> bool:
    """Ask the API to test *url*, print its events and outcome; return whether it succeeded."""
    colored_print(f"\nqaprobe - testing {url} (this can take several minutes)", AnsiColors.YELLOW)

    payload: Dict[str, Any] = {"url": url}
    if schema:
        payload["schema"] = schema
    response = call_api("/runs", payload)

    for event in response.get("logs") or []:
        print_event(event.get("type", "info"), event.get("message", ""), event.get("timestamp", ""))
    print_outcome(response)
    return bool(response.get("success"))
