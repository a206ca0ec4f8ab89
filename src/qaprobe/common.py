"""Common utility functions for the project."""

from enum import Enum
from typing import Any


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"


# Observer event type -> colour used when echoing it to a terminal
EVENT_COLORS = {
    "info": AnsiColors.BLUE,
    "warning": AnsiColors.YELLOW,
    "error": AnsiColors.RED,
    "success": AnsiColors.GREEN,
    "agent": AnsiColors.MAGENTA,
}


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def print_event(event_type: str, message: str, timestamp: str = "") -> None:
    """Echo one observer event with the colour for its type."""
    color = EVENT_COLORS.get(event_type, AnsiColors.BLUE)
    prefix = f"[{timestamp}] " if timestamp else ""
    colored_print(f"{prefix}{event_type.upper()}: {message}", color)
