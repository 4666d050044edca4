"""Logging utilities for Fracas.

Provides color-coded output to distinguish deterministic decisions (dice, scoring)
from narrative generator calls, failures, and outcomes.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic operations (scoring, dice, ledgers)
    YELLOW = "\033[93m"    # Narrative generator calls
    RED = "\033[91m"       # Errors and swallowed transient failures
    GREEN = "\033[92m"     # Outcomes (fight resolved, injury healed, peace made)
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if FRACAS_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("FRACAS_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[AI]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def log_deterministic(message: str) -> None:
    """Log a deterministic decision (blue)."""
    print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log a narrative generator operation (yellow)."""
    print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or tolerated failure (red)."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log an outcome (green)."""
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))
