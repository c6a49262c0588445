"""Logging utilities for Townsquare agent ticks.

Every console line is tagged by the kind of work that produced it, so a run
log shows at a glance which steps were deterministic (dispatch, ranking) and
which went to the language model. Tags stay readable with colour switched off.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI escape per kind of operation."""

    DETERMINISTIC = "\033[94m"  # blue
    LLM = "\033[93m"            # yellow
    ERROR = "\033[91m"          # red
    SUCCESS = "\033[92m"        # green
    INFO = "\033[96m"           # cyan

    BOLD = "\033[1m"
    RESET = "\033[0m"


def colors_enabled() -> bool:
    """Colour is on unless TOWNSQUARE_NO_COLOR or the common NO_COLOR is set."""
    return not (os.getenv("TOWNSQUARE_NO_COLOR") or os.getenv("NO_COLOR"))


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Return ``text`` wrapped in the escape for ``color`` (plain when disabled)."""
    if not colors_enabled():
        return text
    codes = (Color.BOLD.value if bold else "") + color.value
    return f"{codes}{text}{Color.RESET.value}"


def debug_enabled(flag: str) -> bool:
    """Return True when the named DEBUG_* environment flag is switched on."""
    return os.getenv(flag, "").lower() in ("1", "true", "yes")


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[LLM]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"

_TAGS = {
    Color.DETERMINISTIC: LOG_TAG_DETERMINISTIC,
    Color.LLM: LOG_TAG_LLM,
    Color.ERROR: LOG_TAG_ERROR,
    Color.SUCCESS: LOG_TAG_SUCCESS,
    Color.INFO: LOG_TAG_INFO,
}


def _emit(kind: Color, message: str) -> None:
    print(colored(f"{_TAGS[kind]} {message}", kind))


def log_deterministic(message: str) -> None:
    """Dispatch outcomes, memory ranking and other local steps."""
    _emit(Color.DETERMINISTIC, message)


def log_llm(message: str) -> None:
    """Completion and embedding calls."""
    _emit(Color.LLM, message)


def log_error(message: str) -> None:
    """Failed ticks and retries."""
    _emit(Color.ERROR, message)


def log_success(message: str) -> None:
    """Actions the world accepted."""
    _emit(Color.SUCCESS, message)


def log_info(message: str) -> None:
    _emit(Color.INFO, message)


def preview(text: str, limit: int = 80) -> str:
    """Single-line preview of ``text`` for log output."""
    flat = " ".join(text.split())
    if len(flat) > limit:
        return flat[: limit - 3] + "..."
    return flat
