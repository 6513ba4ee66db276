# ==============================================================================
# Shared Utilities for CLI Commands
# ==============================================================================
"""
Shared utilities, constants, and helper functions used across CLI command modules.

This module provides:
- ANSI color codes and box-drawing characters
- Box drawing helpers for formatted output
- Error reporting for engine failures
"""

import json
import re
from datetime import date
from typing import Any, NoReturn

import typer
from pydantic import BaseModel

from sitemetrics.core.errors import AnalyticsError

# ==============================================================================
# Constants
# ==============================================================================

# Box drawing width (unified for all commands)
BOX_WIDTH = 68


# ==============================================================================
# ANSI Colors and Box Drawing
# ==============================================================================


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"


class Box:
    """Unicode box-drawing characters."""

    H = "─"  # horizontal
    V = "│"  # vertical
    TL = "┌"  # top-left
    TR = "┐"  # top-right
    BL = "└"  # bottom-left
    BR = "┘"  # bottom-right


class Icons:
    """Status icons using Unicode symbols."""

    CHECK = "✓"
    CROSS = "✗"
    WARN = "!"
    DATABASE = "◆"


# Module-level aliases for convenience
C, B, I = Colors, Box, Icons


# ==============================================================================
# Box Drawing Helpers
# ==============================================================================

# Regex pattern for stripping ANSI escape codes
_ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def _visible_len(s: str) -> int:
    """Calculate visible length of string, ignoring ANSI escape codes."""
    return len(_ANSI_ESCAPE_PATTERN.sub("", s))


def _box_header(title: str, width: int = BOX_WIDTH) -> str:
    """Create a single-line box header."""
    inner_width = width - 2
    title_padded = f" {title} "
    left_bar = (inner_width - len(title_padded)) // 2
    right_bar = inner_width - left_bar - len(title_padded)
    return (
        f"{C.CYAN}{B.TL}{B.H * left_bar}{C.BOLD}{C.WHITE}{title_padded}"
        f"{C.RESET}{C.CYAN}{B.H * right_bar}{B.TR}{C.RESET}"
    )


def _box_line(content: str, width: int = BOX_WIDTH) -> str:
    """Create a line inside the box with proper padding to right border."""
    padding = width - 2 - _visible_len(content)
    return f"{C.CYAN}{B.V}{C.RESET}{content}{' ' * padding}{C.CYAN}{B.V}{C.RESET}"


def _empty_line(width: int = BOX_WIDTH) -> str:
    """Create an empty line inside the box."""
    return f"{C.CYAN}{B.V}{' ' * (width - 2)}{B.V}{C.RESET}"


def _box_bottom(width: int = BOX_WIDTH) -> str:
    """Create a plain box bottom border."""
    return f"{C.CYAN}{B.BL}{B.H * (width - 2)}{B.BR}{C.RESET}"


def _status_badge(status: str, is_ok: bool) -> str:
    """Create a colored status badge."""
    if is_ok:
        return f"{C.BRIGHT_GREEN}{I.CHECK} {status}{C.RESET}"
    return f"{C.BRIGHT_RED}{I.CROSS} {status}{C.RESET}"


# ==============================================================================
# Output Helpers
# ==============================================================================


def to_jsonable(value: Any) -> Any:
    """Convert result models (or lists of them) into JSON-ready data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    return value


def print_json(value: Any) -> None:
    print(json.dumps(to_jsonable(value), indent=2))


def fail(error: AnalyticsError, json_output: bool) -> NoReturn:
    """Report an engine error and exit with status 1."""
    if json_output:
        print(json.dumps({"error": type(error).__name__, "message": str(error)}))
    else:
        print(f"\n{C.BRIGHT_RED}{I.CROSS} {error}{C.RESET}\n")
    raise typer.Exit(1)


def window_params(website: str, date_from: date, date_to: date) -> dict[str, Any]:
    """Common QueryFilters keyword arguments from CLI options."""
    return {"website_id": website, "date_from": date_from, "date_to": date_to}
