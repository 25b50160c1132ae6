"""Console configuration and theme for specfit output.

This module provides the central console instance and theme used by the
logging handlers, progress bars and summary tables.
"""

import os
import sys

from rich.console import Console
from rich.theme import Theme

from specfit import __version__ as VERSION

SPECFIT_THEME = Theme(
    {
        # --- Semantic Status ---
        "success": "bold green",
        "warning": "bold yellow",
        "error": "bold red",
        "info": "cyan",
        "neutral": "dim white",
        # --- UI Structure ---
        "header": "bold cyan",
        "subheader": "bold white",
        # --- Data & Values ---
        "key": "cyan",
        "value": "green",
        "metric": "bold green",
        # --- Progress ---
        "progress.description": "bold white",
        "progress.percentage": "green",
        "progress.remaining": "cyan",
        "progress.elapsed": "dim white",
    }
)

# Single console instance for the whole package
console = Console(theme=SPECFIT_THEME, record=True)

__all__ = [
    "SPECFIT_THEME",
    "VERSION",
    "Verbosity",
    "console",
    "get_verbosity",
    "icon",
    "set_verbosity",
]


class Verbosity:
    """Verbosity levels for console output."""

    QUIET = 0  # Errors only
    NORMAL = 1  # Summaries and progress
    VERBOSE = 2  # Per-fit details


_verbosity = Verbosity.NORMAL


def set_verbosity(level: int) -> None:
    """Set the global verbosity level.

    Args:
        level: Verbosity level (0=QUIET, 1=NORMAL, 2=VERBOSE)
    """
    global _verbosity
    _verbosity = level
    console.quiet = level == Verbosity.QUIET


def get_verbosity() -> int:
    """Get the current verbosity level."""
    return _verbosity


_EMOJI_DISABLED = os.getenv("SPECFIT_NO_EMOJI", "").lower() in {"1", "true", "yes"}


def _supports_emoji() -> bool:
    if _EMOJI_DISABLED:
        return False
    enc = getattr(console, "encoding", None) or sys.getdefaultencoding()
    return not (enc is not None and "utf" not in enc.lower())


def icon(name: str) -> str:
    """Return a status icon suited to the terminal.

    Names: check, warn, error, bullet
    """
    use_emoji = _supports_emoji()
    mapping = {
        "check": "✓" if use_emoji else "+",
        "warn": "⚠" if use_emoji else "!",
        "error": "✗" if use_emoji else "x",
        "bullet": "‣" if use_emoji else "-",
    }
    return mapping.get(name, mapping["bullet"])
