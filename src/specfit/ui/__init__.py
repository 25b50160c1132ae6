"""Console output for specfit: logging, progress bars and summary tables."""

from specfit.ui.console import Verbosity, console, get_verbosity, icon, set_verbosity
from specfit.ui.logging import JSONFormatter, close_logging, setup_logging
from specfit.ui.progress import RichSweepProgressHandler, create_progress, track_sweep
from specfit.ui.tables import create_table, peak_fit_table, print_summary, sweep_table

__all__ = [
    "JSONFormatter",
    "RichSweepProgressHandler",
    "Verbosity",
    "close_logging",
    "console",
    "create_progress",
    "create_table",
    "get_verbosity",
    "icon",
    "peak_fit_table",
    "print_summary",
    "set_verbosity",
    "setup_logging",
    "sweep_table",
    "track_sweep",
]
