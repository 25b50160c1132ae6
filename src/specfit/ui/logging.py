"""Logging configuration for specfit.

Library modules only create ``logging.getLogger(__name__)`` loggers. This
module attaches handlers to the ``specfit`` logger: a Rich console handler
and, optionally, a plain-text or JSON-lines file handler.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from rich.logging import RichHandler

from specfit.ui.console import VERSION, console

_logger: logging.Logger | None = None


class JSONFormatter(logging.Formatter):
    """JSON log formatter (one object per line)."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def setup_logging(
    log_file: Path | None = None,
    verbose: bool = False,
    level: int = logging.INFO,
) -> logging.Logger:
    """Configure the ``specfit`` logger.

    Args:
        log_file: Optional log file; a ``.json`` suffix selects JSON lines
        verbose: Also log to the console through Rich
        level: Logging level of all handlers

    Returns
    -------
        The configured ``specfit`` logger
    """
    global _logger

    _logger = logging.getLogger("specfit")
    _logger.setLevel(level)
    for handler in _logger.handlers[:]:
        handler.close()
        _logger.removeHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="w")
        file_handler.setLevel(level)
        if log_file.suffix == ".json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
        _logger.addHandler(file_handler)

    if verbose:
        console_handler = RichHandler(console=console, show_time=False, show_path=False)
        console_handler.setLevel(level)
        _logger.addHandler(console_handler)

    if not _logger.handlers:
        _logger.addHandler(logging.NullHandler())

    _logger.info("specfit v%s | Python %s | %s", VERSION, sys.version.split()[0], sys.platform)
    return _logger


def close_logging() -> None:
    """Close and detach all handlers installed by ``setup_logging``."""
    global _logger
    if _logger is None:
        return
    for handler in _logger.handlers[:]:
        handler.close()
        _logger.removeHandler(handler)
    _logger = None


__all__ = [
    "JSONFormatter",
    "close_logging",
    "setup_logging",
]
