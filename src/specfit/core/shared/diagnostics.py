"""Per-call diagnostic records.

Fits and sweeps never signal data-quality problems through process-wide
side effects alone. Each public operation owns a ``DiagnosticLog``; every
record is forwarded to Python logging and also kept on the log, which is
attached to the returned result object.

Example:
    >>> log = DiagnosticLog("specfit.fitting")
    >>> log.warning("low_counts", "bin with <= 5 counts", min_counts=3.0)
    >>> [d.code for d in log.warnings]
    ['low_counts']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DiagnosticLevel(str, Enum):
    """Severity of a diagnostic record."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"


_LOGGING_LEVELS = {
    DiagnosticLevel.DEBUG: logging.DEBUG,
    DiagnosticLevel.INFO: logging.INFO,
    DiagnosticLevel.WARNING: logging.WARNING,
}


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A single structured diagnostic.

    Attributes
    ----------
        level: Severity
        code: Short machine-readable identifier (e.g. ``"skip_sweep_point"``)
        message: Human-readable description
        context: Extra key-value data (sweep value, counts, ...)
    """

    level: DiagnosticLevel
    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)


class DiagnosticLog:
    """Collects diagnostics for one call and mirrors them to ``logging``."""

    def __init__(self, logger_name: str = "specfit") -> None:
        self._logger = logging.getLogger(logger_name)
        self._records: list[Diagnostic] = []

    def _record(self, level: DiagnosticLevel, code: str, message: str, context: dict) -> None:
        self._records.append(Diagnostic(level, code, message, context))
        self._logger.log(_LOGGING_LEVELS[level], "%s", message)

    def debug(self, code: str, message: str, **context: Any) -> None:
        """Record a debug-level diagnostic."""
        self._record(DiagnosticLevel.DEBUG, code, message, context)

    def info(self, code: str, message: str, **context: Any) -> None:
        """Record an informational diagnostic."""
        self._record(DiagnosticLevel.INFO, code, message, context)

    def warning(self, code: str, message: str, **context: Any) -> None:
        """Record a warning (recoverable data-quality issue)."""
        self._record(DiagnosticLevel.WARNING, code, message, context)

    def extend(self, records: tuple[Diagnostic, ...] | list[Diagnostic]) -> None:
        """Adopt records produced by a nested call without re-logging them."""
        self._records.extend(records)

    @property
    def records(self) -> tuple[Diagnostic, ...]:
        """All records in emission order."""
        return tuple(self._records)

    @property
    def warnings(self) -> tuple[Diagnostic, ...]:
        """Only warning-level records."""
        return tuple(d for d in self._records if d.level is DiagnosticLevel.WARNING)

    def __len__(self) -> int:
        return len(self._records)
