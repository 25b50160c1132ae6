"""Shared foundational utilities for specfit."""

from specfit.core.shared.diagnostics import Diagnostic, DiagnosticLevel, DiagnosticLog
from specfit.core.shared.events import (
    Event,
    EventDispatcher,
    EventType,
    SweepProgressEvent,
    emit_sweep_progress,
)
from specfit.core.shared.exceptions import (
    ConfigError,
    ContractViolationError,
    DataQualityError,
    NumericsError,
    OptimizationError,
    SpecFitError,
)

__all__ = [
    "ConfigError",
    "ContractViolationError",
    "DataQualityError",
    "Diagnostic",
    "DiagnosticLevel",
    "DiagnosticLog",
    "Event",
    "EventDispatcher",
    "EventType",
    "NumericsError",
    "OptimizationError",
    "SpecFitError",
    "SweepProgressEvent",
    "emit_sweep_progress",
]
