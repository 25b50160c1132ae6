"""Exception taxonomy for specfit.

Two families matter to callers. Contract violations signal programming
errors (bad shapes, unsupported options) and are never caught inside the
package. Data-quality errors signal a bad input sample; batch drivers and
parameter sweeps catch them, record a diagnostic and move on.
"""

from __future__ import annotations


class SpecFitError(Exception):
    """Base class for all specfit-specific exceptions."""


class ContractViolationError(SpecFitError, ValueError):
    """Caller violated an input contract (lengths, monotonic edges, empty data)."""


class ConfigError(ContractViolationError):
    """Unsupported configuration value (unknown method or function name)."""


class DataQualityError(SpecFitError):
    """Input sample is unusable for a fit (too few points, degenerate guess)."""


class OptimizationError(SpecFitError):
    """Optimizer failed to produce a finite minimum."""


class NumericsError(SpecFitError):
    """Numeric instability or invalid arithmetic conditions (NaNs, overflows)."""


__all__ = [
    "ConfigError",
    "ContractViolationError",
    "DataQualityError",
    "NumericsError",
    "OptimizationError",
    "SpecFitError",
]
