"""Values with one-sigma uncertainties.

Measurements are ``uncertainties`` numbers: immutable, and arithmetic on
them yields new measurements with linearly propagated errors (including
correlations between values that share an origin).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
from uncertainties import UFloat, correlated_values, ufloat
from uncertainties import unumpy

if TYPE_CHECKING:
    from specfit.core.shared.typing import FloatArray

Measurement = UFloat


def measurement(value: float, err: float) -> UFloat:
    """Create a measurement ``value ± err``.

    A NaN uncertainty marks a value whose error was not computed.
    """
    return ufloat(float(value), float(err))


def mvalue(x: Any) -> Any:
    """Nominal value(s) of a measurement, array of measurements or plain number."""
    if isinstance(x, UFloat):
        return x.nominal_value
    if np.isscalar(x):
        return float(x)
    return np.asarray(unumpy.nominal_values(np.asarray(x, dtype=object)), dtype=float)


def muncert(x: Any) -> Any:
    """Standard deviation(s); plain numbers have zero uncertainty."""
    if isinstance(x, UFloat):
        return x.std_dev
    if np.isscalar(x):
        return 0.0
    return np.asarray(unumpy.std_devs(np.asarray(x, dtype=object)), dtype=float)


def measurements_from_covariance(values: FloatArray, covariance: FloatArray) -> list[UFloat]:
    """Build measurements from best-fit values and a covariance matrix.

    Errors are ``sqrt(|diag(cov)|)``. When the covariance is a valid
    (symmetric positive semi-definite) matrix the returned values also carry
    their mutual correlations.
    """
    values = np.asarray(values, dtype=float)
    covariance = np.asarray(covariance, dtype=float)
    errors = np.sqrt(np.abs(np.diag(covariance)))
    if np.all(np.isfinite(covariance)) and np.all(np.diag(covariance) > 0):
        try:
            correlated = list(correlated_values(values, covariance))
        except (ValueError, np.linalg.LinAlgError):
            correlated = []
        if correlated and all(np.isfinite(m.std_dev) for m in correlated):
            return correlated
    return [measurement(v, e) for v, e in zip(values, errors, strict=True)]


def measurements_without_uncertainty(values: FloatArray) -> list[UFloat]:
    """Wrap best-fit values whose uncertainty was not requested (NaN errors)."""
    return [measurement(v, np.nan) for v in np.asarray(values, dtype=float)]
