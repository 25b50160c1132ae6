"""Covariance estimation from the curvature of a fit objective."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import numdifftools as nd
import numpy as np

if TYPE_CHECKING:
    from specfit.core.shared.typing import FloatArray


def compute_hessian(func: Callable[[FloatArray], float], x: FloatArray) -> FloatArray:
    """Numerical Hessian of ``func`` at ``x`` (central differences, Richardson extrapolated)."""
    x = np.asarray(x, dtype=float)
    hessian = np.atleast_2d(nd.Hessian(func)(x))
    return 0.5 * (hessian + hessian.T)


def invert_hessian(hessian: FloatArray) -> FloatArray:
    """Invert a Hessian, falling back to the pseudo-inverse when singular."""
    try:
        covariance = np.linalg.inv(hessian)
    except np.linalg.LinAlgError:
        covariance = np.linalg.pinv(hessian)
    if not np.all(np.isfinite(covariance)):
        covariance = np.linalg.pinv(np.nan_to_num(hessian))
    return covariance


def errors_from_covariance(covariance: FloatArray) -> FloatArray:
    """Parameter uncertainties ``sqrt(|diag(cov)|)``.

    Ill-conditioned problems can leave tiny negative diagonal entries; the
    absolute value keeps them from turning into NaN.
    """
    return np.sqrt(np.abs(np.diag(covariance)))


def negloglike_covariance(
    negloglike: Callable[[FloatArray], float],
    x: FloatArray,
    scale: FloatArray | None = None,
) -> FloatArray:
    """Covariance ``H^-1`` of a negative log-likelihood at its minimum ``x``.

    Args:
        negloglike: Objective in natural parameter units
        x: Minimum location
        scale: Typical magnitude of each parameter. The Hessian is taken in
            the rescaled coordinates ``u = x / scale`` so that parameters of
            very different magnitude get comparable finite-difference steps.

    Returns
    -------
        Covariance matrix in natural parameter units
    """
    x = np.asarray(x, dtype=float)
    scale = np.ones_like(x) if scale is None else np.asarray(scale, dtype=float)

    def scaled(u: FloatArray) -> float:
        return negloglike(u * scale)

    hessian_u = compute_hessian(scaled, x / scale)
    covariance_u = invert_hessian(hessian_u)
    return covariance_u * np.outer(scale, scale)


def propagate_gradient(func: Callable[[FloatArray], float], x: FloatArray, covariance: FloatArray) -> float:
    """Linearly propagated standard deviation ``sqrt(g^T C g)`` of ``func(x)``."""
    x = np.asarray(x, dtype=float)
    gradient = np.atleast_1d(nd.Gradient(func)(x))
    return float(np.sqrt(abs(gradient @ covariance @ gradient)))
