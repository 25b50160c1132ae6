"""Numerical building blocks: dual numbers, Hessian-based covariances and time budgets."""

from specfit.core.algorithms.dual import Dual, value_and_deriv
from specfit.core.algorithms.hessian import (
    compute_hessian,
    errors_from_covariance,
    invert_hessian,
    negloglike_covariance,
    propagate_gradient,
)
from specfit.core.algorithms.time_limit import TimeLimitedObjective, TimeLimitReached

__all__ = [
    "Dual",
    "TimeLimitReached",
    "TimeLimitedObjective",
    "compute_hessian",
    "errors_from_covariance",
    "invert_hessian",
    "negloglike_covariance",
    "propagate_gradient",
    "value_and_deriv",
]
