"""Generic chi-square fitter with x/y uncertainties and Gaussian pull terms.

The objective is

    chi2(v) = sum_i (y_i - f(x_i; v))^2 / (sigma_y,i^2 + sigma_pred,i^2) + pulls(v)

where ``sigma_pred,i`` is the uncertainty of ``x_i`` propagated through the
model. It is obtained by evaluating ``f`` on ``Dual(x_i, sigma_x,i)``
numbers at fixed parameters, so the model must be written with arithmetic
and NumPy ufuncs only.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy import optimize

from specfit.core.algorithms.dual import Dual, value_and_deriv
from specfit.core.algorithms.hessian import compute_hessian, errors_from_covariance, invert_hessian
from specfit.core.calibration.expressions import (
    OUTER_FUNCTIONS,
    CalibrationFunction,
    Composed,
    Polynomial,
    Variable,
    evaluate,
    parameter_names,
)
from specfit.core.domain.measurement import (
    measurements_from_covariance,
    measurements_without_uncertainty,
    muncert,
    mvalue,
)
from specfit.core.results.statistics import GoodnessOfFit, chi2_pvalue, compute_degrees_of_freedom
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.exceptions import ConfigError, ContractViolationError, OptimizationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from specfit.core.calibration.expressions import Expression
    from specfit.core.domain.measurement import Measurement
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.typing import FloatArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PullTerm:
    """Gaussian prior ``((v - mean) / std)^2`` on one parameter."""

    mean: float
    std: float

    def __call__(self, v: float) -> float:
        return ((v - self.mean) / self.std) ** 2


@dataclass(frozen=True, slots=True)
class Chi2FitResult:
    """Result of a chi-square fit.

    Attributes
    ----------
        par: Best-fit parameters as measurements (NaN errors when the
            uncertainty was not computed)
        covariance: Parameter covariance matrix, or None
        gof: Goodness of fit, or None without uncertainty
        x: Input x values (as passed in)
        y: Input y values (as passed in)
        f_fit: Model with the best-fit parameters fixed
        expression: Generic formula of the model, when it has one
        function: Fitted calibration function, when the model has a formula
        converged: Whether the minimizer reported success
        diagnostics: Records produced during the fit
    """

    par: list[Measurement]
    covariance: FloatArray | None
    gof: GoodnessOfFit | None
    x: Any
    y: Any
    f_fit: Callable[[Any], Any]
    expression: Expression | None = None
    function: CalibrationFunction | None = None
    converged: bool = True
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def values(self) -> FloatArray:
        """Best-fit parameter values."""
        return np.array([p.nominal_value for p in self.par], dtype=float)

    @property
    def errors(self) -> FloatArray:
        """Parameter uncertainties (NaN when not computed)."""
        return np.array([p.std_dev for p in self.par], dtype=float)


def count_model_parameters(f_fit: Callable[..., Any]) -> int:
    """Number of fit parameters of ``f_fit(x, p1, p2, ...)``.

    Raises
    ------
        ContractViolationError: If the count cannot be read from the signature
            (variadic arguments).
    """
    kinds = [p.kind for p in inspect.signature(f_fit).parameters.values()]
    if inspect.Parameter.VAR_POSITIONAL in kinds:
        msg = "Cannot infer the number of parameters of a variadic model; pass pull_t or v_init"
        raise ContractViolationError(msg)
    positional = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    return sum(kind in positional for kind in kinds) - 1


def _predict(
    f_fit: Callable[..., Any], x_val: FloatArray, x_err: FloatArray, v: FloatArray, *, propagate: bool
) -> tuple[FloatArray, FloatArray]:
    if not propagate:
        pred = np.asarray(f_fit(x_val, *v), dtype=float)
        return np.broadcast_to(pred, x_val.shape), np.zeros_like(x_val)
    pred, pred_err = value_and_deriv(f_fit(Dual(x_val, x_err), *v))
    return (
        np.broadcast_to(np.asarray(pred, dtype=float), x_val.shape),
        np.broadcast_to(np.asarray(pred_err, dtype=float), x_val.shape),
    )


def _initial_guess(npar: int, x_val: FloatArray, y_val: FloatArray) -> FloatArray:
    if npar == 2 and x_val[0] != 0:
        return np.array([y_val[0] / x_val[0], 1.0])
    return np.ones(npar)


def _fit_values(
    f_fit: Callable[..., Any],
    x_val: FloatArray,
    x_err: FloatArray,
    y_val: FloatArray,
    y_err: FloatArray,
    *,
    x: Any,
    y: Any,
    pull_t: Sequence[PullTerm | None] | None,
    v_init: Sequence[float] | None,
    uncertainty: bool,
    diagnostics: DiagnosticLog,
) -> Chi2FitResult:
    if not (x_val.shape == y_val.shape == x_err.shape == y_err.shape) or x_val.ndim != 1:
        msg = f"x and y must be one-dimensional with equal lengths, got {x_val.shape} and {y_val.shape}"
        raise ContractViolationError(msg)

    if pull_t is not None:
        npar = len(pull_t)
    elif v_init is not None and len(v_init) > 0:
        npar = len(v_init)
    else:
        npar = count_model_parameters(f_fit)
    pulls = list(pull_t) if pull_t is not None else [None] * npar

    unit_weights = bool(np.all(x_err == 0) and np.all(y_err == 0))
    if unit_weights:
        y_err = np.ones_like(y_val)
    propagate = bool(np.any(x_err != 0))

    def f_opt(v: FloatArray) -> float:
        pred, pred_err = _predict(f_fit, x_val, x_err, v, propagate=propagate)
        with np.errstate(divide="ignore", invalid="ignore"):
            chi2 = np.sum((y_val - pred) ** 2 / (y_err**2 + pred_err**2))
        pull = sum(term(vi) for term, vi in zip(pulls, v, strict=True) if term is not None)
        return float(chi2 + pull)

    v0 = np.asarray(v_init, dtype=float) if v_init is not None and len(v_init) > 0 else _initial_guess(
        npar, x_val, y_val
    )
    if v0.size != npar:
        msg = f"Initial guess has {v0.size} values for {npar} parameters"
        raise ContractViolationError(msg)

    opt = optimize.minimize(f_opt, v0, method="BFGS")
    if not np.isfinite(opt.fun) or not np.all(np.isfinite(opt.x)):
        msg = f"chi2 minimization did not reach a finite minimum: {opt.message}"
        raise OptimizationError(msg)
    if not opt.success:
        diagnostics.debug("chi2fit_not_converged", f"BFGS stopped early: {opt.message}", chi2=float(opt.fun))
    v_chi2 = np.asarray(opt.x, dtype=float)

    def f_best(x_new: Any) -> Any:
        return f_fit(x_new, *v_chi2)

    if not uncertainty:
        return Chi2FitResult(
            par=measurements_without_uncertainty(v_chi2),
            covariance=None,
            gof=None,
            x=x,
            y=y,
            f_fit=f_best,
            converged=bool(opt.success),
            diagnostics=diagnostics.records,
        )

    # Curvature of chi2 / 2 is the inverse covariance of Gaussian errors
    hessian = compute_hessian(lambda v: 0.5 * f_opt(v), v_chi2)
    covariance = invert_hessian(hessian)
    errors = errors_from_covariance(covariance)
    logger.debug("chi2fit: par = %s +- %s", v_chi2, errors)

    chi2min = float(opt.fun)
    dof = compute_degrees_of_freedom(x_val.size, npar)
    residual_scale = np.ones_like(y_val) if np.all(y_err == 0) else y_err
    residuals_norm = (y_val - np.asarray(f_fit(x_val, *v_chi2), dtype=float)) / residual_scale
    gof = GoodnessOfFit(
        pvalue=chi2_pvalue(chi2min, dof),
        chi2=chi2min,
        dof=dof,
        residuals_norm=residuals_norm,
    )
    return Chi2FitResult(
        par=measurements_from_covariance(v_chi2, covariance),
        covariance=covariance,
        gof=gof,
        x=x,
        y=y,
        f_fit=f_best,
        converged=bool(opt.success),
        diagnostics=diagnostics.records,
    )


def chi2fit(
    f_fit: Callable[..., Any],
    x: Any,
    y: Any,
    *,
    pull_t: Sequence[PullTerm | None] | None = None,
    v_init: Sequence[float] | None = None,
    uncertainty: bool = True,
) -> Chi2FitResult:
    """Least-squares fit by chi2 minimization.

    Args:
        f_fit: Model ``f_fit(x, p1, p2, ...)``
        x: x values, floats or measurements
        y: y values, floats or measurements
        pull_t: One ``PullTerm`` or ``None`` per parameter. Also fixes the
            number of parameters.
        v_init: Starting parameters. Defaults to ``[y0 / x0, 1]`` for two
            parameters and ones otherwise.
        uncertainty: Compute the covariance and goodness of fit

    Returns
    -------
        Chi2FitResult with the best-fit parameters

    Raises
    ------
        ContractViolationError: If x and y lengths differ.
        OptimizationError: If no finite minimum is found.
    """
    diagnostics = DiagnosticLog(__name__)
    x_val = np.atleast_1d(np.asarray(mvalue(list(x) if not np.isscalar(x) else x), dtype=float))
    y_val = np.atleast_1d(np.asarray(mvalue(list(y) if not np.isscalar(y) else y), dtype=float))
    x_err = np.atleast_1d(np.asarray(muncert(list(x) if not np.isscalar(x) else x), dtype=float))
    y_err = np.atleast_1d(np.asarray(muncert(list(y) if not np.isscalar(y) else y), dtype=float))
    return _fit_values(
        f_fit,
        x_val,
        x_err,
        y_val,
        y_err,
        x=x,
        y=y,
        pull_t=pull_t,
        v_init=v_init,
        uncertainty=uncertainty,
        diagnostics=diagnostics,
    )


def chi2fit_arrays(
    f_fit: Callable[..., Any],
    x: FloatArray,
    y: FloatArray,
    yerr: FloatArray,
    xerr: FloatArray | None = None,
    *,
    pull_t: Sequence[PullTerm | None] | None = None,
    v_init: Sequence[float] | None = None,
    uncertainty: bool = True,
) -> Chi2FitResult:
    """``chi2fit`` on raw value and uncertainty arrays.

    Raises
    ------
        ContractViolationError: If the array lengths differ.
    """
    x_val = np.asarray(x, dtype=float)
    y_val = np.asarray(y, dtype=float)
    y_err = np.asarray(yerr, dtype=float)
    x_err = np.zeros_like(x_val) if xerr is None else np.asarray(xerr, dtype=float)
    if not (x_val.shape == y_val.shape == y_err.shape == x_err.shape):
        msg = (
            f"Array lengths differ: x {x_val.shape}, y {y_val.shape}, "
            f"yerr {y_err.shape}, xerr {x_err.shape}"
        )
        raise ContractViolationError(msg)
    return _fit_values(
        f_fit,
        x_val,
        x_err,
        y_val,
        y_err,
        x=x,
        y=y,
        diagnostics=DiagnosticLog(__name__),
        pull_t=pull_t,
        v_init=v_init,
        uncertainty=uncertainty,
    )


def polynomial_expression(n_poly: int, variable: str = "x", f_outer: str | None = None) -> Expression:
    """Generic formula ``f_outer(p0 + p1 * x + ... + pn * x^n)``.

    Raises
    ------
        ConfigError: If ``f_outer`` is not a known outer function.
    """
    poly = Polynomial(parameter_names(n_poly + 1), Variable(variable))
    if f_outer is None:
        return poly
    return Composed(f_outer, poly)


def chi2fit_polynomial(
    n_poly: int,
    x: Any,
    y: Any,
    *,
    f_outer: str | None = None,
    pull_t: Sequence[PullTerm | None] | None = None,
    variable: str = "x",
    **kwargs: Any,
) -> Chi2FitResult:
    """Fit a degree-``n_poly`` polynomial, optionally inside an outer function.

    Args:
        n_poly: Polynomial degree
        x: x values, floats or measurements
        y: y values, floats or measurements
        f_outer: Name of an outer function (``sqrt``, ``exp``, ``log``,
            ``square``) applied to the polynomial
        pull_t: One entry per coefficient (``n_poly + 1``)
        variable: Name of the input variable in the resulting expression
        **kwargs: Passed on to ``chi2fit`` (``v_init``, ``uncertainty``)

    Returns
    -------
        Chi2FitResult with ``expression`` and ``function`` set

    Raises
    ------
        ContractViolationError: If ``len(pull_t) != n_poly + 1``.
        ConfigError: If ``f_outer`` is unknown.
    """
    if pull_t is None:
        pull_t = [None] * (n_poly + 1)
    if len(pull_t) != n_poly + 1:
        msg = f"Length of pull_t ({len(pull_t)}) does not match the polynomial order {n_poly}"
        raise ContractViolationError(msg)
    if f_outer is not None and f_outer not in OUTER_FUNCTIONS:
        msg = f"Unknown outer function '{f_outer}'. Available: {sorted(OUTER_FUNCTIONS)}"
        raise ConfigError(msg)

    expression = polynomial_expression(n_poly, variable, f_outer)
    names = [f"p{i}" for i in range(n_poly + 1)]

    def f_poly(x_in: Any, *coefficients: float) -> Any:
        values = dict(zip(names, coefficients, strict=True))
        values[variable] = x_in
        return evaluate(expression, values)

    result = chi2fit(f_poly, x, y, pull_t=pull_t, **kwargs)
    return replace(
        result,
        expression=expression,
        function=CalibrationFunction(
            expression=expression,
            parameters=dict(zip(names, result.par, strict=True)),
            variable=variable,
        ),
    )
