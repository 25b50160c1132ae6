"""Drift-time correction of the LQ pulse-shape classifier.

LQ measures the late charge of a pulse and depends on the drift time of
the charge cloud. Two corrections are available, both tuned on the DEP
(a clean sample of single-site events):

``ctc_lq``
    Polynomial in the drift time that minimizes the width of the LQ core,
    followed by a renormalization to zero mean and unit width.
``lq_ctc_lin_fit``
    Chi2 polynomial fit of LQ against the drift time inside an outlier
    box; the fitted trend is subtracted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from scipy import optimize

from specfit.core.algorithms.time_limit import TimeLimitedObjective, TimeLimitReached
from specfit.core.calibration.expressions import (
    CalibrationFunction,
    LinearCombination,
    Polynomial,
    Ratio,
    Variable,
    evaluate,
)
from specfit.core.constants import CTC_TIME_LIMIT, LQ_CTC_MAXITER
from specfit.core.domain.config import DRIFT_TIME_CUTOFF_METHODS, LqCtcConfig
from specfit.core.domain.histogram import Histogram, get_number_of_bins
from specfit.core.fitting.chi2fit import chi2fit_polynomial
from specfit.core.fitting.peak import estimate_single_peak_stats, fit_binned_double_gauss
from specfit.core.fitting.trunc_gauss import cut_single_peak, fit_single_trunc_gauss
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.exceptions import (
    ConfigError,
    ContractViolationError,
    DataQualityError,
    NumericsError,
    OptimizationError,
)

if TYPE_CHECKING:
    from specfit.core.calibration.expressions import Expression
    from specfit.core.domain.measurement import Measurement
    from specfit.core.fitting.chi2fit import Chi2FitResult
    from specfit.core.fitting.peak import PeakFitResult
    from specfit.core.fitting.trunc_gauss import TruncGaussFitResult
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.typing import FloatArray, ModelFunction

logger = logging.getLogger(__name__)

LQ_SEARCH_RANGE = (-10.0, 20.0)
"""Range searched for the LQ core during the optimization."""


def _dep_selection(
    e: FloatArray, dep_mu: float, dep_sigma: float, edgesigma: float, *arrays: FloatArray
) -> tuple[float, float, FloatArray]:
    e = np.asarray(e, dtype=float)
    for array in arrays:
        if np.shape(array) != e.shape:
            msg = f"Input lengths differ: {np.shape(array)} and {e.shape}"
            raise ContractViolationError(msg)
    dep_left = dep_mu - edgesigma * dep_sigma
    dep_right = dep_mu + edgesigma * dep_sigma
    mask = (e > dep_left) & (e < dep_right)
    for array in arrays:
        mask &= np.isfinite(np.asarray(array, dtype=float))
    if not np.any(mask):
        msg = f"No events in the DEP window ({dep_left:.2f}, {dep_right:.2f})"
        raise DataQualityError(msg)
    return dep_left, dep_right, mask


@dataclass(slots=True)
class LqCtcResult:
    """Optimized LQ drift-time correction.

    Attributes
    ----------
        dep_left: Lower edge of the DEP window
        dep_right: Upper edge of the DEP window
        fct: Polynomial coefficients of orders ``1..pol_order``
        lower_bounds: Lower box constraint of ``fct``
        upper_bounds: Upper box constraint of ``fct``
        sigma_start: Objective without correction
        sigma_optimal: Objective at ``fct``
        before: Truncated Gaussian fit before the correction
        after: Truncated Gaussian fit after the correction
        after_norm: Truncated Gaussian fit after renormalization
        function: Correction, normalized to zero mean and unit width
        converged: Whether the optimizer reported success within the time limit
        h_before: LQ histogram before the correction
        h_after: LQ histogram after the correction
        h_after_norm: LQ histogram after renormalization
        diagnostics: Records of the optimization
    """

    dep_left: float
    dep_right: float
    fct: FloatArray
    lower_bounds: FloatArray
    upper_bounds: FloatArray
    sigma_start: float
    sigma_optimal: float
    before: TruncGaussFitResult
    after: TruncGaussFitResult
    after_norm: TruncGaussFitResult
    function: CalibrationFunction
    converged: bool
    h_before: Histogram
    h_after: Histogram
    h_after_norm: Histogram
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def sigma_before(self) -> Measurement:
        """LQ width before the correction."""
        return self.before.sigma

    @property
    def sigma_after(self) -> Measurement:
        """LQ width after the correction."""
        return self.after.sigma

    @property
    def sigma_after_norm(self) -> Measurement:
        """LQ width after renormalization (close to one)."""
        return self.after_norm.sigma


def ctc_lq_expression(
    pol_order: int,
    lq_expression: Expression | None = None,
    qdrift_expression: Expression | None = None,
) -> LinearCombination:
    """Generic ``(lq + fct1 * q + fct2 * q^2 + ... - mu_norm) / sigma_norm``."""
    lq_expression = lq_expression or Ratio(Variable("lq"), Variable("e"))
    qdrift_expression = qdrift_expression or Ratio(Variable("qdrift"), Variable("e"))
    fct = tuple(Variable(f"fct{i}") for i in range(1, pol_order + 1))
    return LinearCombination(
        terms=(
            (1.0, lq_expression),
            (1.0, Polynomial((0.0, *fct), qdrift_expression)),
            (-1.0, Variable("mu_norm")),
        ),
        divisor=Variable("sigma_norm"),
    )


def ctc_lq(
    lq: FloatArray,
    e: FloatArray,
    qdrift: FloatArray,
    dep_mu: float,
    dep_sigma: float,
    *,
    hist_start: float = -0.5,
    hist_end: float = 2.5,
    bin_width: float = 0.01,
    relative_cut: float = 0.4,
    ctc_dep_edgesigma: float = 3.0,
    pol_order: int = 1,
    lq_expression: Expression | None = None,
    qdrift_expression: Expression | None = None,
    maxiter: int = LQ_CTC_MAXITER,
    time_limit: float = CTC_TIME_LIMIT,
) -> LqCtcResult:
    """Tune a polynomial drift-time correction of LQ on the DEP.

    Args:
        lq: LQ classifier values
        e: Calibrated energies
        qdrift: Drift-time values used in the correction
        dep_mu: DEP position
        dep_sigma: DEP width
        hist_start: Lower edge of the LQ histograms
        hist_end: Upper edge of the LQ histograms
        bin_width: Bin width of the LQ histograms
        relative_cut: Relative height defining the truncated Gaussian window
        ctc_dep_edgesigma: DEP window half width in units of ``dep_sigma``
        pol_order: Order of the correction polynomial
        lq_expression: Formula of ``lq`` in event variables (default ``lq / e``)
        qdrift_expression: Formula of ``qdrift`` (default ``qdrift / e``)
        maxiter: Iteration limit of the bounded Powell search
        time_limit: Wall-clock budget in seconds

    Returns
    -------
        LqCtcResult

    Raises
    ------
        ContractViolationError: If the input lengths differ.
        DataQualityError: If the DEP window is empty or the median drift
            time is not positive.
    """
    if pol_order < 1:
        msg = f"pol_order must be at least 1, got {pol_order}"
        raise ContractViolationError(msg)
    diagnostics = DiagnosticLog(__name__)
    dep_left, dep_right, mask = _dep_selection(e, dep_mu, dep_sigma, ctc_dep_edgesigma, lq, qdrift)
    lq_cut = np.asarray(lq, dtype=float)[mask]
    qdrift_cut = np.asarray(qdrift, dtype=float)[mask]

    edges = np.arange(hist_start, hist_end + bin_width, bin_width)
    h_before = Histogram.from_samples(lq_cut, edges=edges)
    before = fit_single_trunc_gauss(
        lq_cut, cut_single_peak(lq_cut, *LQ_SEARCH_RANGE, relative_cut=relative_cut), uncertainty=False
    )

    def corrected(fct: FloatArray) -> FloatArray:
        return lq_cut + evaluate(Polynomial((0.0, *fct)), {"x": qdrift_cut})

    def width_of(fct: FloatArray) -> float:
        lq_ctc = corrected(fct)
        try:
            cuts = cut_single_peak(lq_ctc, *LQ_SEARCH_RANGE, relative_cut=relative_cut)
            result = fit_single_trunc_gauss(lq_ctc, cuts, uncertainty=False)
        except (DataQualityError, NumericsError, OptimizationError):
            return np.inf
        return result.sigma.nominal_value

    qdrift_median = float(np.median(qdrift_cut))
    if not qdrift_median > 0:
        msg = f"Median drift time must be positive, got {qdrift_median}"
        raise DataQualityError(msg)
    orders = np.arange(1, pol_order + 1)
    lower = -((1.0 / qdrift_median) ** orders)
    upper = (0.1 / qdrift_median) ** orders
    start = -((0.001 / qdrift_median) ** orders)
    logger.debug("LQ CTC bounds %s .. %s, start %s", lower, upper, start)

    objective = TimeLimitedObjective(width_of, time_limit)
    try:
        opt = optimize.minimize(
            objective,
            start,
            method="Powell",
            bounds=list(zip(lower, upper, strict=True)),
            options={"maxiter": maxiter},
        )
        fct = np.asarray(opt.x, dtype=float)
        converged = bool(opt.success)
        if not converged:
            diagnostics.warning("lq_ctc_not_converged", f"LQ CTC did not converge: {opt.message}")
    except TimeLimitReached:
        fct = start if objective.best_x is None else objective.best_x
        converged = False
        diagnostics.warning("lq_ctc_time_limit", f"LQ CTC hit the time limit of {time_limit} s")

    lq_corrected = corrected(fct)
    h_after = Histogram.from_samples(lq_corrected, edges=edges)
    after = fit_single_trunc_gauss(
        lq_corrected, cut_single_peak(lq_corrected, hist_start, 10.0, relative_cut=relative_cut)
    )
    mu_norm, sigma_norm = after.mu.nominal_value, after.sigma.nominal_value
    lq_normalized = (lq_corrected - mu_norm) / sigma_norm
    after_norm = fit_single_trunc_gauss(
        lq_normalized, cut_single_peak(lq_normalized, hist_start, 10.0, relative_cut=relative_cut)
    )
    h_after_norm = Histogram.from_samples(lq_normalized, edges=np.arange(-5.0, 10.0 + bin_width, bin_width))

    parameters = {f"fct{i}": float(c) for i, c in enumerate(fct, start=1)}
    parameters.update(mu_norm=mu_norm, sigma_norm=sigma_norm)
    function = CalibrationFunction(
        expression=ctc_lq_expression(pol_order, lq_expression, qdrift_expression),
        parameters=parameters,
        variable="lq",
    )
    logger.info("LQ CTC: sigma %s -> %s (fct = %s)", before.sigma, after.sigma, fct)

    return LqCtcResult(
        dep_left=dep_left,
        dep_right=dep_right,
        fct=fct,
        lower_bounds=lower,
        upper_bounds=upper,
        sigma_start=width_of(np.zeros(pol_order)),
        sigma_optimal=width_of(fct),
        before=before,
        after=after,
        after_norm=after_norm,
        function=function,
        converged=converged,
        h_before=h_before,
        h_after=h_after,
        h_after_norm=h_after_norm,
        diagnostics=diagnostics.records,
    )


@dataclass(slots=True)
class LqBox:
    """Box in (drift time, LQ) used for the linear fit."""

    lq_lower: float
    lq_upper: float
    t_lower: float
    t_upper: float


@dataclass(slots=True)
class LqLinFitResult:
    """Linear-fit LQ drift-time correction.

    Attributes
    ----------
        fit: Polynomial chi2 fit of LQ against the drift time
        box: Outlier box of the fitted events
        expression: Generic correction ``lq - (p0 + p1 * qdrift + ...)``
        function: Correction with the fitted coefficients
        lq_fit: Truncated Gaussian fit of the DEP LQ distribution
        drift_fit: Fit used for the drift-time cutoff, if any
        dep_left: Lower edge of the DEP window
        dep_right: Upper edge of the DEP window
    """

    fit: Chi2FitResult
    box: LqBox
    expression: LinearCombination
    function: CalibrationFunction
    lq_fit: TruncGaussFitResult
    drift_fit: TruncGaussFitResult | PeakFitResult | None
    dep_left: float
    dep_right: float


def lq_lin_fit_expression(config: LqCtcConfig) -> LinearCombination:
    """Generic ``lq / e - (p0 + p1 * qdrift / e + ...)``."""
    e = Variable(config.e_variable)
    return LinearCombination(
        terms=(
            (1.0, Ratio(Variable(config.lq_variable), e)),
            (
                -1.0,
                Polynomial(
                    tuple(Variable(f"p{i}") for i in range(config.pol_fit_order + 1)),
                    Ratio(Variable(config.dt_eff_variable), e),
                ),
            ),
        )
    )


def _drift_time_threshold_crossings(
    f_fit: ModelFunction, low: float, high: float, fraction: float
) -> tuple[float, float]:
    grid = np.linspace(low, high, 4001)
    values = np.asarray(f_fit(grid), dtype=float)
    above = np.flatnonzero(values >= fraction * values.max())
    return float(grid[above[0]]), float(grid[above[-1]])


def lq_ctc_lin_fit(
    lq: FloatArray,
    dt_eff: FloatArray,
    e_cal: FloatArray,
    dep_mu: float,
    dep_sigma: float,
    config: LqCtcConfig | None = None,
    *,
    uncertainty: bool = False,
) -> LqLinFitResult:
    """Fit and subtract the drift-time trend of energy-normalized LQ.

    Args:
        lq: Energy-normalized LQ
        dt_eff: Effective drift time (energy-normalized)
        e_cal: Calibrated energies
        dep_mu: DEP position
        dep_sigma: DEP width
        config: Cut and fit settings
        uncertainty: Compute fit uncertainties

    Returns
    -------
        LqLinFitResult

    Raises
    ------
        ConfigError: If the drift-time cutoff method is not supported.
        DataQualityError: If too few events remain for the fit.
    """
    config = config or LqCtcConfig()
    method = config.ctc_driftime_cutoff_method
    if method not in DRIFT_TIME_CUTOFF_METHODS:
        msg = f"Drift time cutoff method '{method}' not supported. Available: {list(DRIFT_TIME_CUTOFF_METHODS)}"
        raise ConfigError(msg)

    dep_left, dep_right, mask = _dep_selection(e_cal, dep_mu, dep_sigma, config.ctc_dep_edgesigma, lq, dt_eff)
    lq_dep = np.asarray(lq, dtype=float)[mask]
    dt_dep = np.asarray(dt_eff, dtype=float)[mask]

    precut = cut_single_peak(
        lq_dep, lq_dep.min() - 1e-12, np.quantile(lq_dep, 0.99), relative_cut=config.ctc_lq_precut_relative_cut
    )
    lq_fit = fit_single_trunc_gauss(lq_dep, precut, uncertainty=uncertainty)
    mu_lq, sigma_lq = lq_fit.mu.nominal_value, lq_fit.sigma.nominal_value
    lq_lower = mu_lq - config.lq_outlier_sigma * sigma_lq
    lq_upper = mu_lq + config.lq_outlier_sigma * sigma_lq

    drift_fit: TruncGaussFitResult | PeakFitResult | None = None
    if method == "percentile":
        t_lower, t_upper = np.quantile(dt_dep, [config.ctc_dt_eff_low_quantile, config.ctc_dt_eff_high_quantile])
    elif method == "gaussian":
        dt_precut = cut_single_peak(dt_dep, dt_dep.min() - 1e-12, dt_dep.max() + 1e-12)
        drift_fit = fit_single_trunc_gauss(dt_dep, dt_precut, uncertainty=uncertainty)
        mu_t, sigma_t = drift_fit.mu.nominal_value, drift_fit.sigma.nominal_value
        t_lower = mu_t - config.dt_eff_outlier_sigma * sigma_t
        t_upper = mu_t + config.dt_eff_outlier_sigma * sigma_t
    else:
        n_bins = get_number_of_bins(dt_dep)
        h_drift = Histogram.from_samples(dt_dep, n_bins=n_bins)
        drift_fit = fit_binned_double_gauss(h_drift, estimate_single_peak_stats(h_drift), uncertainty=uncertainty)
        span = h_drift.edges[-1] - h_drift.edges[0]
        t_lower, t_upper = _drift_time_threshold_crossings(
            drift_fit.f_signal or drift_fit.f_fit,
            h_drift.edges[0] - span,
            h_drift.edges[-1] + span,
            config.double_gaussian_threshold,
        )
    box = LqBox(lq_lower=float(lq_lower), lq_upper=float(lq_upper), t_lower=float(t_lower), t_upper=float(t_upper))

    in_box = (lq_dep > lq_lower) & (lq_dep < lq_upper) & (dt_dep > t_lower) & (dt_dep < t_upper)
    if np.count_nonzero(in_box) < config.pol_fit_order + 2:
        msg = f"Only {np.count_nonzero(in_box)} events inside the LQ box {box}"
        raise DataQualityError(msg)
    fit = chi2fit_polynomial(
        config.pol_fit_order, dt_dep[in_box], lq_dep[in_box], variable=config.dt_eff_variable, uncertainty=uncertainty
    )

    expression = lq_lin_fit_expression(config)
    function = CalibrationFunction(
        expression=expression,
        parameters={f"p{i}": p for i, p in enumerate(fit.par)},
        variable=config.lq_variable,
    )
    logger.info("LQ drift-time correction: %s", function)
    return LqLinFitResult(
        fit=fit,
        box=box,
        expression=expression,
        function=function,
        lq_fit=lq_fit,
        drift_fit=drift_fit,
        dep_left=dep_left,
        dep_right=dep_right,
    )
