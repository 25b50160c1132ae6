"""Binned maximum-likelihood fits of single spectral peaks.

The fit maximizes the Poisson log-likelihood of the observed bin counts,
with expected counts ``f(center) * width``. Parameters are optimized in
rescaled coordinates (each divided by the magnitude of its starting value)
so that positions of a few thousand keV and tail fractions of a percent
get comparable step sizes. Uncertainties come from the inverse Hessian of
the negative log-likelihood at the optimum.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import numpy as np
from scipy import optimize, special

from specfit.core.algorithms.hessian import (
    errors_from_covariance,
    negloglike_covariance,
    propagate_gradient,
)
from specfit.core.constants import (
    FWHM_TO_SIGMA,
    GAUSS_FWHM_CONTENT,
    MIN_MEAN_BACKGROUND,
    PEAK_FIT_MAXITER,
)
from specfit.core.domain.measurement import (
    measurement,
    measurements_from_covariance,
    measurements_without_uncertainty,
)
from specfit.core.domain.peaks import PeakStats
from specfit.core.lineshapes.models import GammaPeakModel, get_model
from specfit.core.results.statistics import p_value, p_value_loglike_ratio
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.exceptions import ContractViolationError, NumericsError, OptimizationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from specfit.core.domain.histogram import Histogram
    from specfit.core.domain.measurement import Measurement
    from specfit.core.lineshapes.models import PeakModel
    from specfit.core.results.statistics import GoodnessOfFit
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.typing import FloatArray, ModelFunction

logger = logging.getLogger(__name__)

GofMethod = Literal["chi2", "loglike_ratio"]

_MIN_MODEL_COUNTS = 1e-300


def estimate_single_peak_stats(h: Histogram) -> PeakStats:
    """Rough position, width, counts and background of the dominant peak.

    The half-maximum thresholds are taken halfway between the peak height
    and the content of the first (left side) or last (right side) bin, so
    that a flat background does not widen the estimate. The position is the
    mean of the maximum bin and the midpoint of the crossings.

    Args:
        h: Histogram containing a single dominant peak

    Returns
    -------
        PeakStats with the background as a density (counts per unit x)

    Raises
    ------
        ContractViolationError: If the histogram has no counts.
    """
    counts = np.asarray(h.counts, dtype=float)
    if not h.total > 0:
        msg = "Cannot estimate peak statistics of a histogram without counts"
        raise ContractViolationError(msg)
    centers = h.centers

    i_max = int(np.argmax(counts))
    amplitude = counts[i_max]
    peak_max_pos = centers[i_max]

    left_threshold = 0.5 * (counts[0] + amplitude)
    right_threshold = 0.5 * (counts[-1] + amplitude)
    i_left = int(np.flatnonzero(counts[: i_max + 1] >= left_threshold)[0])
    i_right = i_max + int(np.flatnonzero(counts[i_max:] >= right_threshold)[-1])

    fwhm = centers[i_right] - centers[i_left]
    if fwhm <= 0:
        fwhm = float(h.widths[i_max])
    peak_pos = 0.5 * (peak_max_pos + 0.5 * (centers[i_left] + centers[i_right]))

    background_counts = 0.5 * (counts[0] + counts[-1])
    if background_counts == 0:
        background_counts = MIN_MEAN_BACKGROUND
    n_fwhm_bins = i_right - i_left + 1
    peak_counts = (counts[i_left : i_right + 1].sum() - background_counts * n_fwhm_bins) / GAUSS_FWHM_CONTENT

    return PeakStats(
        peak_pos=float(peak_pos),
        peak_fwhm=float(fwhm),
        peak_sigma=float(fwhm * FWHM_TO_SIGMA),
        peak_counts=float(peak_counts),
        mean_background=float(background_counts / np.mean(h.widths)),
    )


def hist_loglike(f: ModelFunction, h: Histogram) -> float:
    """Poisson log-likelihood of the histogram counts under the model density ``f``."""
    model_counts = h.widths * np.nan_to_num(np.asarray(f(h.centers), dtype=float), nan=0.0)
    model_counts = np.clip(model_counts, _MIN_MODEL_COUNTS, None)
    counts = np.asarray(h.counts, dtype=float)
    return float(np.sum(counts * np.log(model_counts) - model_counts - special.gammaln(counts + 1.0)))


@dataclass(slots=True)
class PeakFitResult:
    """Result of a binned maximum-likelihood peak fit.

    Attributes
    ----------
        parameters: Best-fit parameters by name (NaN errors without uncertainty)
        fwhm: Full width at half maximum of the signal
        covariance: Covariance of all parameters (zero rows for fixed ones)
        gof: Goodness of fit, or None without uncertainty
        loglike: Log-likelihood at the optimum
        converged: Whether the optimizer reported success
        f_fit: Best-fit density
        components: Component densities by name (signal, tail, step, ...)
        histogram: Fitted histogram
        model: Peakshape model
        diagnostics: Records produced during the fit
    """

    parameters: dict[str, Measurement]
    fwhm: Measurement
    covariance: FloatArray | None
    gof: GoodnessOfFit | None
    loglike: float
    converged: bool
    f_fit: ModelFunction
    components: dict[str, ModelFunction]
    histogram: Histogram
    model: PeakModel
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    def __getitem__(self, name: str) -> Measurement:
        return self.parameters[name]

    @property
    def values(self) -> FloatArray:
        """Best-fit values in model parameter order."""
        return np.array([p.nominal_value for p in self.parameters.values()], dtype=float)

    @property
    def mu(self) -> Measurement:
        """Peak position."""
        return self.parameters["mu"]

    @property
    def sigma(self) -> Measurement:
        """Gaussian width."""
        return self.parameters["sigma"]

    @property
    def n(self) -> Measurement:
        """Number of signal counts."""
        return self.parameters["n"]

    @property
    def pvalue(self) -> float:
        """Goodness-of-fit p-value (NaN when not computed)."""
        return self.gof.pvalue if self.gof is not None else float("nan")

    @property
    def f_signal(self) -> ModelFunction | None:
        """Signal part (Gaussian and tail)."""
        return self.components.get("signal")

    @property
    def f_tail(self) -> ModelFunction | None:
        """Low-energy tail part."""
        return self.components.get("tail")

    @property
    def f_step(self) -> ModelFunction | None:
        """Step part."""
        return self.components.get("step")

    @property
    def f_background(self) -> ModelFunction | None:
        """Flat background part."""
        return self.components.get("background")


def _parameter_scale(values: FloatArray, lower: FloatArray, upper: FloatArray) -> FloatArray:
    scale = np.abs(values)
    span = np.where(np.isfinite(upper - lower), upper - lower, 1.0)
    fallback = np.where(span > 0, 1e-3 * span, 1.0)
    return np.where(scale > 0, scale, fallback)


def fit_binned_peak(
    h: Histogram,
    ps: PeakStats,
    model: str | PeakModel,
    *,
    uncertainty: bool = True,
    fixed: Iterable[str] | None = None,
    v_init: Sequence[float] | None = None,
    gof_method: GofMethod = "chi2",
    diagnostics: DiagnosticLog | None = None,
) -> PeakFitResult:
    """Maximum-likelihood fit of a peakshape model to a histogram.

    Args:
        h: Histogram around the peak
        ps: Starting point and bound scale of the fit
        model: Model instance or registered model name
        uncertainty: Compute covariance, FWHM uncertainty and goodness of fit
        fixed: Names of parameters kept at their starting values
        v_init: Starting values for all parameters in model order
            (overrides the guess derived from ``ps``)
        gof_method: ``"chi2"`` or ``"loglike_ratio"``
        diagnostics: Log collecting the records of this fit

    Returns
    -------
        PeakFitResult

    Raises
    ------
        ContractViolationError: If the histogram has no counts or ``v_init``
            has the wrong length.
        OptimizationError: If no finite optimum is found.
    """
    diagnostics = diagnostics if diagnostics is not None else DiagnosticLog(__name__)
    if not h.total > 0:
        msg = "Cannot fit a histogram without counts"
        raise ContractViolationError(msg)
    peak_model = get_model(model) if isinstance(model, str) else model

    params = peak_model.create_params(ps, h)
    names = list(peak_model.param_names)
    if v_init is not None:
        if len(v_init) != len(names):
            msg = f"v_init has {len(v_init)} values for {len(names)} parameters"
            raise ContractViolationError(msg)
        params.set_values(v_init)
    params.fix(*(fixed or ()))

    free = params.get_vary_mask()
    base = params.values_array()
    lower, upper = params.get_vary_bounds()
    x0 = params.get_vary_values()
    scale = _parameter_scale(x0, lower, upper)

    def full_values(v_free: FloatArray) -> FloatArray:
        values = base.copy()
        values[free] = v_free
        return values

    def negloglike(v_free: FloatArray) -> float:
        values = full_values(v_free)
        return -hist_loglike(lambda x: peak_model.density(x, values), h)

    bounds = [
        (None if np.isinf(lo) else lo / s, None if np.isinf(hi) else hi / s)
        for lo, hi, s in zip(lower, upper, scale, strict=True)
    ]
    opt = optimize.minimize(
        lambda u: negloglike(u * scale),
        x0 / scale,
        method="L-BFGS-B",
        bounds=bounds,
        options={"maxiter": PEAK_FIT_MAXITER},
    )
    if not np.isfinite(opt.fun) or not np.all(np.isfinite(opt.x)):
        msg = f"Peak fit did not reach a finite optimum: {opt.message}"
        raise OptimizationError(msg)
    if not opt.success:
        diagnostics.warning("peak_fit_not_converged", f"Peak fit did not converge: {opt.message}")

    params.set_vary_values(np.asarray(opt.x, dtype=float) * scale)
    v_free = params.get_vary_values()
    values = params.values_array()
    components = peak_model.components(values)
    f_fit = components["total"]

    try:
        fwhm_value = peak_model.fwhm(values)
    except NumericsError as error:
        diagnostics.warning("fwhm_fallback", f"Numerical FWHM failed ({error}), using the Gaussian FWHM")
        fwhm_value = float(values[names.index("sigma")] / FWHM_TO_SIGMA) if "sigma" in names else np.nan

    if not uncertainty:
        return PeakFitResult(
            parameters=dict(zip(names, measurements_without_uncertainty(values), strict=True)),
            fwhm=measurement(fwhm_value, np.nan),
            covariance=None,
            gof=None,
            loglike=-float(opt.fun),
            converged=bool(opt.success),
            f_fit=f_fit,
            components=components,
            histogram=h,
            model=peak_model,
            diagnostics=diagnostics.records,
        )

    covariance_free = negloglike_covariance(negloglike, v_free, scale)
    covariance = np.zeros((len(names), len(names)))
    covariance[np.ix_(free, free)] = covariance_free
    errors = errors_from_covariance(covariance_free)
    logger.debug("Peak fit: %s", dict(zip(np.array(names)[free], zip(v_free, errors, strict=True), strict=True)))

    def fwhm_of(v: FloatArray) -> float:
        try:
            return peak_model.fwhm(full_values(v))
        except NumericsError:
            return fwhm_value

    fwhm_err = propagate_gradient(fwhm_of, v_free, covariance_free)

    n_free = int(free.sum())
    if gof_method == "loglike_ratio":
        gof = p_value_loglike_ratio(f_fit, h, n_free, diagnostics=diagnostics)
    else:
        gof = p_value(f_fit, h, n_free, diagnostics=diagnostics)

    free_measurements = iter(measurements_from_covariance(v_free, covariance_free))
    parameters = {
        name: next(free_measurements) if free[i] else measurement(values[i], 0.0)
        for i, name in enumerate(names)
    }

    return PeakFitResult(
        parameters=parameters,
        fwhm=measurement(fwhm_value, fwhm_err),
        covariance=covariance,
        gof=gof,
        loglike=-float(opt.fun),
        converged=bool(opt.success),
        f_fit=f_fit,
        components=components,
        histogram=h,
        model=peak_model,
        diagnostics=diagnostics.records,
    )


def fit_single_peak(
    h: Histogram,
    ps: PeakStats,
    *,
    uncertainty: bool = True,
    low_e_tail: bool = True,
    fixed: Iterable[str] | None = None,
    v_init: Sequence[float] | None = None,
    gof_method: GofMethod = "chi2",
    diagnostics: DiagnosticLog | None = None,
) -> PeakFitResult:
    """Fit the HPGe gamma peakshape (Gaussian, tail, step, background).

    Args:
        h: Histogram around the peak
        ps: Starting point from ``estimate_single_peak_stats``
        uncertainty: Compute covariance, FWHM uncertainty and goodness of fit
        low_e_tail: Fit the low-energy tail; when False the tail fraction is
            fixed at zero
        fixed: Further parameters kept at their starting values
        v_init: Starting values for all seven parameters
        gof_method: ``"chi2"`` or ``"loglike_ratio"``
        diagnostics: Log collecting the records of this fit

    Returns
    -------
        PeakFitResult with ``mu``, ``sigma``, ``n``, ``step_amplitude``,
        ``skew_fraction``, ``skew_width`` and ``background``
    """
    model = GammaPeakModel()
    fixed_names = list(fixed or ())
    if not low_e_tail:
        values = list(v_init) if v_init is not None else None
        if values is None:
            values = list(model.create_params(ps, h).values_array())
        values[model.param_names.index("skew_fraction")] = 0.0
        v_init = values
        fixed_names += ["skew_fraction", "skew_width"]
    return fit_binned_peak(
        h,
        ps,
        model,
        uncertainty=uncertainty,
        fixed=fixed_names,
        v_init=v_init,
        gof_method=gof_method,
        diagnostics=diagnostics,
    )


def fit_binned_double_gauss(
    h: Histogram,
    ps: PeakStats,
    *,
    uncertainty: bool = True,
    diagnostics: DiagnosticLog | None = None,
) -> PeakFitResult:
    """Fit two Gaussians on a flat background to a histogram."""
    return fit_binned_peak(
        h,
        ps,
        "double_gaussian",
        uncertainty=uncertainty,
        diagnostics=diagnostics,
    )


def peak_height(result: PeakFitResult, *, n_sigma: float = 0.2, n_points: int = 101) -> float:
    """Maximum of the fitted density within ``mu +- n_sigma * sigma``."""
    mu, sigma = result.mu.nominal_value, result.sigma.nominal_value
    grid = np.linspace(mu - n_sigma * sigma, mu + n_sigma * sigma, n_points)
    return float(np.max(result.f_fit(grid)))

