"""Unbinned fits of truncated Gaussians and peak window cuts.

Noise-like quantities (baselines, ENC, PSD classifiers) are dominated by a
Gaussian core with non-Gaussian outliers. The core is isolated with
``cut_single_peak`` and fitted by unbinned maximum likelihood of a
Gaussian renormalized to the cut window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING

import numpy as np
from scipy import optimize, stats

from specfit.core.algorithms.hessian import errors_from_covariance, negloglike_covariance
from specfit.core.domain.histogram import Histogram
from specfit.core.domain.measurement import measurement
from specfit.core.domain.peaks import CutWindow
from specfit.core.lineshapes.models import TruncatedGaussianModel
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.exceptions import DataQualityError, OptimizationError

if TYPE_CHECKING:
    from specfit.core.domain.measurement import Measurement
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.typing import FloatArray, ModelFunction

logger = logging.getLogger(__name__)

MIN_TRUNC_GAUSS_POINTS = 3
"""Minimum number of in-window values for a truncated Gaussian fit."""


@dataclass(slots=True)
class TruncGaussFitResult:
    """Result of an unbinned truncated Gaussian fit.

    Attributes
    ----------
        mu: Gaussian mean
        sigma: Gaussian width
        n: Number of values inside the fit window
        low: Lower edge of the fit window
        high: Upper edge of the fit window
        covariance: Covariance of the free parameters, or None
        converged: Whether the optimizer reported success
        f_fit: ``n`` times the truncated density
        diagnostics: Records produced during the fit
    """

    mu: Measurement
    sigma: Measurement
    n: Measurement
    low: float
    high: float
    covariance: FloatArray | None
    converged: bool
    f_fit: ModelFunction
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)


def cut_single_peak(
    x: FloatArray,
    min_x: float,
    max_x: float,
    *,
    n_bins: int = -1,
    relative_cut: float = 0.5,
) -> CutWindow:
    """Window around the dominant peak of a sample.

    The values inside ``(min_x, max_x)`` are histogrammed (``n_bins`` bins,
    or Friedman-Diaconis for ``n_bins <= 0``). Walking outwards from the
    highest bin, the window edges are the first bins whose content drops
    below ``relative_cut`` times the maximum.

    Args:
        x: Sample values
        min_x: Lower limit of the search range
        max_x: Upper limit of the search range
        n_bins: Number of bins (``<= 0`` for automatic binning)
        relative_cut: Fraction of the maximum defining the edges

    Returns
    -------
        CutWindow with the edge and maximum positions (bin centers)

    Raises
    ------
        DataQualityError: If no finite value lies in the search range, or all
            values in it are identical.
    """
    values = np.asarray(x, dtype=float)
    values = values[np.isfinite(values) & (values > min_x) & (values < max_x)]
    if values.size == 0:
        msg = f"No values inside ({min_x}, {max_x})"
        raise DataQualityError(msg)
    if np.ptp(values) == 0:
        msg = f"All {values.size} values inside ({min_x}, {max_x}) equal {values[0]}, no peak to cut"
        raise DataQualityError(msg)
    h = Histogram.from_samples(values, n_bins=n_bins) if n_bins > 0 else Histogram.from_samples(values)

    counts, centers = h.counts, h.centers
    i_max = int(np.argmax(counts))
    threshold = relative_cut * counts[i_max]
    below_left = np.flatnonzero(counts[:i_max] < threshold)
    below_right = np.flatnonzero(counts[i_max + 1 :] < threshold)
    low = centers[below_left[-1]] if below_left.size else h.edges[0]
    high = centers[i_max + 1 + below_right[0]] if below_right.size else h.edges[-1]
    return CutWindow(low=float(low), high=float(high), max=float(centers[i_max]))


def _window(x: FloatArray, low: float, high: float) -> FloatArray:
    values = np.asarray(x, dtype=float)
    values = values[np.isfinite(values) & (values >= low) & (values <= high)]
    if values.size < MIN_TRUNC_GAUSS_POINTS:
        msg = f"Only {values.size} values inside [{low}, {high}], cannot fit a truncated Gaussian"
        raise DataQualityError(msg)
    return values


def _trunc_negloglike(values: FloatArray, mu: float, sigma: float, low: float, high: float) -> float:
    if not sigma > 0:
        return np.inf
    a, b = (low - mu) / sigma, (high - mu) / sigma
    logpdf = stats.truncnorm.logpdf(values, a, b, loc=mu, scale=sigma)
    total = float(np.sum(logpdf))
    return -total if np.isfinite(total) else 1e300


def fit_single_trunc_gauss(
    x: FloatArray,
    cuts: CutWindow | tuple[float, float],
    *,
    uncertainty: bool = True,
) -> TruncGaussFitResult:
    """Unbinned ML fit of a Gaussian truncated to the cut window.

    Args:
        x: Sample values; only those inside ``[low, high]`` are used
        cuts: Fit window, a ``CutWindow`` or ``(low, high)``
        uncertainty: Compute the covariance of ``mu`` and ``sigma``

    Returns
    -------
        TruncGaussFitResult

    Raises
    ------
        DataQualityError: If fewer than three values lie inside the window.
        OptimizationError: If no finite optimum is found.
    """
    diagnostics = DiagnosticLog(__name__)
    low, high = (cuts.low, cuts.high) if isinstance(cuts, CutWindow) else (float(cuts[0]), float(cuts[1]))
    values = _window(x, low, high)

    width = high - low
    mu0 = float(np.mean(values))
    sigma0 = float(np.std(values)) or 0.1 * width
    scale = np.array([max(abs(mu0), sigma0), sigma0])

    def negloglike(v: FloatArray) -> float:
        return _trunc_negloglike(values, v[0], v[1], low, high)

    bounds = [
        ((low - width) / scale[0], (high + width) / scale[0]),
        (1e-6 * width / scale[1], 10.0 * width / scale[1]),
    ]
    opt = optimize.minimize(
        lambda u: negloglike(u * scale),
        np.array([mu0, sigma0]) / scale,
        method="L-BFGS-B",
        bounds=bounds,
    )
    if not np.isfinite(opt.fun):
        msg = f"Truncated Gaussian fit did not reach a finite optimum: {opt.message}"
        raise OptimizationError(msg)
    if not opt.success:
        diagnostics.warning("trunc_gauss_not_converged", f"Truncated Gaussian fit: {opt.message}")
    mu, sigma = np.asarray(opt.x, dtype=float) * scale
    n = float(values.size)

    covariance = None
    mu_err = sigma_err = np.nan
    if uncertainty:
        covariance = negloglike_covariance(negloglike, np.array([mu, sigma]), scale)
        mu_err, sigma_err = errors_from_covariance(covariance)
    logger.debug("Truncated Gaussian in [%.4g, %.4g]: mu = %.4g, sigma = %.4g", low, high, mu, sigma)

    return TruncGaussFitResult(
        mu=measurement(mu, mu_err),
        sigma=measurement(sigma, sigma_err),
        n=measurement(n, np.sqrt(n) if uncertainty else np.nan),
        low=low,
        high=high,
        covariance=covariance,
        converged=bool(opt.success),
        f_fit=partial(TruncatedGaussianModel(low, high).density, values=(mu, sigma, n)),
        diagnostics=diagnostics.records,
    )


def fit_half_centered_trunc_gauss(
    x: FloatArray,
    center: float,
    cuts: CutWindow | tuple[float, float],
    *,
    left: bool = False,
    uncertainty: bool = True,
) -> TruncGaussFitResult:
    """Fit the width of one half of a Gaussian with a fixed center.

    Only the side of the distribution between ``center`` and one window
    edge is used: ``[low, center]`` when ``left`` is True, else
    ``[center, high]``. Useful when the other side carries a tail.

    Returns
    -------
        TruncGaussFitResult with ``mu`` fixed at ``center`` (zero error)

    Raises
    ------
        DataQualityError: If fewer than three values lie inside the half window.
        OptimizationError: If no finite optimum is found.
    """
    diagnostics = DiagnosticLog(__name__)
    low, high = (cuts.low, cuts.high) if isinstance(cuts, CutWindow) else (float(cuts[0]), float(cuts[1]))
    low, high = (low, center) if left else (center, high)
    if not high > low:
        msg = f"Empty half window [{low}, {high}] around center {center}"
        raise DataQualityError(msg)
    values = _window(x, low, high)

    width = high - low
    sigma0 = float(np.sqrt(np.mean((values - center) ** 2))) or 0.5 * width

    def negloglike(v: FloatArray) -> float:
        return _trunc_negloglike(values, center, v[0], low, high)

    opt = optimize.minimize_scalar(
        lambda s: negloglike(np.array([s])),
        bounds=(1e-6 * width, 20.0 * max(width, sigma0)),
        method="bounded",
    )
    if not np.isfinite(opt.fun):
        msg = f"Half truncated Gaussian fit did not reach a finite optimum: {opt.message}"
        raise OptimizationError(msg)
    sigma = float(opt.x)
    n = float(values.size)

    covariance = None
    sigma_err = np.nan
    if uncertainty:
        covariance = negloglike_covariance(negloglike, np.array([sigma]), np.array([sigma]))
        sigma_err = float(errors_from_covariance(covariance)[0])

    return TruncGaussFitResult(
        mu=measurement(center, 0.0),
        sigma=measurement(sigma, sigma_err),
        n=measurement(n, np.sqrt(n) if uncertainty else np.nan),
        low=low,
        high=high,
        covariance=covariance,
        converged=bool(opt.success),
        f_fit=partial(TruncatedGaussianModel(low, high).density, values=(center, sigma, n)),
        diagnostics=diagnostics.records,
    )
