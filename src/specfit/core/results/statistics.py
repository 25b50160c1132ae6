"""Goodness-of-fit statistics for binned and point-wise fits.

Three interchangeable p-value estimators are provided for a model fitted
to a histogram:

- ``p_value``: Pearson chi2 over the bins with a positive model count.
- ``p_value_loglike_ratio``: same degrees of freedom, statistic
  ``2 * sum(m * log(m / k) + m - k)``.
- ``p_value_mc``: Monte-Carlo p-value from Poisson-resampled histograms,
  each refitted. Immune to asymptotic chi2 caveats, but one full fit per
  sample.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy import stats
from threadpoolctl import threadpool_limits

from specfit.core.constants import CHI2_MIN_MODEL_COUNTS, MC_PVALUE_SAMPLES
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.exceptions import DataQualityError, NumericsError, OptimizationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from specfit.core.domain.histogram import Histogram
    from specfit.core.domain.peaks import PeakStats
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.typing import FloatArray, ModelFunction

logger = logging.getLogger(__name__)

_SKIPPABLE = (DataQualityError, NumericsError, OptimizationError)


@dataclass(frozen=True, slots=True)
class GoodnessOfFit:
    """Goodness-of-fit summary.

    Attributes
    ----------
        pvalue: Upper-tail probability of the statistic
        chi2: Test statistic
        dof: Degrees of freedom (data points minus free parameters)
        residuals_norm: Normalized residuals per bin or data point
        diagnostics: Records produced while computing the statistic
    """

    pvalue: float
    chi2: float
    dof: int
    residuals_norm: FloatArray | None = None
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def reduced_chi2(self) -> float:
        """Chi2 per degree of freedom (NaN without degrees of freedom)."""
        return self.chi2 / self.dof if self.dof > 0 else float("nan")


@dataclass(frozen=True, slots=True)
class MonteCarloPValue:
    """Monte-Carlo p-value with its sample bookkeeping.

    Attributes
    ----------
        pvalue: Fraction of the valid samples fitting at least as badly as
            the data (NaN without valid samples)
        n_valid: Samples whose refit succeeded
        n_samples: Samples drawn
        diagnostics: Records of the skipped samples
    """

    pvalue: float
    n_valid: int
    n_samples: int
    diagnostics: tuple[Diagnostic, ...] = ()


def compute_degrees_of_freedom(n_data: int, n_params: int) -> int:
    """Degrees of freedom ``n_data - n_params``."""
    return int(n_data - n_params)


def chi2_pvalue(chi2: float, dof: int) -> float:
    """Survival function of the chi2 distribution (NaN for ``dof <= 0``)."""
    if dof <= 0:
        return float("nan")
    return float(stats.chi2.sf(chi2, dof))


def prepare_data(h: Histogram) -> tuple[FloatArray, FloatArray, FloatArray]:
    """Counts, bin widths and bin centers of a histogram."""
    return np.asarray(h.counts, dtype=float), h.widths, h.centers


def get_model_counts(f: ModelFunction, h: Histogram) -> FloatArray:
    """Expected bin counts: model density at the bin center times the bin width."""
    return h.widths * np.asarray(f(h.centers), dtype=float)


def poisson_deviance(counts: FloatArray, model_counts: FloatArray) -> float:
    """Likelihood-ratio statistic of a Poisson fit against the saturated model.

    ``2 * sum(m - k + k * log(k / m))``; empty bins contribute ``2 * m``.
    """
    counts = np.asarray(counts, dtype=float)
    model_counts = np.clip(np.asarray(model_counts, dtype=float), 1e-300, None)
    with np.errstate(divide="ignore", invalid="ignore"):
        log_term = np.where(counts > 0, counts * np.log(counts / model_counts), 0.0)
    return float(2.0 * np.sum(model_counts - counts + log_term))


def _warn_low_counts(model_counts: FloatArray, diagnostics: DiagnosticLog) -> None:
    if np.any(model_counts <= CHI2_MIN_MODEL_COUNTS):
        low = float(np.min(model_counts))
        diagnostics.warning(
            "chi2_low_counts",
            f"Bin with <= {round(low)} expected counts, chi2 test might not be valid",
            min_model_counts=low,
        )


def p_value(
    f: ModelFunction,
    h: Histogram,
    n_par: int,
    *,
    diagnostics: DiagnosticLog | None = None,
) -> GoodnessOfFit:
    """Least-squares chi2 p-value of a model fitted to a histogram.

    Args:
        f: Model density with the fit parameters fixed
        h: Fitted histogram
        n_par: Number of free parameters
        diagnostics: Log that also receives the low-count warning

    Returns
    -------
        GoodnessOfFit over the bins with a positive model count, carrying
        its own diagnostics
    """
    local = DiagnosticLog(__name__)
    counts, _, _ = prepare_data(h)
    model_counts = get_model_counts(f, h)
    mask = model_counts > 0
    m, k = model_counts[mask], counts[mask]
    chi2 = float(np.sum((m - k) ** 2 / m))
    dof = compute_degrees_of_freedom(int(mask.sum()), n_par)
    pval = chi2_pvalue(chi2, dof)
    _warn_low_counts(model_counts, local)
    if diagnostics is not None:
        diagnostics.extend(local.records)
    logger.debug("p-value = %.2f (chi2 = %.2f, dof = %d)", pval, chi2, dof)

    residuals = np.zeros_like(counts)
    residuals[mask] = (k - m) / np.sqrt(m)
    return GoodnessOfFit(pvalue=pval, chi2=chi2, dof=dof, residuals_norm=residuals, diagnostics=local.records)


def p_value_loglike_ratio(
    f: ModelFunction,
    h: Histogram,
    n_par: int,
    *,
    diagnostics: DiagnosticLog | None = None,
) -> GoodnessOfFit:
    """P-value from ``2 * sum(m * log(m / k) + m - k)`` with the chi2 dof.

    Bins without observed counts contribute ``2 * m``.
    """
    local = DiagnosticLog(__name__)
    counts, _, _ = prepare_data(h)
    model_counts = get_model_counts(f, h)
    mask = model_counts > 0
    m, k = model_counts[mask], counts[mask]
    with np.errstate(divide="ignore", invalid="ignore"):
        terms = np.where(k > 0, m * np.log(m / k) + m - k, m)
    chi2 = float(2.0 * np.sum(terms))
    dof = compute_degrees_of_freedom(int(mask.sum()), n_par)
    _warn_low_counts(model_counts, local)
    if diagnostics is not None:
        diagnostics.extend(local.records)

    residuals = np.zeros_like(counts)
    residuals[mask] = (k - m) / np.sqrt(m)
    return GoodnessOfFit(
        pvalue=chi2_pvalue(chi2, dof), chi2=chi2, dof=dof, residuals_norm=residuals, diagnostics=local.records
    )


def p_value_mc(
    f: ModelFunction,
    h: Histogram,
    ps: PeakStats,
    v_ml: FloatArray | None = None,
    *,
    n_samples: int = MC_PVALUE_SAMPLES,
    seed: int | np.random.SeedSequence | None = None,
    n_workers: int = 1,
    fit_function: Callable[..., object] | None = None,
    fit_kwargs: dict[str, Any] | None = None,
) -> MonteCarloPValue:
    """Monte-Carlo p-value from Poisson-resampled histograms.

    Every sample draws Poisson counts around the best-fit model, refits
    them without uncertainties and computes the
    likelihood-ratio statistic of its own best fit. The p-value is the
    fraction of samples fitting at least as badly as the data. Samples that
    come out empty or whose refit fails are skipped with a diagnostic and
    left out of the fraction.

    Each sample owns a child generator spawned from ``seed``, so the result
    does not depend on ``n_workers`` or on execution order.

    Args:
        f: Best-fit model density
        h: Observed histogram
        ps: Peak statistics used to seed each refit
        v_ml: Best-fit parameter values, starting point of each refit
            (``None`` starts from ``ps``)
        n_samples: Number of resampled histograms
        seed: Seed or seed sequence; ``None`` draws fresh entropy
        n_workers: Threads used for the refits
        fit_function: Refit callable with the ``fit_single_peak`` signature
        fit_kwargs: Extra keyword arguments of each refit (e.g. ``low_e_tail``)

    Returns
    -------
        MonteCarloPValue with the empirical p-value in ``[0, 1]`` and the
        number of valid samples
    """
    if fit_function is None:
        from specfit.core.fitting.peak import fit_single_peak

        fit_function = fit_single_peak

    counts, _, _ = prepare_data(h)
    model_counts = get_model_counts(f, h)
    observed = poisson_deviance(counts, model_counts)
    model_counts = np.clip(model_counts, 0.0, None)

    seed_seq = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    children = seed_seq.spawn(n_samples)

    def one_sample(child: np.random.SeedSequence) -> tuple[float, str | None]:
        rng = np.random.default_rng(child)
        counts_mc = rng.poisson(model_counts)
        if not np.any(counts_mc):
            return np.nan, "resampled histogram is empty"
        h_mc = h.with_counts(counts_mc)
        try:
            result = fit_function(h_mc, ps, uncertainty=False, v_init=v_ml, **(fit_kwargs or {}))
        except _SKIPPABLE as error:
            return np.nan, f"refit failed: {error}"
        return poisson_deviance(h_mc.counts, get_model_counts(result.f_fit, h_mc)), None

    if n_workers > 1:
        with threadpool_limits(limits=1), ThreadPoolExecutor(max_workers=n_workers) as pool:
            outcomes = list(pool.map(one_sample, children))
    else:
        outcomes = list(map(one_sample, children))

    diagnostics = DiagnosticLog(__name__)
    for i, (_, reason) in enumerate(outcomes):
        if reason is not None:
            diagnostics.warning("mc_sample_skipped", f"Skipping Monte-Carlo sample {i}: {reason}", sample=i)
    statistics = np.array([s for s, reason in outcomes if reason is None], dtype=float)
    n_valid = int(statistics.size)
    if n_valid == 0:
        diagnostics.warning("mc_no_valid_samples", f"None of the {n_samples} Monte-Carlo samples could be refitted")
        pval = float("nan")
    else:
        pval = float(np.mean(statistics >= observed))
    logger.debug("Monte-Carlo p-value = %.3f (%d of %d samples)", pval, n_valid, n_samples)
    return MonteCarloPValue(pvalue=pval, n_valid=n_valid, n_samples=n_samples, diagnostics=diagnostics.records)
