"""Pulse-shape discrimination helpers: survival fractions and PSD cuts.

A survival fraction is the ratio of fitted signal counts of a peak after
and before a cut on a PSD classifier (A/E, LQ, ...). Fitting the peak
rather than counting events removes the Compton continuum underneath it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy import optimize

from specfit.core.domain.histogram import Histogram, get_friedman_diaconis_bin_width
from specfit.core.domain.measurement import measurement, mvalue
from specfit.core.fitting.peak import estimate_single_peak_stats, fit_single_peak
from specfit.core.fitting.trunc_gauss import cut_single_peak
from specfit.core.shared.exceptions import ContractViolationError, DataQualityError

if TYPE_CHECKING:
    from specfit.core.domain.measurement import Measurement
    from specfit.core.fitting.peak import PeakFitResult
    from specfit.core.shared.typing import FloatArray

logger = logging.getLogger(__name__)


class NoSurvivorsError(DataQualityError):
    """No event in the peak window passes the cut."""


@dataclass(slots=True)
class DepCalibrationResult:
    """Fit of the raw DEP and the calibration constant it implies.

    Attributes
    ----------
        m_calib: ``dep / mu`` (keV per raw unit)
        fit: Peak fit of the raw DEP histogram
        histogram: Raw DEP histogram
    """

    m_calib: Measurement
    fit: PeakFitResult
    histogram: Histogram


def prepare_dep_peakhist(
    e: FloatArray,
    dep: float,
    *,
    relative_cut: float = 0.5,
    n_bins_cut: int = 500,
    uncertainty: bool = True,
) -> DepCalibrationResult:
    """Fit the DEP in a raw energy sample and derive a calibration constant.

    Args:
        e: Raw energies of a sample dominated by the DEP
        dep: DEP energy (keV)
        relative_cut: Relative height defining the window used for binning
        n_bins_cut: Bins of the histogram used to locate the peak
        uncertainty: Compute the fit uncertainties

    Returns
    -------
        DepCalibrationResult
    """
    values = np.asarray(e, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        msg = "No finite energies in the DEP sample"
        raise DataQualityError(msg)
    lo, hi = float(values.min()), float(values.max())
    pad = 1e-9 * max(abs(lo), abs(hi), 1.0)
    cuts = cut_single_peak(values, lo - pad, hi + pad, n_bins=n_bins_cut, relative_cut=relative_cut)
    bin_width = get_friedman_diaconis_bin_width(values[(values > cuts.low) & (values < cuts.high)])
    h = Histogram.from_samples(values, bin_width=bin_width, range=(lo, hi))
    ps = estimate_single_peak_stats(h)
    fit = fit_single_peak(h, ps, uncertainty=uncertainty, low_e_tail=False)
    m_calib = dep / fit.mu
    logger.debug("DEP calibration: mu = %s, m_calib = %s", fit.mu, m_calib)
    return DepCalibrationResult(m_calib=m_calib, fit=fit, histogram=h)


@dataclass(slots=True)
class SurvivalFractionResult:
    """Peak survival fraction of a PSD cut.

    Attributes
    ----------
        sf: Survival fraction in percent
        n_before: Fitted signal counts before the cut
        n_after: Fitted signal counts after the cut
        fit_before: Peak fit of all events
        fit_after: Peak fit of the surviving events
    """

    sf: Measurement
    n_before: Measurement
    n_after: Measurement
    fit_before: PeakFitResult
    fit_after: PeakFitResult


def get_peak_survival_fraction(
    psd: FloatArray,
    e: FloatArray,
    peak: float,
    window: tuple[float, float],
    cut: float,
    *,
    uncertainty: bool = True,
    low_e_tail: bool = False,
    inverted: bool = False,
) -> SurvivalFractionResult:
    """Fraction of peak signal counts that survive ``psd > cut``.

    Args:
        psd: Classifier values, aligned with ``e``
        e: Calibrated energies
        peak: Peak energy
        window: Distance ``(left, right)`` of the fit window from the peak
        cut: Classifier cut value
        uncertainty: Propagate the fit uncertainties
        low_e_tail: Fit the low-energy tail
        inverted: Keep ``psd < cut`` instead

    Returns
    -------
        SurvivalFractionResult

    Raises
    ------
        ContractViolationError: If ``psd`` and ``e`` lengths differ.
        DataQualityError: If the window holds too few events.
    """
    psd = np.asarray(psd, dtype=float)
    e = np.asarray(e, dtype=float)
    if psd.shape != e.shape:
        msg = f"psd and e lengths differ: {psd.shape} and {e.shape}"
        raise ContractViolationError(msg)
    in_window = (e > peak - window[0]) & (e < peak + window[1]) & np.isfinite(psd)
    e_window, psd_window = e[in_window], psd[in_window]
    survived = psd_window < cut if inverted else psd_window > cut

    bin_width = get_friedman_diaconis_bin_width(e_window[np.abs(e_window - peak) < 0.5 * min(window)])
    edges = np.arange(peak - window[0], peak + window[1] + bin_width, bin_width)
    h_before = Histogram.from_samples(e_window, edges=edges)
    h_after = Histogram.from_samples(e_window[survived], edges=edges)
    if h_after.total == 0:
        msg = f"No events survive the cut {cut:.4g} in the peak at {peak}"
        raise NoSurvivorsError(msg)

    fit_before = fit_single_peak(
        h_before, estimate_single_peak_stats(h_before), uncertainty=uncertainty, low_e_tail=low_e_tail
    )
    fit_after = fit_single_peak(
        h_after, estimate_single_peak_stats(h_after), uncertainty=uncertainty, low_e_tail=low_e_tail
    )
    n_before, n_after = fit_before.n, fit_after.n
    if not n_before.nominal_value > 0:
        msg = f"No signal counts fitted in the peak at {peak}"
        raise DataQualityError(msg)
    if not uncertainty:
        n_before = measurement(n_before.nominal_value, 0.0)
        n_after = measurement(n_after.nominal_value, 0.0)
    sf = 100.0 * n_after / n_before
    return SurvivalFractionResult(sf=sf, n_before=n_before, n_after=n_after, fit_before=fit_before, fit_after=fit_after)


@dataclass(slots=True)
class PsdCutResult:
    """PSD cut reaching a target peak survival fraction.

    Attributes
    ----------
        cut: Classifier cut value
        sf: Survival fraction (percent) at ``cut``
        n_evaluations: Number of survival-fraction evaluations
    """

    cut: float
    sf: float
    n_evaluations: int


def get_psd_cut(
    psd: FloatArray,
    e: FloatArray,
    peak: float,
    window: tuple[float, float],
    cut_search_interval: tuple[float, float],
    *,
    dep_sf: float = 0.9,
    xtol: float = 1e-6,
) -> PsdCutResult:
    """Classifier cut at which the peak keeps ``dep_sf`` of its signal.

    The survival fraction decreases with the cut value; the crossing is
    found with Brent's method on ``cut_search_interval``.

    Raises
    ------
        DataQualityError: If the target is not bracketed by the interval.
    """
    n_evaluations = 0

    def sf_minus_target(cut: float) -> float:
        nonlocal n_evaluations
        n_evaluations += 1
        try:
            result = get_peak_survival_fraction(psd, e, peak, window, cut, uncertainty=False)
        except NoSurvivorsError:
            return -dep_sf
        return mvalue(result.sf) / 100.0 - dep_sf

    low, high = cut_search_interval
    f_low, f_high = sf_minus_target(low), sf_minus_target(high)
    if not np.sign(f_low) != np.sign(f_high):
        msg = (
            f"Survival fraction {dep_sf:.3g} not bracketed in [{low:.4g}, {high:.4g}] "
            f"(SF - target: {f_low:.3g}, {f_high:.3g})"
        )
        raise DataQualityError(msg)
    cut = optimize.brentq(sf_minus_target, low, high, xtol=xtol)
    sf = sf_minus_target(cut) + dep_sf
    logger.debug("PSD cut %.6g keeps %.2f%% of the peak at %s", cut, 100 * sf, peak)
    return PsdCutResult(cut=float(cut), sf=100.0 * sf, n_evaluations=n_evaluations)
