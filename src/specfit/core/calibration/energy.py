"""Energy calibration from the gamma lines of a calibration source.

The chain is:

1. ``simple_calibration``: locate the full-energy peak (FEP) in the raw
   spectrum, scale the spectrum so that it sits at the reference line and
   cut a histogram around every calibration line.
2. ``fit_peaks``: fit every histogram with the gamma peakshape.
3. ``fit_calibration``: chi2 polynomial fit of the line energies against
   the fitted raw peak positions.
4. ``fit_fwhm``: resolution curve ``sqrt(p0 + p1 * E)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from scipy import ndimage, signal

from specfit.core.algorithms.hessian import propagate_gradient
from specfit.core.calibration.expressions import CalibrationFunction, Polynomial, Variable, evaluate
from specfit.core.constants import QBB_LINE, TL208_FEP
from specfit.core.domain.histogram import Histogram, get_friedman_diaconis_bin_width
from specfit.core.domain.measurement import measurement, mvalue
from specfit.core.fitting.chi2fit import chi2fit_polynomial
from specfit.core.fitting.peak import estimate_single_peak_stats, fit_single_peak
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.events import emit_sweep_progress
from specfit.core.shared.exceptions import (
    ContractViolationError,
    DataQualityError,
    NumericsError,
    OptimizationError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from specfit.core.domain.measurement import Measurement
    from specfit.core.domain.peaks import PeakStats
    from specfit.core.fitting.chi2fit import Chi2FitResult, PullTerm
    from specfit.core.fitting.peak import PeakFitResult
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.events import EventDispatcher
    from specfit.core.shared.typing import FloatArray

logger = logging.getLogger(__name__)

AUTOCAL_BINNING = np.arange(0.0, 3000.0 + 0.5, 0.5)
"""Binning (keV) of the histogram returned by ``autocal_energy``."""

Window = float | tuple[float, float]


@dataclass(slots=True)
class AutocalResult:
    """Quantile-based rough calibration.

    Attributes
    ----------
        m_calib: Calibration constant (keV per raw unit)
        function: ``e -> m_calib * e``
        cal_hist: Calibrated spectrum on a 0.5 keV grid up to 3 MeV
    """

    m_calib: float
    function: CalibrationFunction
    cal_hist: Histogram


def _linear_function(m_calib: float, variable: str = "e") -> CalibrationFunction:
    return CalibrationFunction(
        expression=Polynomial((0.0, Variable("m_calib")), Variable(variable)),
        parameters={"m_calib": m_calib},
        variable=variable,
    )


def autocal_energy(
    e_raw: FloatArray,
    *,
    quantile_perc: float = 0.995,
    reference_line: float = TL208_FEP,
) -> AutocalResult:
    """Calibrate by placing a high quantile of the raw spectrum at the FEP.

    Args:
        e_raw: Raw energies
        quantile_perc: Quantile assumed to coincide with the FEP
        reference_line: Energy of the FEP (keV)

    Returns
    -------
        AutocalResult with the calibration constant and histogram
    """
    values = np.asarray(e_raw, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        msg = "Cannot calibrate an empty spectrum"
        raise ContractViolationError(msg)
    m_calib = float(reference_line / np.quantile(values, quantile_perc))
    cal_hist = Histogram.from_samples(values * m_calib, edges=AUTOCAL_BINNING)
    return AutocalResult(m_calib=m_calib, function=_linear_function(m_calib), cal_hist=cal_hist)


def calibrate_energy(e: FloatArray, m_calib: float, n_calib: float = 0.0) -> FloatArray:
    """Linear calibration ``e * m_calib + n_calib`` (returns a new array)."""
    return np.asarray(e, dtype=float) * m_calib + n_calib


def _split_window(window: Window) -> tuple[float, float]:
    if isinstance(window, int | float):
        return float(window), float(window)
    left, right = window
    return float(left), float(right)


def find_fep_position(
    e_uncal: FloatArray,
    *,
    bin_width: float | None = None,
    quantile_range: tuple[float, float] = (0.05, 0.5),
    smoothing_sigma: float = 2.0,
    prominence_fraction: float = 0.1,
) -> float:
    """Raw position of the highest-energy prominent peak.

    The spectrum is histogrammed with the Friedman-Diaconis width of the
    bulk of the data (``quantile_range``), smoothed with a Gaussian kernel
    of ``smoothing_sigma`` bins and searched with ``scipy.signal.find_peaks``.

    Raises
    ------
        DataQualityError: If no peak passes the prominence threshold.
    """
    values = np.asarray(e_uncal, dtype=float)
    values = values[np.isfinite(values) & (values > 0)]
    if values.size == 0:
        msg = "No positive finite energies to search for the FEP"
        raise DataQualityError(msg)
    if bin_width is None:
        low, high = np.quantile(values, quantile_range)
        bin_width = get_friedman_diaconis_bin_width(values[(values > low) & (values < high)])
    h = Histogram.from_samples(values, bin_width=bin_width, range=(0.0, float(values.max())))
    smoothed = ndimage.gaussian_filter1d(h.counts, smoothing_sigma)
    peaks, _ = signal.find_peaks(smoothed, prominence=prominence_fraction * smoothed.max())
    if peaks.size == 0:
        msg = "No prominent peak found in the raw spectrum"
        raise DataQualityError(msg)
    return float(h.centers[peaks[-1]])


def get_peakhists(
    e: FloatArray,
    lines: Sequence[float],
    window_sizes: Sequence[Window] | Window,
    *,
    binning_peak_window: float = 10.0,
) -> list[Histogram]:
    """Histograms around each line.

    The bin width of each histogram is the Friedman-Diaconis width of the
    values within ``binning_peak_window`` of the line.

    Args:
        e: Roughly calibrated energies
        lines: Line energies
        window_sizes: A list with one window per line, or a single number
            or ``(left, right)`` tuple used for every line
        binning_peak_window: Half width of the region defining the bin width

    Returns
    -------
        One histogram per line
    """
    values = np.asarray(e, dtype=float)
    values = values[np.isfinite(values)]
    if isinstance(window_sizes, int | float) or (
        isinstance(window_sizes, tuple) and all(isinstance(w, int | float) for w in window_sizes)
    ):
        window_sizes = [window_sizes] * len(lines)
    if len(window_sizes) != len(lines):
        msg = f"Got {len(window_sizes)} windows for {len(lines)} lines"
        raise ContractViolationError(msg)

    peakhists = []
    for line, window in zip(lines, window_sizes, strict=True):
        left, right = _split_window(window)
        near = values[(values > line - binning_peak_window) & (values < line + binning_peak_window)]
        bin_width = get_friedman_diaconis_bin_width(near)
        edges = np.arange(line - left, line + right + bin_width, bin_width)
        peakhists.append(Histogram.from_samples(values, edges=edges))
    return peakhists


@dataclass(slots=True)
class SimpleCalibrationResult:
    """Rough calibration and peak histograms.

    Attributes
    ----------
        m_cal_simple: Rough calibration constant (keV per raw unit)
        fep_guess: Raw FEP position
        bin_width: Bin width (raw units) of ``h_uncal``
        h_uncal: Raw spectrum
        h_calsimple: Roughly calibrated spectrum
        peakhists: Histogram per line (roughly calibrated)
        peakstats: Peak statistics per line
    """

    m_cal_simple: float
    fep_guess: float
    bin_width: float
    h_uncal: Histogram
    h_calsimple: Histogram
    peakhists: list[Histogram]
    peakstats: list[PeakStats]


def simple_calibration(
    e_uncal: FloatArray,
    lines: Sequence[float],
    window_sizes: Sequence[Window] | Window,
    *,
    calib_line: float = TL208_FEP,
    quantile_perc: float = np.nan,
    binning_peak_window: float = 10.0,
) -> SimpleCalibrationResult:
    """Rough calibration on the FEP and histograms around the lines.

    Args:
        e_uncal: Raw energies
        lines: Line energies (keV)
        window_sizes: Histogram window per line (keV)
        calib_line: Energy of the FEP (keV)
        quantile_perc: If finite, the FEP is taken at this quantile of the
            spectrum instead of the last prominent peak
        binning_peak_window: Half width (keV) used for the bin width

    Returns
    -------
        SimpleCalibrationResult
    """
    values = np.asarray(e_uncal, dtype=float)
    values = values[np.isfinite(values)]
    low, high = np.quantile(values, [0.05, 0.5])
    bin_width = get_friedman_diaconis_bin_width(values[(values > low) & (values < high)])
    if np.isnan(quantile_perc):
        fep_guess = find_fep_position(values, bin_width=bin_width)
    else:
        fep_guess = float(np.quantile(values, quantile_perc))
    m_cal_simple = calib_line / fep_guess
    logger.info("Simple calibration: FEP at %.4g raw, m_cal_simple = %.6g", fep_guess, m_cal_simple)

    e_simple = values * m_cal_simple
    h_uncal = Histogram.from_samples(values, bin_width=bin_width, range=(0.0, float(values.max())))
    h_calsimple = Histogram.from_samples(
        e_simple, bin_width=bin_width * m_cal_simple, range=(0.0, 1.2 * calib_line)
    )
    peakhists = get_peakhists(e_simple, lines, window_sizes, binning_peak_window=binning_peak_window)
    peakstats = [estimate_single_peak_stats(h) for h in peakhists]
    return SimpleCalibrationResult(
        m_cal_simple=m_cal_simple,
        fep_guess=fep_guess,
        bin_width=bin_width,
        h_uncal=h_uncal,
        h_calsimple=h_calsimple,
        peakhists=peakhists,
        peakstats=peakstats,
    )


@dataclass(slots=True)
class PeakFitsResult:
    """Per-line peak fits.

    Attributes
    ----------
        peaks: Lines that were fitted successfully
        mu: Raw peak positions (fitted position divided by ``m_cal_simple``)
        fwhm: FWHM in roughly calibrated units (keV)
        fits: Fit result per fitted line
        diagnostics: Records of skipped lines and fit warnings
    """

    peaks: list[float]
    mu: list[Measurement]
    fwhm: list[Measurement]
    fits: dict[float, PeakFitResult]
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)


def fit_peaks(
    peakhists: Sequence[Histogram],
    peakstats: Sequence[PeakStats],
    lines: Sequence[float],
    *,
    uncertainty: bool = True,
    low_e_tail: bool = True,
    m_cal_simple: float = 1.0,
    dispatcher: EventDispatcher | None = None,
) -> PeakFitsResult:
    """Fit the gamma peakshape to every peak histogram.

    A line whose peak statistics are invalid or whose fit fails is skipped
    with a warning; the other lines are still fitted.

    Raises
    ------
        ContractViolationError: If the input lengths differ.
    """
    if not len(peakhists) == len(peakstats) == len(lines):
        msg = f"Got {len(peakhists)} histograms, {len(peakstats)} peak stats and {len(lines)} lines"
        raise ContractViolationError(msg)
    diagnostics = DiagnosticLog(__name__)

    peaks, mu, fwhm, fits = [], [], [], {}
    for i, (h, ps, line) in enumerate(zip(peakhists, peakstats, lines, strict=True)):
        valid = False
        if not ps.is_valid:
            diagnostics.warning("skip_peak", f"Invalid peak statistics for line {line}, skipping", line=line)
        else:
            try:
                result = fit_single_peak(h, ps, uncertainty=uncertainty, low_e_tail=low_e_tail)
            except (DataQualityError, NumericsError, OptimizationError) as error:
                diagnostics.warning("skip_peak", f"Fit of line {line} failed: {error}", line=line)
            else:
                diagnostics.extend(result.diagnostics)
                peaks.append(float(line))
                mu.append(result.mu / m_cal_simple)
                fwhm.append(result.fwhm)
                fits[float(line)] = result
                valid = True
                logger.info("Fitted line %.2f: mu = %s, fwhm = %s", line, result.mu, result.fwhm)
        emit_sweep_progress(dispatcher, i + 1, len(lines), valid=valid, line=line)
    return PeakFitsResult(peaks=peaks, mu=mu, fwhm=fwhm, fits=fits, diagnostics=diagnostics.records)


def fit_calibration(
    pol_order: int,
    mu: Sequence[Measurement | float],
    peaks: Sequence[float],
    *,
    pull_t: Sequence[PullTerm | None] | None = None,
    variable: str = "e",
    uncertainty: bool = True,
) -> Chi2FitResult:
    """Polynomial calibration curve mapping raw positions to line energies.

    Raises
    ------
        ContractViolationError: If ``mu`` and ``peaks`` lengths differ.
        DataQualityError: If there are fewer peaks than coefficients.
    """
    if len(mu) != len(peaks):
        msg = f"Got {len(mu)} positions for {len(peaks)} peaks"
        raise ContractViolationError(msg)
    if len(peaks) < pol_order + 1:
        msg = f"Need at least {pol_order + 1} peaks for a polynomial of order {pol_order}, got {len(peaks)}"
        raise DataQualityError(msg)
    result = chi2fit_polynomial(
        pol_order, list(mu), list(peaks), pull_t=pull_t, variable=variable, uncertainty=uncertainty
    )
    logger.info("Energy calibration: %s", result.function)
    return result


@dataclass(slots=True)
class FwhmCalibrationResult:
    """Resolution curve.

    Attributes
    ----------
        fit: Chi2 fit of ``sqrt(p0 + p1 * E + ...)``
        qbb: FWHM at the Q-value of the double-beta decay of Ge-76
    """

    fit: Chi2FitResult
    qbb: Measurement


def fit_fwhm(
    peaks: Sequence[float],
    fwhm: Sequence[Measurement | float],
    *,
    pol_order: int = 1,
    variable: str = "e",
    qbb: float = QBB_LINE,
) -> FwhmCalibrationResult:
    """Fit the energy resolution curve ``sqrt(polynomial(E))``.

    Raises
    ------
        ContractViolationError: If ``peaks`` and ``fwhm`` lengths differ.
        DataQualityError: If there are fewer peaks than coefficients.
    """
    if len(peaks) != len(fwhm):
        msg = f"Got {len(fwhm)} FWHM values for {len(peaks)} peaks"
        raise ContractViolationError(msg)
    if len(peaks) < pol_order + 1:
        msg = f"Need at least {pol_order + 1} peaks for the resolution curve, got {len(peaks)}"
        raise DataQualityError(msg)
    n_par = pol_order + 1
    v_init = [float(np.mean(mvalue(list(fwhm))) ** 2)] + [0.0] * pol_order
    result = chi2fit_polynomial(pol_order, list(peaks), list(fwhm), f_outer="sqrt", variable=variable, v_init=v_init)

    names = [f"p{i}" for i in range(n_par)]

    def fwhm_at(p: FloatArray) -> float:
        return float(evaluate(result.expression, {**dict(zip(names, p, strict=True)), variable: qbb}))

    qbb_value = fwhm_at(result.values)
    qbb_err = propagate_gradient(fwhm_at, result.values, result.covariance) if result.covariance is not None else np.nan
    logger.info("FWHM at %.2f keV: %.3f +- %.3f keV", qbb, qbb_value, qbb_err)
    return FwhmCalibrationResult(fit=result, qbb=measurement(qbb_value, qbb_err))
