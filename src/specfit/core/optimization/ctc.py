"""Charge-trapping (drift-time) correction of the energy.

Charge trapping makes the reconstructed energy depend on the drift time.
The correction ``e_ctc = e + fct * qdrift`` is tuned by minimizing
``log(FWHM / peak height)`` of a refitted peak, which rewards both a
narrower and a taller peak.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from scipy import optimize

from specfit.core.algorithms.time_limit import TimeLimitedObjective, TimeLimitReached
from specfit.core.calibration.expressions import CalibrationFunction, LinearCombination, Variable
from specfit.core.constants import CTC_FCT_RANGE, CTC_TIME_LIMIT, CTC_XATOL
from specfit.core.domain.histogram import Histogram, get_friedman_diaconis_bin_width
from specfit.core.domain.measurement import measurement
from specfit.core.fitting.peak import estimate_single_peak_stats, fit_single_peak, peak_height
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.exceptions import (
    ContractViolationError,
    DataQualityError,
    NumericsError,
    OptimizationError,
)

if TYPE_CHECKING:
    from specfit.core.domain.measurement import Measurement
    from specfit.core.fitting.peak import PeakFitResult
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.typing import FloatArray

logger = logging.getLogger(__name__)

BIN_WIDTH_WINDOW = 5.0
"""Half width (keV) of the region defining the histogram bin widths."""


def f_optimize_ctc(fct: float, e: FloatArray, qdrift: FloatArray, bin_width: float) -> float:
    """``log(FWHM / peak height)`` of the peak in ``e + fct * qdrift``.

    Returns ``inf`` when the corrected peak cannot be fitted so that the
    optimizer steers away from that region.
    """
    e_ctc = np.asarray(e, dtype=float) + fct * np.asarray(qdrift, dtype=float)
    try:
        h = Histogram.from_samples(e_ctc, bin_width=bin_width)
        result = fit_single_peak(h, estimate_single_peak_stats(h), uncertainty=False)
    except (DataQualityError, NumericsError, OptimizationError) as error:
        logger.debug("CTC objective failed at fct = %g: %s", fct, error)
        return np.inf
    height = peak_height(result)
    fwhm = result.fwhm.nominal_value
    if not (fwhm > 0 and height > 0):
        return np.inf
    return float(np.log(fwhm / height))


@dataclass(slots=True)
class CtcResult:
    """Energy drift-time correction.

    Attributes
    ----------
        peak: Peak energy
        window: Window ``(left, right)`` around the peak
        fct: Correction factor (uncertainty: optimizer tolerance)
        bin_width: Energy bin width
        bin_width_qdrift: Drift-time bin width
        fwhm_before: FWHM before the correction
        fwhm_after: FWHM after the correction
        function: ``e + fct * qdrift``
        converged: False when the optimizer stopped early or hit the time limit
        fit_before: Peak fit before the correction
        fit_after: Peak fit after the correction
        h_before: Histogram before the correction
        h_after: Histogram after the correction
        diagnostics: Records of the optimization
    """

    peak: float
    window: tuple[float, float]
    fct: Measurement
    bin_width: float
    bin_width_qdrift: float
    fwhm_before: Measurement
    fwhm_after: Measurement
    function: CalibrationFunction
    converged: bool
    fit_before: PeakFitResult
    fit_after: PeakFitResult
    h_before: Histogram
    h_after: Histogram
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)


def ctc_expression(e_variable: str = "e", qdrift_variable: str = "qdrift") -> LinearCombination:
    """Generic correction ``e + fct * qdrift``."""
    return LinearCombination(terms=((1.0, Variable(e_variable)), (Variable("fct"), Variable(qdrift_variable))))


def ctc_energy(
    e: FloatArray,
    qdrift: FloatArray,
    peak: float,
    window: tuple[float, float],
    *,
    fct_range: tuple[float, float] = CTC_FCT_RANGE,
    xatol: float = CTC_XATOL,
    time_limit: float = CTC_TIME_LIMIT,
) -> CtcResult:
    """Tune the drift-time correction on one peak.

    Args:
        e: Calibrated energies (keV)
        qdrift: Drift-time charge, aligned with ``e``
        peak: Peak energy
        window: Distance ``(left, right)`` of the cut window from the peak
        fct_range: Search interval of the correction factor
        xatol: Absolute tolerance of the bounded scalar search
        time_limit: Wall-clock budget in seconds

    Returns
    -------
        CtcResult

    Raises
    ------
        ContractViolationError: If ``e`` and ``qdrift`` lengths differ.
    """
    e = np.asarray(e, dtype=float)
    qdrift = np.asarray(qdrift, dtype=float)
    if e.shape != qdrift.shape:
        msg = f"e and qdrift lengths differ: {e.shape} and {qdrift.shape}"
        raise ContractViolationError(msg)
    diagnostics = DiagnosticLog(__name__)

    cut = (e > peak - window[0]) & (e < peak + window[1]) & np.isfinite(qdrift)
    e_cut, qdrift_cut = e[cut], qdrift[cut]
    near = (e > peak - BIN_WIDTH_WINDOW) & (e < peak + BIN_WIDTH_WINDOW)
    bin_width = get_friedman_diaconis_bin_width(e[near])
    bin_width_qdrift = get_friedman_diaconis_bin_width(qdrift[near])

    h_before = Histogram.from_samples(e_cut, bin_width=bin_width)
    fit_before = fit_single_peak(h_before, estimate_single_peak_stats(h_before), uncertainty=True)

    objective = TimeLimitedObjective(lambda x: f_optimize_ctc(float(x), e_cut, qdrift_cut, bin_width), time_limit)
    try:
        opt = optimize.minimize_scalar(objective, bounds=fct_range, method="bounded", options={"xatol": xatol})
        fct = float(opt.x)
        converged = bool(opt.success)
        if not converged:
            diagnostics.warning("ctc_not_converged", f"CTC search did not converge: {opt.message}")
    except TimeLimitReached:
        if objective.best_x is None:
            fct = 0.0
        else:
            fct = float(objective.best_x)
        converged = False
        diagnostics.warning(
            "ctc_time_limit",
            f"CTC search hit the time limit of {time_limit} s after {objective.n_calls} evaluations",
            fct=fct,
        )

    e_ctc = e_cut + fct * qdrift_cut
    h_after = Histogram.from_samples(e_ctc, bin_width=bin_width)
    fit_after = fit_single_peak(h_after, estimate_single_peak_stats(h_after), uncertainty=True)
    logger.info("CTC fct = %.4g: FWHM %s -> %s", fct, fit_before.fwhm, fit_after.fwhm)

    return CtcResult(
        peak=peak,
        window=(float(window[0]), float(window[1])),
        fct=measurement(fct, xatol),
        bin_width=bin_width,
        bin_width_qdrift=bin_width_qdrift,
        fwhm_before=fit_before.fwhm,
        fwhm_after=fit_after.fwhm,
        function=CalibrationFunction(expression=ctc_expression(), parameters={"fct": fct}, variable="e"),
        converged=converged,
        fit_before=fit_before,
        fit_after=fit_after,
        h_before=h_before,
        h_after=h_after,
        diagnostics=diagnostics.records,
    )
