"""Filter parameter sweeps.

Every sweep evaluates a metric (noise width, FWHM, survival fraction) at
each point of a parameter grid by running a full fit, and picks the grid
point with the smallest metric. Points whose data cannot be fitted are
skipped with a diagnostic; when no point survives, the sweep falls back
to a configured default with a NaN metric.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from specfit.core.domain.histogram import Histogram, get_friedman_diaconis_bin_width
from specfit.core.domain.measurement import measurement, mvalue
from specfit.core.fitting.peak import estimate_single_peak_stats, fit_single_peak
from specfit.core.fitting.trunc_gauss import cut_single_peak, fit_single_trunc_gauss
from specfit.core.optimization.psd import get_peak_survival_fraction, get_psd_cut, prepare_dep_peakhist
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.events import emit_sweep_progress
from specfit.core.shared.exceptions import (
    ContractViolationError,
    DataQualityError,
    NumericsError,
    OptimizationError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from specfit.core.domain.config import FilterSweepConfig, SgOptimizationConfig
    from specfit.core.domain.measurement import Measurement
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.events import EventDispatcher
    from specfit.core.shared.typing import FloatArray

logger = logging.getLogger(__name__)

_SKIPPABLE = (DataQualityError, NumericsError, OptimizationError)


@dataclass(slots=True)
class SweepResult:
    """Outcome of a parameter sweep.

    Attributes
    ----------
        optimum: Selected grid value; its uncertainty is the grid step
        metric: Metric at the optimum (NaN when no point was valid)
        grid: Grid values that produced a valid metric
        metrics: Metric per valid grid value
        n_dep: DEP sample size (window-length sweep only)
        n_sep: SEP sample size (window-length sweep only)
        diagnostics: Records of skipped points and fallbacks
    """

    optimum: Measurement
    metric: Measurement
    grid: list[float]
    metrics: list[Measurement]
    n_dep: int | None = None
    n_sep: int | None = None
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def is_default(self) -> bool:
        """True when no grid point was valid and the default was returned."""
        return not np.isfinite(self.metric.nominal_value)


def grid_step(grid: Sequence[float]) -> float:
    """Spacing of an evenly spaced grid (NaN for fewer than two points)."""
    values = np.asarray(grid, dtype=float)
    if values.size < 2:
        return np.nan
    return float(values[1] - values[0])


def select_sweep_optimum(
    grid: Sequence[float],
    metrics: Sequence[Measurement],
    *,
    default: float,
    step: float,
    diagnostics: DiagnosticLog | None = None,
) -> SweepResult:
    """Grid value with the smallest finite metric.

    Args:
        grid: Valid grid values
        metrics: Metric per grid value
        default: Value returned when no metric is finite
        step: Grid step, used as the uncertainty of the optimum
        diagnostics: Log receiving the fallback warning

    Returns
    -------
        SweepResult (without DEP/SEP counts)
    """
    if len(grid) != len(metrics):
        msg = f"Got {len(metrics)} metrics for {len(grid)} grid values"
        raise ContractViolationError(msg)
    if diagnostics is None:
        diagnostics = DiagnosticLog(__name__)
    nominal = np.array([mvalue(m) for m in metrics], dtype=float)
    finite = np.isfinite(nominal)
    if not np.any(finite):
        diagnostics.warning(
            "sweep_default", f"No valid sweep point, falling back to the default {default}", default=default
        )
        return SweepResult(
            optimum=measurement(default, step),
            metric=measurement(np.nan, np.nan),
            grid=list(grid),
            metrics=list(metrics),
            diagnostics=diagnostics.records,
        )
    i_min = int(np.flatnonzero(finite)[np.argmin(nominal[finite])])
    logger.info("Sweep optimum %.4g with metric %s", grid[i_min], metrics[i_min])
    return SweepResult(
        optimum=measurement(grid[i_min], step),
        metric=metrics[i_min],
        grid=list(grid),
        metrics=list(metrics),
        diagnostics=diagnostics.records,
    )


def fit_enc_sigmas(
    enc_grid: FloatArray,
    enc_grid_rt: Sequence[float],
    config: FilterSweepConfig,
    *,
    dispatcher: EventDispatcher | None = None,
) -> SweepResult:
    """Rise time with the smallest equivalent noise charge.

    For every rise time the ENC values (one row of ``enc_grid``) are cut
    around their peak and fitted with a truncated Gaussian; the metric is
    the fitted sigma.

    Args:
        enc_grid: ENC values, shape ``(len(enc_grid_rt), n_events)``
        enc_grid_rt: Rise times of the rows
        config: Sweep settings (``min_value``/``max_value`` bound the ENC)
        dispatcher: Optional progress event sink

    Returns
    -------
        SweepResult with the optimal rise time

    Raises
    ------
        ContractViolationError: If the grid shape does not match the rise times.
    """
    enc_grid = np.atleast_2d(np.asarray(enc_grid, dtype=float))
    if enc_grid.shape[0] != len(enc_grid_rt):
        msg = f"enc_grid has {enc_grid.shape[0]} rows for {len(enc_grid_rt)} rise times"
        raise ContractViolationError(msg)
    diagnostics = DiagnosticLog(__name__)

    rts: list[float] = []
    enc: list[Measurement] = []
    total = len(enc_grid_rt)
    for i, rt in enumerate(enc_grid_rt):
        enc_rt = enc_grid[i]
        valid = False
        if np.all(enc_rt == 0):
            diagnostics.debug("skip_sweep_point", f"All ENC values zero for RT {rt}, skipping", rt=rt)
        elif np.count_nonzero(np.isfinite(enc_rt)) < config.min_counts:
            diagnostics.warning(
                "skip_sweep_point", f"Too few finite ENC values for RT {rt}, skipping", rt=rt
            )
        else:
            try:
                cuts = cut_single_peak(
                    enc_rt, config.min_value, config.max_value, n_bins=config.nbins, relative_cut=config.rel_cut_fit
                )
                result = fit_single_trunc_gauss(enc_rt, cuts)
            except _SKIPPABLE as error:
                diagnostics.warning("skip_sweep_point", f"ENC fit failed for RT {rt}: {error}", rt=rt)
            else:
                rts.append(float(rt))
                enc.append(result.sigma)
                valid = True
        emit_sweep_progress(dispatcher, i + 1, total, valid=valid, rt=rt)

    return select_sweep_optimum(
        rts, enc, default=config.default, step=grid_step(enc_grid_rt), diagnostics=diagnostics
    )


def fit_fwhm_ft_fep(
    e_grid: FloatArray,
    e_grid_ft: Sequence[float],
    rt: float,
    config: FilterSweepConfig,
    *,
    dispatcher: EventDispatcher | None = None,
) -> SweepResult:
    """Flat-top time with the smallest FEP resolution.

    Flat-top times longer than the rise time are skipped. For the other
    points the raw energies are cut to ``cut_half_width`` around the peak
    maximum, histogrammed with the Friedman-Diaconis width and fitted with
    the gamma peakshape. The FWHM is converted to keV with ``calib_line / mu``
    of the same fit.

    Args:
        e_grid: Raw energies, shape ``(len(e_grid_ft), n_events)``
        e_grid_ft: Flat-top times of the rows
        rt: Rise time of the filter
        config: Sweep settings (``min_value``/``max_value`` bound the FEP)
        dispatcher: Optional progress event sink

    Returns
    -------
        SweepResult with the optimal flat-top time and FWHM in keV
    """
    e_grid = np.atleast_2d(np.asarray(e_grid, dtype=float))
    if e_grid.shape[0] != len(e_grid_ft):
        msg = f"e_grid has {e_grid.shape[0]} rows for {len(e_grid_ft)} flat-top times"
        raise ContractViolationError(msg)
    diagnostics = DiagnosticLog(__name__)

    fts: list[float] = []
    fwhm: list[Measurement] = []
    total = len(e_grid_ft)
    for i, ft in enumerate(e_grid_ft):
        valid = False
        e_ft = e_grid[i][np.isfinite(e_grid[i])]
        if ft > rt:
            diagnostics.debug("skip_sweep_point", f"FT {ft} longer than RT {rt}, skipping", ft=ft)
        elif np.count_nonzero((e_ft > config.min_value) & (e_ft < config.max_value)) < config.min_counts:
            diagnostics.warning("skip_sweep_point", f"Not enough events for FT {ft}, skipping", ft=ft)
        else:
            try:
                cuts = cut_single_peak(
                    e_ft, config.min_value, config.max_value, n_bins=config.nbins, relative_cut=config.rel_cut_fit
                )
                e_peak = e_ft[np.abs(e_ft - cuts.max) < config.cut_half_width]
                bin_width = get_friedman_diaconis_bin_width(e_peak)
                h = Histogram.from_samples(e_peak, bin_width=bin_width)
                ps = estimate_single_peak_stats(h)
                if not ps.is_valid:
                    msg = f"invalid peak statistics {ps}"
                    raise DataQualityError(msg)
                result = fit_single_peak(h, ps, uncertainty=False)
            except _SKIPPABLE as error:
                diagnostics.warning("skip_sweep_point", f"FEP fit failed for FT {ft}: {error}", ft=ft)
            else:
                fts.append(float(ft))
                fwhm.append(result.fwhm * (config.calib_line / result.mu.nominal_value))
                valid = True
        emit_sweep_progress(dispatcher, i + 1, total, valid=valid, ft=ft)

    return select_sweep_optimum(
        fts, fwhm, default=config.default, step=grid_step(e_grid_ft), diagnostics=diagnostics
    )


def fit_sg_wl(
    dep_sep_data: Mapping[str, Mapping[str, FloatArray]],
    a_grid_wl_sg: Sequence[float],
    config: SgOptimizationConfig,
    *,
    dispatcher: EventDispatcher | None = None,
) -> SweepResult:
    """Savitzky-Golay window length with the smallest SEP survival fraction.

    The DEP sample is calibrated on its own peak. For every window length
    the A/E cut keeping ``dep_sf`` of the DEP is searched and applied to the
    SEP; the metric is the SEP survival fraction in percent. Values outside
    ``sf_range`` are not eligible.

    Args:
        dep_sep_data: ``{"dep": {"e", "aoe"}, "sep": {"e", "aoe"}}``; ``e``
            has one raw energy per event, ``aoe`` one row per window length
        a_grid_wl_sg: Window lengths of the ``aoe`` rows
        config: Optimization settings
        dispatcher: Optional progress event sink

    Returns
    -------
        SweepResult with the optimal window length and DEP/SEP sizes
    """
    e_dep = np.asarray(dep_sep_data["dep"]["e"], dtype=float)
    e_sep = np.asarray(dep_sep_data["sep"]["e"], dtype=float)
    aoe_dep = np.atleast_2d(np.asarray(dep_sep_data["dep"]["aoe"], dtype=float))
    aoe_sep = np.atleast_2d(np.asarray(dep_sep_data["sep"]["aoe"], dtype=float))
    n_wl = len(a_grid_wl_sg)
    if aoe_dep.shape != (n_wl, e_dep.size) or aoe_sep.shape != (n_wl, e_sep.size):
        msg = (
            f"A/E grids must have shape (n_window_lengths, n_events): got {aoe_dep.shape} "
            f"and {aoe_sep.shape} for {n_wl} window lengths"
        )
        raise ContractViolationError(msg)
    diagnostics = DiagnosticLog(__name__)

    dep_result = prepare_dep_peakhist(
        e_dep, config.dep, n_bins_cut=config.nbins_dep_cut, relative_cut=config.dep_rel_cut, uncertainty=False
    )
    m_calib = mvalue(dep_result.m_calib)
    e_dep_calib, e_sep_calib = e_dep * m_calib, e_sep * m_calib

    wls: list[float] = []
    sfs: list[Measurement] = []
    for i, wl in enumerate(a_grid_wl_sg):
        valid = False
        finite_dep = np.isfinite(aoe_dep[i])
        finite_sep = np.isfinite(aoe_sep[i])
        aoe_dep_i = aoe_dep[i][finite_dep] / m_calib
        e_dep_i = e_dep_calib[finite_dep]
        try:
            if aoe_dep_i.size == 0:
                msg = "no finite A/E values in the DEP"
                raise DataQualityError(msg)
            max_aoe = np.quantile(aoe_dep_i, config.max_aoe_quantile) + config.max_aoe_offset
            min_aoe = np.quantile(aoe_dep_i, config.min_aoe_quantile) + config.min_aoe_offset
            psd_cut = get_psd_cut(
                aoe_dep_i, e_dep_i, config.dep, config.dep_window, (min_aoe, max_aoe), dep_sf=config.dep_sf
            )
            sep_result = get_peak_survival_fraction(
                aoe_sep[i][finite_sep] / m_calib,
                e_sep_calib[finite_sep],
                config.sep,
                config.sep_window,
                psd_cut.cut,
                uncertainty=False,
                low_e_tail=False,
            )
        except _SKIPPABLE as error:
            diagnostics.warning("skip_sweep_point", f"Couldn't process window length {wl}: {error}", wl=wl)
        else:
            wls.append(float(wl))
            sfs.append(sep_result.sf)
            valid = True
        emit_sweep_progress(dispatcher, i + 1, n_wl, valid=valid, wl=wl)

    low, high = config.sf_range
    eligible = [j for j, sf in enumerate(sfs) if low < mvalue(sf) < high]
    if len(eligible) < len(sfs):
        diagnostics.info(
            "sf_out_of_range",
            f"{len(sfs) - len(eligible)} survival fractions outside ({low}, {high}) % ignored",
        )
    result = select_sweep_optimum(
        [wls[j] for j in eligible],
        [sfs[j] for j in eligible],
        default=config.default_wl,
        step=grid_step(a_grid_wl_sg),
        diagnostics=diagnostics,
    )
    result.grid, result.metrics = wls, sfs
    result.n_dep, result.n_sep = int(e_dep.size), int(e_sep.size)
    return result
