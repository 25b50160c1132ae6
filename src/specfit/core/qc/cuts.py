"""Quality cuts on event-level DSP parameters.

Event data is passed as a mapping from parameter name to a NumPy array
(one entry per event), e.g. ``{"blmean": ..., "blslope": ..., "e_trap": ...}``.
The cuts only return masks and indices; selecting the events is left to
the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from scipy import signal

from specfit.core.domain.histogram import Histogram
from specfit.core.fitting.trunc_gauss import cut_single_peak, fit_half_centered_trunc_gauss
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.exceptions import ContractViolationError, DataQualityError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from specfit.core.domain.config import DepSepCutConfig, PulserConfig, QcConfig, SgQcConfig, WindowCutConfig
    from specfit.core.fitting.trunc_gauss import TruncGaussFitResult
    from specfit.core.shared.diagnostics import Diagnostic
    from specfit.core.shared.typing import BoolArray, FloatArray, IntArray

logger = logging.getLogger(__name__)

EventData = dict[str, np.ndarray]


@dataclass(slots=True)
class WindowCut:
    """Symmetric cut ``center +- n_sigma * sigma``.

    Attributes
    ----------
        low_cut: Lower cut value
        high_cut: Upper cut value
        center: Center of the window
        sigma: Fitted half-Gaussian width
        fit: Half truncated Gaussian fit
    """

    low_cut: float
    high_cut: float
    center: float
    sigma: float
    fit: TruncGaussFitResult

    def mask(self, x: FloatArray) -> BoolArray:
        """Values strictly inside the window."""
        x = np.asarray(x, dtype=float)
        return (x > self.low_cut) & (x < self.high_cut)


def get_centered_gaussian_window_cut(
    x: FloatArray,
    min_x: float,
    max_x: float,
    n_sigma: float,
    *,
    center: float = 0.0,
    n_bins_cut: int = 500,
    relative_cut: float = 0.2,
    left: bool = False,
    fixed_center: bool = True,
) -> WindowCut:
    """Window cut from one half of a Gaussian fitted around a center.

    Fitting only one half keeps a one-sided tail (pile-up, noise bursts)
    out of the width estimate.

    Args:
        x: Parameter values
        min_x: Lower limit of the search range
        max_x: Upper limit of the search range
        n_sigma: Cut half width in units of the fitted sigma
        center: Window center when ``fixed_center`` is True
        n_bins_cut: Bins of the histogram locating the peak
        relative_cut: Relative height defining the fit window
        left: Fit the left half instead of the right one
        fixed_center: Use ``center``; otherwise the histogram maximum

    Returns
    -------
        WindowCut
    """
    cuts = cut_single_peak(x, min_x, max_x, n_bins=n_bins_cut, relative_cut=relative_cut)
    window_center = center if fixed_center else cuts.max
    fit = fit_half_centered_trunc_gauss(x, window_center, cuts, left=left, uncertainty=False)
    sigma = fit.sigma.nominal_value
    return WindowCut(
        low_cut=window_center - n_sigma * sigma,
        high_cut=window_center + n_sigma * sigma,
        center=window_center,
        sigma=sigma,
        fit=fit,
    )


def _column(data: Mapping[str, FloatArray], name: str) -> FloatArray:
    try:
        return np.asarray(data[name], dtype=float)
    except KeyError:
        msg = f"Event data has no column '{name}'"
        raise ContractViolationError(msg) from None


def _window_cut(values: FloatArray, config: WindowCutConfig, **kwargs: object) -> WindowCut:
    n_bins = max(1, round(values.size * config.n_bins_fraction))
    return get_centered_gaussian_window_cut(
        values, config.min, config.max, config.sigma, n_bins_cut=n_bins, relative_cut=config.relative_cut, **kwargs
    )


@dataclass(slots=True)
class QcResult:
    """Event masks of the calibration quality cuts.

    Attributes
    ----------
        masks: Boolean mask per cut, plus the combined ``"qc"`` mask
        window_cuts: Fitted baseline window cuts by parameter
        diagnostics: Survival fraction of each cut
    """

    masks: dict[str, BoolArray]
    window_cuts: dict[str, WindowCut]
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def qc(self) -> BoolArray:
        """Events passing every cut."""
        return self.masks["qc"]

    @property
    def survival_fractions(self) -> dict[str, float]:
        """Fraction of events passing each cut."""
        return {name: float(np.mean(mask)) if mask.size else np.nan for name, mask in self.masks.items()}


def qc_cal_energy(
    data: Mapping[str, FloatArray],
    config: QcConfig,
    *,
    energy_keys: Sequence[str] = ("e_trap", "e_zac", "e_cusp"),
) -> QcResult:
    """Quality cuts applied before the energy calibration.

    Cuts: baseline mean, slope and sigma windows, trigger time ``t0``,
    in-trace pile-up and finite energies. ``energy_keys`` must all be
    finite; ``e_trap`` must also exceed ``config.e_trap_min``.

    Returns
    -------
        QcResult with masks ``blmean``, ``blslope``, ``blsigma``, ``t0``,
        ``in_trace``, ``energy`` and ``qc``
    """
    diagnostics = DiagnosticLog(__name__)
    blmean = _column(data, "blmean")
    blslope = _column(data, "blslope")
    blsigma = _column(data, "blsigma")
    t0 = _column(data, "t0")

    window_cuts = {
        "blmean": _window_cut(blmean, config.blmean, fixed_center=False, left=True),
        "blslope": _window_cut(blslope, config.blslope, fixed_center=True, center=0.0, left=False),
        "blsigma": _window_cut(blsigma, config.blsigma, fixed_center=False, left=True),
    }
    masks = {
        "blmean": window_cuts["blmean"].mask(blmean),
        "blslope": window_cuts["blslope"].mask(blslope),
        "blsigma": window_cuts["blsigma"].mask(blsigma),
        "t0": config.t0.contains(t0),
    }
    pile_up = (_column(data, "inTrace_intersect") > t0 + 2 * _column(data, "drift_time")) & (
        _column(data, "inTrace_n") > 1
    )
    masks["in_trace"] = ~pile_up
    energy = _column(data, "e_trap") > config.e_trap_min
    for key in energy_keys:
        energy &= np.isfinite(_column(data, key))
    masks["energy"] = energy
    masks["qc"] = np.logical_and.reduce(list(masks.values()))

    result = QcResult(masks=masks, window_cuts=window_cuts)
    for name, fraction in result.survival_fractions.items():
        diagnostics.debug("qc_survival", f"{name} cut survival fraction {100 * fraction:.2f}%", cut=name)
    result.diagnostics = diagnostics.records
    return result


def _dep_sep_mask(sample: Mapping[str, FloatArray], config: DepSepCutConfig) -> tuple[BoolArray, WindowCut]:
    e = _column(sample, "e")
    finite = np.isfinite(e)
    blslope = _column(sample, "blslope")
    t50 = _column(sample, "t50")
    slope_cut = get_centered_gaussian_window_cut(
        blslope[finite],
        *config.blslope_window,
        config.blslope_sigma,
        n_bins_cut=config.nbins_blslope_cut,
        relative_cut=config.rel_cut_blslope_cut,
    )
    e_low, e_high = np.quantile(e[finite], config.e_quantile)
    with np.errstate(invalid="ignore"):
        mask = (
            finite
            & slope_cut.mask(blslope)
            & (e > config.min_e)
            & (e > e_low)
            & (e < e_high)
            & (t50 > config.t50[0])
            & (t50 < config.t50[1])
        )
    return mask, slope_cut


def qc_sg_optimization(
    dsp_dep: Mapping[str, FloatArray],
    dsp_sep: Mapping[str, FloatArray],
    config: SgQcConfig,
) -> dict[str, EventData]:
    """Quality cuts on the DEP and SEP samples of the window-length sweep.

    Each sample holds ``e``, ``blslope``, ``t50`` (one value per event) and
    ``aoe`` (one row per window length). Events need a finite energy, a
    baseline slope inside the fitted window, a minimum energy, an energy
    inside the configured quantile range and a ``t50`` inside its window.

    Returns
    -------
        ``{"dep": {"e", "aoe"}, "sep": {"e", "aoe"}}`` ready for ``fit_sg_wl``
    """
    selected = {}
    for name, sample, cut_config in (("dep", dsp_dep, config.dep), ("sep", dsp_sep, config.sep)):
        mask, _ = _dep_sep_mask(sample, cut_config)
        aoe = np.atleast_2d(np.asarray(sample["aoe"], dtype=float))
        selected[name] = {"e": _column(sample, "e")[mask], "aoe": aoe[:, mask]}
        logger.debug("%s QC keeps %d of %d events", name.upper(), np.count_nonzero(mask), mask.size)
    return selected


def pulser_cal_qc(
    data: Mapping[str, FloatArray],
    config: PulserConfig,
    *,
    n_pulser_identified: int = 100,
    seed: int | np.random.Generator | None = None,
) -> IntArray:
    """Indices of pulser events.

    The pulser shows up as a narrow peak in the drift-time distribution.
    Consecutive events in that peak separated by one pulser period seed
    the search; every event whose timestamp is within ``pulser_diff`` of
    a half-period multiple of a seed is tagged.

    Args:
        data: Event data with ``drift_time`` and ``timestamp`` (seconds)
        config: Pulser settings
        n_pulser_identified: Number of seed events drawn
        seed: Seed or generator for drawing the seed events

    Returns
    -------
        Sorted unique event indices (empty when no pulser is found)

    Raises
    ------
        DataQualityError: If no peak is found in the drift-time distribution.
    """
    diagnostics = DiagnosticLog(__name__)
    drift_time = _column(data, "drift_time")
    timestamp = _column(data, "timestamp")
    period = 1.0 / config.frequency
    peak_width = config.drift_time_peak_width

    in_range = config.drift_time.contains(drift_time)
    bin_width = config.drift_time_bin_width
    edges = np.arange(config.drift_time.min, config.drift_time.max + bin_width, bin_width)
    h = Histogram.from_samples(drift_time[in_range], edges=edges)
    counts = h.counts - signal.medfilt(h.counts, _odd_kernel(4 * peak_width / bin_width))
    peaks, properties = signal.find_peaks(counts, prominence=config.threshold * max(counts.max(), 0.0))
    if peaks.size == 0:
        msg = "No peak found in the drift-time distribution"
        raise DataQualityError(msg)
    pulser_drift_time = float(h.centers[peaks[np.argmax(properties["prominences"])]])
    diagnostics.info("pulser_peak", f"Found pulser peak in drift time distribution at {pulser_drift_time:.4g}")

    drift_idx = np.flatnonzero(np.abs(drift_time - pulser_drift_time) < peak_width)
    diffs = np.diff(timestamp[drift_idx])
    identified = np.flatnonzero(np.isclose(diffs, period, rtol=0.0, atol=1e-12))
    if identified.size == 0:
        diagnostics.warning("pulser_exact_period", "No pulser events at the exact period, using the tolerance")
        identified = np.flatnonzero(np.abs(diffs - period) < config.period_tolerance)
    if identified.size == 0:
        diagnostics.warning("no_pulser", "No pulser events found in the data")
        return np.array([], dtype=int)

    rng = np.random.default_rng(seed)
    tagged = []
    for idx in rng.choice(identified, size=n_pulser_identified, replace=True):
        offset = np.mod(timestamp - timestamp[drift_idx[idx]] + period / 4, period / 2) - period / 4
        tagged.append(np.flatnonzero(config.pulser_diff.contains(offset)))
    return np.unique(np.concatenate(tagged))


def _odd_kernel(size: float) -> int:
    n = max(3, int(np.ceil(size)))
    return n if n % 2 else n + 1
