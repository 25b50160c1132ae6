"""Heuristic peak descriptors used to seed fits."""

from __future__ import annotations

from dataclasses import astuple, dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class PeakStats:
    """Rough peak estimate derived from a histogram.

    Only an initial guess for the fitters, never an authoritative result.

    Attributes
    ----------
        peak_pos: Estimated peak position (x units)
        peak_fwhm: Estimated full width at half maximum (x units)
        peak_sigma: Gaussian sigma equivalent of ``peak_fwhm``
        peak_counts: Estimated number of signal counts
        mean_background: Background density (counts per unit x)
    """

    peak_pos: float
    peak_fwhm: float
    peak_sigma: float
    peak_counts: float
    mean_background: float

    def as_array(self) -> np.ndarray:
        """All fields as a float array (field order)."""
        return np.array(astuple(self), dtype=float)

    @property
    def is_valid(self) -> bool:
        """True when every estimate is finite and strictly positive."""
        values = self.as_array()
        return bool(np.all(np.isfinite(values)) and np.all(values > 0))


@dataclass(frozen=True, slots=True)
class CutWindow:
    """Window around the dominant peak of a sample.

    Attributes
    ----------
        low: Lower edge where the histogram drops below the relative cut
        high: Upper edge where the histogram drops below the relative cut
        max: Position of the histogram maximum
    """

    low: float
    high: float
    max: float
