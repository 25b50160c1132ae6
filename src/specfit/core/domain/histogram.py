"""One-dimensional histogram domain object.

The histogram is the common currency between the peak-stat estimator, the
binned maximum-likelihood fitter and the goodness-of-fit tests. It is an
immutable value: edges and counts are copied and frozen on construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from specfit.core.shared.exceptions import ContractViolationError, DataQualityError

if TYPE_CHECKING:
    from specfit.core.shared.typing import FloatArray


def get_friedman_diaconis_bin_width(x: FloatArray) -> float:
    """Friedman-Diaconis bin width ``2 * IQR / n^(1/3)``.

    Args:
        x: Sample values (non-finite entries are ignored)

    Returns
    -------
        Bin width in the units of ``x``

    Raises
    ------
        DataQualityError: If fewer than two finite values are given or the
            interquartile range is zero.
    """
    values = np.asarray(x, dtype=float)
    values = values[np.isfinite(values)]
    if values.size < 2:
        msg = f"Need at least 2 finite values for a bin width, got {values.size}"
        raise DataQualityError(msg)
    q25, q75 = np.quantile(values, [0.25, 0.75])
    width = 2.0 * (q75 - q25) / np.cbrt(values.size)
    if not width > 0:
        msg = "Interquartile range is zero, cannot derive a bin width"
        raise DataQualityError(msg)
    return float(width)


def get_number_of_bins(x: FloatArray) -> int:
    """Number of bins spanning ``x`` at the Friedman-Diaconis width."""
    values = np.asarray(x, dtype=float)
    values = values[np.isfinite(values)]
    width = get_friedman_diaconis_bin_width(values)
    return max(1, int(np.ceil((values.max() - values.min()) / width)))


@dataclass(frozen=True, slots=True)
class Histogram:
    """Binned counts with strictly increasing edges.

    Attributes
    ----------
        edges: Bin edges, length ``len(counts) + 1``
        counts: Non-negative bin contents
    """

    edges: FloatArray
    counts: FloatArray

    def __post_init__(self) -> None:
        edges = np.array(self.edges, dtype=float)
        counts = np.array(self.counts, dtype=float)
        if edges.ndim != 1 or counts.ndim != 1:
            msg = "Histogram edges and counts must be one-dimensional"
            raise ContractViolationError(msg)
        if edges.size != counts.size + 1:
            msg = f"Expected {counts.size + 1} edges for {counts.size} bins, got {edges.size}"
            raise ContractViolationError(msg)
        if np.any(np.diff(edges) <= 0):
            msg = "Histogram edges must be strictly increasing"
            raise ContractViolationError(msg)
        if np.any(counts < 0) or not np.all(np.isfinite(counts)):
            msg = "Histogram counts must be finite and non-negative"
            raise ContractViolationError(msg)
        edges.setflags(write=False)
        counts.setflags(write=False)
        object.__setattr__(self, "edges", edges)
        object.__setattr__(self, "counts", counts)

    @classmethod
    def from_samples(
        cls,
        x: FloatArray,
        *,
        edges: FloatArray | None = None,
        bin_width: float | None = None,
        n_bins: int | None = None,
        range: tuple[float, float] | None = None,  # noqa: A002
    ) -> Histogram:
        """Histogram finite samples.

        Exactly one binning rule applies, in order of precedence: explicit
        ``edges``, ``bin_width`` (edges start at the lower range limit),
        ``n_bins``, and finally the Friedman-Diaconis width.
        """
        values = np.asarray(x, dtype=float)
        values = values[np.isfinite(values)]
        if range is None:
            if values.size == 0:
                msg = "Cannot infer a histogram range from an empty sample"
                raise ContractViolationError(msg)
            range = (float(values.min()), float(values.max()))  # noqa: A001
        low, high = range
        if edges is None:
            if bin_width is None and n_bins is None:
                bin_width = get_friedman_diaconis_bin_width(values)
            if bin_width is not None:
                if bin_width <= 0:
                    msg = f"Bin width must be positive, got {bin_width}"
                    raise ContractViolationError(msg)
                edges = np.arange(low, high + bin_width, bin_width)
                if edges.size < 2:
                    edges = np.array([low, low + bin_width])
            else:
                edges = np.linspace(low, high, int(n_bins) + 1)
        counts, edges = np.histogram(values, bins=np.asarray(edges, dtype=float))
        return cls(edges=edges, counts=counts)

    @property
    def centers(self) -> FloatArray:
        """Bin centers."""
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    @property
    def widths(self) -> FloatArray:
        """Bin widths."""
        return np.diff(self.edges)

    @property
    def total(self) -> float:
        """Sum of all bin contents."""
        return float(self.counts.sum())

    @property
    def n_bins(self) -> int:
        """Number of bins."""
        return int(self.counts.size)

    def with_counts(self, counts: FloatArray) -> Histogram:
        """Return a histogram with the same binning and new contents."""
        return Histogram(edges=self.edges, counts=counts)
