"""Test peak windows and truncated Gaussian fits."""

import pytest

import numpy as np
from scipy import integrate

from specfit.core.fitting.trunc_gauss import (
    cut_single_peak,
    fit_half_centered_trunc_gauss,
    fit_single_trunc_gauss,
)
from specfit.core.shared.exceptions import DataQualityError


class TestCutSinglePeak:
    """Tests for cut_single_peak."""

    def test_window_around_peak(self, rng):
        """Should bracket the peak at the relative height."""
        x = rng.normal(10.0, 1.0, 50000)
        cuts = cut_single_peak(x, 0.0, 20.0, n_bins=200, relative_cut=0.5)

        assert cuts.max == pytest.approx(10.0, abs=0.3)
        # half maximum of a unit Gaussian at +-1.18
        assert cuts.low == pytest.approx(10.0 - 1.18, abs=0.3)
        assert cuts.high == pytest.approx(10.0 + 1.18, abs=0.3)

    def test_automatic_binning(self, rng):
        """Should fall back to the Friedman-Diaconis width."""
        x = rng.normal(0.0, 1.0, 20000)
        cuts = cut_single_peak(x, -5.0, 5.0)
        assert cuts.low < cuts.max < cuts.high

    def test_empty_range_raises(self, rng):
        """Should raise when nothing lies in the search range."""
        with pytest.raises(DataQualityError, match="No values inside"):
            cut_single_peak(rng.normal(0.0, 1.0, 100), 50.0, 60.0)

    @pytest.mark.parametrize("n_bins", [-1, 100])
    def test_constant_values_raise(self, n_bins):
        """Should raise a data quality error when all values are identical."""
        with pytest.raises(DataQualityError, match="no peak to cut"):
            cut_single_peak(np.ones(500), -50.0, 50.0, n_bins=n_bins)


class TestTruncGauss:
    """Tests for the unbinned truncated Gaussian fits."""

    def test_recovers_parameters(self, rng):
        """Should recover mean and width from a truncated window."""
        x = rng.normal(5.0, 2.0, 40000)
        result = fit_single_trunc_gauss(x, (3.0, 8.0))

        assert result.converged
        assert result.mu.nominal_value == pytest.approx(5.0, abs=0.1)
        assert result.sigma.nominal_value == pytest.approx(2.0, rel=0.05)
        assert result.n.nominal_value == np.count_nonzero((x >= 3.0) & (x <= 8.0))
        assert result.sigma.std_dev > 0

    def test_f_fit_normalization(self, rng):
        """Should integrate to the number of values in the window."""
        x = rng.normal(0.0, 1.0, 5000)
        result = fit_single_trunc_gauss(x, (-1.0, 1.0), uncertainty=False)
        grid = np.linspace(-1.0, 1.0, 2001)
        assert integrate.trapezoid(result.f_fit(grid), grid) == pytest.approx(result.n.nominal_value, rel=1e-3)

    def test_half_gaussian_ignores_other_side(self, rng):
        """Should fit only the chosen half of the distribution."""
        core = rng.normal(0.0, 1.0, 40000)
        tail = rng.exponential(5.0, 10000)
        x = np.concatenate([core, tail])
        result = fit_half_centered_trunc_gauss(x, 0.0, (-3.0, 3.0), left=True)

        assert result.mu.nominal_value == 0.0
        assert result.sigma.nominal_value == pytest.approx(1.0, rel=0.05)
        assert result.high == 0.0

    def test_too_few_values_raise(self):
        """Should need at least three values inside the window."""
        with pytest.raises(DataQualityError):
            fit_single_trunc_gauss(np.array([0.0, 0.1]), (-1.0, 1.0))
