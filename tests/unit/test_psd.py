"""Test survival fractions, PSD cuts and the DEP calibration."""

import pytest

import numpy as np

from specfit.core.constants import DEP_LINE
from specfit.core.optimization.psd import (
    NoSurvivorsError,
    get_peak_survival_fraction,
    get_psd_cut,
    prepare_dep_peakhist,
)
from specfit.core.shared.exceptions import ContractViolationError, DataQualityError

WINDOW = (20.0, 20.0)


@pytest.fixture
def dep_events(rng):
    """DEP events with a Gaussian classifier, on a flat background."""
    n_signal, n_background = 8000, 3000
    e = np.concatenate(
        [rng.normal(DEP_LINE, 1.0, n_signal), rng.uniform(DEP_LINE - 20.0, DEP_LINE + 20.0, n_background)]
    )
    psd = np.concatenate([rng.normal(1.0, 0.01, n_signal), rng.normal(0.95, 0.03, n_background)])
    return psd, e


class TestSurvivalFraction:
    """Tests for get_peak_survival_fraction."""

    def test_median_cut_keeps_half(self, dep_events):
        """Should keep half of the signal at its median."""
        psd, e = dep_events
        result = get_peak_survival_fraction(psd, e, DEP_LINE, WINDOW, 1.0)

        assert result.sf.nominal_value == pytest.approx(50.0, abs=4.0)
        assert result.sf.std_dev > 0
        assert result.n_before.nominal_value == pytest.approx(8000, rel=0.05)

    def test_inverted_cut(self, dep_events):
        """Should keep values below the cut when inverted."""
        psd, e = dep_events
        upper = get_peak_survival_fraction(psd, e, DEP_LINE, WINDOW, 0.99, uncertainty=False)
        lower = get_peak_survival_fraction(psd, e, DEP_LINE, WINDOW, 0.99, uncertainty=False, inverted=True)

        assert upper.sf.nominal_value + lower.sf.nominal_value == pytest.approx(100.0, abs=5.0)
        assert upper.sf.std_dev == 0.0

    def test_no_survivors_raise(self, dep_events):
        """Should raise when the cut removes every event."""
        psd, e = dep_events
        with pytest.raises(NoSurvivorsError):
            get_peak_survival_fraction(psd, e, DEP_LINE, WINDOW, 10.0)

    def test_no_survivors_is_data_quality_issue(self):
        """Should be recoverable like other data-quality errors."""
        assert issubclass(NoSurvivorsError, DataQualityError)

    def test_length_mismatch_raises(self, dep_events):
        """Should require aligned classifier and energy arrays."""
        psd, e = dep_events
        with pytest.raises(ContractViolationError, match="lengths differ"):
            get_peak_survival_fraction(psd[:-1], e, DEP_LINE, WINDOW, 1.0)


class TestPsdCut:
    """Tests for get_psd_cut."""

    def test_cut_at_target_survival(self, dep_events):
        """Should find the cut keeping 90 % of the signal."""
        psd, e = dep_events
        result = get_psd_cut(psd, e, DEP_LINE, WINDOW, (0.9, 1.02), dep_sf=0.9)

        # 10 % quantile of N(1, 0.01)
        assert result.cut == pytest.approx(1.0 - 1.2816 * 0.01, abs=0.003)
        assert result.sf == pytest.approx(90.0, abs=0.5)
        assert result.n_evaluations > 2

    def test_not_bracketed_raises(self, dep_events):
        """Should raise when the interval does not contain the target."""
        psd, e = dep_events
        with pytest.raises(DataQualityError, match="not bracketed"):
            get_psd_cut(psd, e, DEP_LINE, WINDOW, (1.0, 1.02), dep_sf=0.9)


class TestDepCalibration:
    """Tests for prepare_dep_peakhist."""

    def test_calibration_constant(self, rng):
        """Should map the raw DEP position onto the line energy."""
        gain = 4.0
        e_raw = gain * np.concatenate(
            [rng.normal(DEP_LINE, 1.0, 8000), rng.uniform(DEP_LINE - 15.0, DEP_LINE + 15.0, 2000)]
        )
        result = prepare_dep_peakhist(e_raw, DEP_LINE)

        assert result.m_calib.nominal_value == pytest.approx(1.0 / gain, rel=2e-4)
        assert result.fit.mu.nominal_value == pytest.approx(gain * DEP_LINE, abs=0.5)
