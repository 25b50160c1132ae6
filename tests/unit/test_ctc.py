"""Test the energy and LQ drift-time corrections."""

import pytest
from scipy import stats

import numpy as np

from specfit.core.constants import DEP_LINE
from specfit.core.domain.config import LqCtcConfig
from specfit.core.fitting.peak import PeakFitResult
from specfit.core.optimization.ctc import ctc_energy, ctc_expression, f_optimize_ctc
from specfit.core.optimization.lq_ctc import ctc_lq, ctc_lq_expression, lq_ctc_lin_fit
from specfit.core.shared.exceptions import ConfigError, ContractViolationError, DataQualityError

FEP_WINDOW = (20.0, 20.0)


@pytest.fixture
def lq_events(rng):
    """Energy-normalized LQ rising linearly with the normalized drift time in the DEP."""
    n = 6000
    qdrift = rng.uniform(0.1, 0.5, n)
    lq = 0.5 + 0.8 * qdrift + rng.normal(0.0, 0.05, n)
    e = rng.normal(DEP_LINE, 1.0, n)
    return lq, e, qdrift


class TestEnergyCtc:
    """Tests for the energy drift-time correction."""

    def test_objective_prefers_true_factor(self, drift_time_spectrum):
        """Should be smaller at the true correction than without it."""
        e, qdrift = drift_time_spectrum
        window = (e > 2594.5) & (e < 2634.5)
        assert f_optimize_ctc(2e-4, e[window], qdrift[window], 0.2) < f_optimize_ctc(
            0.0, e[window], qdrift[window], 0.2
        )

    def test_expression(self):
        """Should add the scaled drift-time charge."""
        assert str(ctc_expression()) == "e + fct * qdrift"

    def test_time_limit(self, drift_time_spectrum):
        """Should stop at the time limit and report it."""
        e, qdrift = drift_time_spectrum
        result = ctc_energy(e, qdrift, 2614.5, FEP_WINDOW, time_limit=0.0)

        assert not result.converged
        assert result.fct.nominal_value == 0.0
        assert "ctc_time_limit" in [d.code for d in result.diagnostics]
        assert result.fwhm_after.nominal_value == pytest.approx(result.fwhm_before.nominal_value)

    def test_length_mismatch_raises(self, drift_time_spectrum):
        """Should require aligned energy and drift-time arrays."""
        e, qdrift = drift_time_spectrum
        with pytest.raises(ContractViolationError, match="lengths differ"):
            ctc_energy(e[:-1], qdrift, 2614.5, FEP_WINDOW)

    @pytest.mark.slow
    def test_restores_resolution(self, drift_time_spectrum):
        """Should find the factor that undoes the drift-time broadening."""
        e, qdrift = drift_time_spectrum
        result = ctc_energy(e, qdrift, 2614.5, FEP_WINDOW, xatol=1e-7)

        assert result.converged
        assert result.fct.nominal_value == pytest.approx(2e-4, abs=5e-5)
        assert result.fwhm_after.nominal_value < result.fwhm_before.nominal_value
        fct = result.fct.nominal_value
        np.testing.assert_allclose(result.function(e[:3], qdrift=qdrift[:3]), e[:3] + fct * qdrift[:3])


class TestLqCtc:
    """Tests for the optimized LQ drift-time correction."""

    def test_removes_drift_time_trend(self, lq_events):
        """Should flatten LQ against the drift time and normalize it."""
        lq, e, qdrift = lq_events
        result = ctc_lq(lq, e, qdrift, DEP_LINE, 1.0)

        assert result.fct[0] == pytest.approx(-0.8, abs=0.25)
        assert result.sigma_after.nominal_value < 0.7 * result.sigma_before.nominal_value
        assert result.sigma_after_norm.nominal_value == pytest.approx(1.0, rel=0.1)
        assert result.sigma_optimal <= result.sigma_start

    def test_function_applies_correction(self, lq_events):
        """Should normalize the corrected LQ of raw event variables."""
        lq, e, qdrift = lq_events
        result = ctc_lq(lq, e, qdrift, DEP_LINE, 1.0)

        params = result.function.parameters
        raw = result.function(lq[:5] * e[:5], e=e[:5], qdrift=qdrift[:5] * e[:5])
        expected = (lq[:5] + params["fct1"] * qdrift[:5] - params["mu_norm"]) / params["sigma_norm"]
        np.testing.assert_allclose(raw, expected, rtol=1e-10)

    def test_expression(self):
        """Should build the normalized correction formula."""
        assert str(ctc_lq_expression(2)) == (
            "((lq / e) + 0 + fct1 * (qdrift / e) + fct2 * (qdrift / e)^2 + -1 * mu_norm) / sigma_norm"
        )

    def test_invalid_order_raises(self, lq_events):
        """Should need at least a linear term."""
        lq, e, qdrift = lq_events
        with pytest.raises(ContractViolationError, match="pol_order"):
            ctc_lq(lq, e, qdrift, DEP_LINE, 1.0, pol_order=0)

    def test_non_positive_drift_time_raises(self, lq_events):
        """Should refuse a non-positive median drift time."""
        lq, e, qdrift = lq_events
        with pytest.raises(DataQualityError, match="Median drift time"):
            ctc_lq(lq, e, -qdrift, DEP_LINE, 1.0)


class TestLqLinFit:
    """Tests for the linear-fit LQ drift-time correction."""

    @pytest.fixture
    def events(self, rng):
        n = 20000
        dt_eff = rng.uniform(0.0, 1.0, n)
        lq = 1.0 + 0.1 * dt_eff + rng.normal(0.0, 0.05, n)
        e = rng.normal(DEP_LINE, 1.0, n)
        return lq, dt_eff, e

    @pytest.mark.parametrize("method", ["percentile", "gaussian"])
    def test_fits_drift_time_trend(self, events, method):
        """Should recover the drift-time slope of LQ."""
        lq, dt_eff, e = events
        config = LqCtcConfig(ctc_driftime_cutoff_method=method)
        result = lq_ctc_lin_fit(lq, dt_eff, e, DEP_LINE, 1.0, config)

        assert 0.05 < result.fit.values[1] < 0.15
        assert result.box.t_lower < result.box.t_upper
        assert result.box.lq_lower < 1.05 < result.box.lq_upper

    @pytest.fixture
    def double_peak_events(self, rng):
        n1, n2 = 12000, 8000
        dt_eff = np.concatenate([rng.normal(0.4, 0.05, n1), rng.normal(0.6, 0.08, n2)])
        lq = 1.0 + 0.1 * dt_eff + rng.normal(0.0, 0.05, n1 + n2)
        e = rng.normal(DEP_LINE, 1.0, n1 + n2)
        return lq, dt_eff, e

    def test_double_gaussian_cutoff(self, double_peak_events):
        """Should cut the drift time where the fitted signal drops to the threshold fraction."""
        lq, dt_eff, e = double_peak_events
        config = LqCtcConfig(ctc_driftime_cutoff_method="double_gaussian")
        result = lq_ctc_lin_fit(lq, dt_eff, e, DEP_LINE, 1.0, config)

        grid = np.linspace(0.0, 1.0, 10001)
        density = 0.6 * stats.norm.pdf(grid, 0.4, 0.05) + 0.4 * stats.norm.pdf(grid, 0.6, 0.08)
        above = grid[density >= 0.1 * density.max()]

        assert isinstance(result.drift_fit, PeakFitResult)
        assert result.drift_fit.model.name == "double_gaussian"
        assert result.box.t_lower == pytest.approx(above[0], abs=0.03)
        assert result.box.t_upper == pytest.approx(above[-1], abs=0.03)
        assert 0.05 < result.fit.values[1] < 0.15

    def test_double_gaussian_threshold_narrows_box(self, double_peak_events):
        """Should give a narrower drift-time window for a higher threshold."""
        lq, dt_eff, e = double_peak_events
        boxes = [
            lq_ctc_lin_fit(
                lq,
                dt_eff,
                e,
                DEP_LINE,
                1.0,
                LqCtcConfig(ctc_driftime_cutoff_method="double_gaussian", double_gaussian_threshold=threshold),
            ).box
            for threshold in (0.1, 0.5)
        ]
        assert boxes[0].t_lower < boxes[1].t_lower < boxes[1].t_upper < boxes[0].t_upper

    def test_percentile_box(self, events):
        """Should cut the drift time at the configured quantiles."""
        lq, dt_eff, e = events
        result = lq_ctc_lin_fit(lq, dt_eff, e, DEP_LINE, 1.0)

        assert result.drift_fit is None
        assert result.box.t_lower == pytest.approx(0.15, abs=0.02)
        assert result.box.t_upper == pytest.approx(0.95, abs=0.02)

    def test_function_subtracts_trend(self, events):
        """Should subtract the fitted polynomial from normalized LQ."""
        lq, dt_eff, e = events
        result = lq_ctc_lin_fit(lq, dt_eff, e, DEP_LINE, 1.0)

        p0, p1 = result.fit.values
        corrected = result.function(lq[:5] * e[:5], e=e[:5], qdrift=dt_eff[:5] * e[:5])
        np.testing.assert_allclose(corrected, lq[:5] - (p0 + p1 * dt_eff[:5]), rtol=1e-10)

    def test_unsupported_method_raises(self, events):
        """Should reject unknown drift-time cutoff methods."""
        lq, dt_eff, e = events
        config = LqCtcConfig(ctc_driftime_cutoff_method="spline")
        with pytest.raises(ConfigError, match="not supported"):
            lq_ctc_lin_fit(lq, dt_eff, e, DEP_LINE, 1.0, config)
