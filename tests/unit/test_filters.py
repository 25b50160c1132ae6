"""Test filter parameter sweeps."""

import pytest

import numpy as np

from specfit.core.constants import DEP_LINE, SEP_LINE
from specfit.core.domain.config import FilterSweepConfig, SgOptimizationConfig
from specfit.core.domain.measurement import measurement
from specfit.core.optimization.filters import (
    fit_enc_sigmas,
    fit_fwhm_ft_fep,
    fit_sg_wl,
    grid_step,
    select_sweep_optimum,
)
from specfit.core.shared.diagnostics import DiagnosticLog
from specfit.core.shared.events import EventDispatcher, EventType
from specfit.core.shared.exceptions import ContractViolationError


class TestSelectSweepOptimum:
    """Tests for select_sweep_optimum."""

    def test_smallest_metric(self):
        """Should pick the grid value with the smallest metric."""
        metrics = [measurement(3.0, 0.1), measurement(1.0, 0.1), measurement(2.0, 0.1)]
        result = select_sweep_optimum([1.0, 2.0, 3.0], metrics, default=5.0, step=1.0)
        assert result.optimum.nominal_value == 2.0
        assert result.optimum.std_dev == 1.0
        assert result.metric.nominal_value == 1.0
        assert not result.is_default

    def test_optimum_at_endpoint(self):
        """Should accept an optimum at the edge of the grid."""
        metrics = [measurement(3.0, 0.1), measurement(2.0, 0.1), measurement(1.0, 0.1)]
        result = select_sweep_optimum([1.0, 2.0, 3.0], metrics, default=5.0, step=1.0)
        assert result.optimum.nominal_value == 3.0

    def test_ignores_non_finite(self):
        """Should skip NaN metrics."""
        metrics = [measurement(np.nan, np.nan), measurement(2.0, 0.1)]
        result = select_sweep_optimum([1.0, 2.0], metrics, default=5.0, step=1.0)
        assert result.optimum.nominal_value == 2.0

    def test_default_without_valid_points(self):
        """Should fall back to the default and warn."""
        result = select_sweep_optimum([], [], default=5.0, step=0.5)
        assert result.is_default
        assert result.optimum.nominal_value == 5.0
        assert result.optimum.std_dev == 0.5
        assert [d.code for d in result.diagnostics] == ["sweep_default"]

    def test_records_into_empty_caller_log(self):
        """Should write the fallback warning into a caller log that is still empty."""
        log = DiagnosticLog("specfit.test")
        select_sweep_optimum([], [], default=5.0, step=0.5, diagnostics=log)
        assert [d.code for d in log.warnings] == ["sweep_default"]

    def test_length_mismatch_raises(self):
        """Should require one metric per grid value."""
        with pytest.raises(ContractViolationError):
            select_sweep_optimum([1.0, 2.0], [measurement(1.0, 0.1)], default=5.0, step=1.0)

    def test_grid_step(self):
        """Should read the step of an even grid."""
        assert grid_step([0.5, 1.0, 1.5]) == 0.5
        assert np.isnan(grid_step([1.0]))


class TestFitEncSigmas:
    """Tests for the ENC rise-time sweep."""

    @pytest.fixture
    def config(self):
        return FilterSweepConfig(min_value=-50.0, max_value=50.0)

    def test_finds_smallest_noise(self, rng, config):
        """Should select the rise time with the narrowest ENC distribution."""
        sigmas = [3.0, 2.0, 1.5, 2.5]
        enc_grid = np.array([rng.normal(0.0, s, 5000) for s in sigmas])
        result = fit_enc_sigmas(enc_grid, [1.0, 2.0, 3.0, 4.0], config)

        assert result.optimum.nominal_value == 3.0
        assert result.optimum.std_dev == 1.0
        assert result.metric.nominal_value == pytest.approx(1.5, rel=0.1)
        assert len(result.grid) == 4

    def test_skips_zero_rows(self, rng, config):
        """Should skip rise times without ENC values and report progress."""
        enc_grid = np.array([np.zeros(5000), rng.normal(0.0, 2.0, 5000)])
        events = []
        dispatcher = EventDispatcher()
        dispatcher.subscribe(EventType.SWEEP_PROGRESS, events.append)

        result = fit_enc_sigmas(enc_grid, [1.0, 2.0], config, dispatcher=dispatcher)

        assert result.grid == [2.0]
        assert [e.valid for e in events] == [False, True]
        assert events[-1].current_point == events[-1].total_points == 2

    def test_skips_constant_rows_with_fixed_binning(self, rng):
        """Should skip a rise time whose ENC values are all identical."""
        config = FilterSweepConfig(min_value=-50.0, max_value=50.0, nbins=100)
        enc_grid = np.array([np.ones(5000), rng.normal(0.0, 2.0, 5000)])

        result = fit_enc_sigmas(enc_grid, [1.0, 2.0], config)

        assert result.grid == [2.0]
        assert any(d.code == "skip_sweep_point" for d in result.diagnostics)

    def test_all_invalid_returns_default(self, config):
        """Should return the configured default when nothing can be fitted."""
        result = fit_enc_sigmas(np.zeros((2, 100)), [1.0, 2.0], config)
        assert result.is_default
        assert result.optimum.nominal_value == config.default

    def test_shape_mismatch_raises(self, config):
        """Should check the grid shape against the rise times."""
        with pytest.raises(ContractViolationError, match="rows"):
            fit_enc_sigmas(np.zeros((3, 10)), [1.0, 2.0], config)


class TestFitFwhmFtFep:
    """Tests for the flat-top sweep."""

    def test_finds_best_resolution(self, rng):
        """Should select the flat-top time with the best FEP resolution in keV."""
        config = FilterSweepConfig(min_value=9000.0, max_value=11000.0)
        sigmas = [8.0, 5.0, 6.0, 4.0]
        e_grid = np.array(
            [
                np.concatenate([rng.normal(10000.0, s, 5000), rng.uniform(9700.0, 10300.0, 1000)])
                for s in sigmas
            ]
        )
        result = fit_fwhm_ft_fep(e_grid, [1.0, 2.0, 3.0, 4.0], 3.0, config)

        # FT 4 is longer than the rise time
        assert result.grid == [1.0, 2.0, 3.0]
        assert result.optimum.nominal_value == 2.0
        expected = 2.3548 * 5.0 * config.calib_line / 10000.0
        assert result.metric.nominal_value == pytest.approx(expected, rel=0.1)


@pytest.mark.slow
class TestFitSgWl:
    """Tests for the Savitzky-Golay window-length sweep."""

    def test_finds_lowest_sep_survival(self, rng):
        """Should select the window length that suppresses the SEP best."""
        gain = 4.0
        sep_means = [0.985, 0.975, 0.98]

        def sample(line, n_signal, n_background, signal_aoe):
            e = np.concatenate(
                [
                    rng.normal(line * gain, 1.0 * gain, n_signal),
                    rng.uniform((line - 12.0) * gain, (line + 12.0) * gain, n_background),
                ]
            )
            aoe = np.array(
                [
                    np.concatenate(
                        [rng.normal(mean, 0.01, n_signal), rng.normal(0.95, 0.03, n_background)]
                    )
                    for mean in signal_aoe
                ]
            )
            return {"e": e, "aoe": aoe}

        data = {
            "dep": sample(DEP_LINE, 5000, 2000, [1.0, 1.0, 1.0]),
            "sep": sample(SEP_LINE, 5000, 2000, sep_means),
        }
        result = fit_sg_wl(data, [1.0, 2.0, 3.0], SgOptimizationConfig(max_aoe_offset=0.0))

        assert result.optimum.nominal_value == 2.0
        assert result.n_dep == result.n_sep == 7000
        assert 1.0 < result.metric.nominal_value < 30.0
