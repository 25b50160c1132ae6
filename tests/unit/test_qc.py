"""Test quality cuts on event data."""

import pytest

import numpy as np

from specfit.core.domain.config import (
    DepSepCutConfig,
    Interval,
    PulserConfig,
    QcConfig,
    SgQcConfig,
    WindowCutConfig,
)
from specfit.core.qc import get_centered_gaussian_window_cut, pulser_cal_qc, qc_cal_energy, qc_sg_optimization
from specfit.core.shared.exceptions import ContractViolationError

N_EVENTS = 20000


@pytest.fixture
def cal_events(rng):
    """Calibration events with baseline outliers, late triggers, pile-up and NaN energies."""
    n = N_EVENTS
    data = {
        "blmean": rng.normal(1000.0, 5.0, n),
        "blslope": rng.normal(0.0, 1e-3, n),
        "blsigma": rng.normal(10.0, 0.5, n),
        "t0": rng.uniform(47000.0, 49000.0, n),
        "drift_time": rng.uniform(200.0, 1500.0, n),
        "inTrace_n": np.ones(n),
        "e_trap": rng.uniform(100.0, 3000.0, n),
        "e_zac": rng.uniform(100.0, 3000.0, n),
        "e_cusp": rng.uniform(100.0, 3000.0, n),
    }
    data["inTrace_intersect"] = data["t0"].copy()
    bad = {
        "blmean": np.arange(0, 200),
        "blsigma": np.arange(200, 400),
        "t0": np.arange(400, 500),
        "pile_up": np.arange(500, 600),
        "energy": np.arange(600, 700),
    }
    data["blmean"][bad["blmean"]] = 1100.0
    data["blsigma"][bad["blsigma"]] = 30.0
    data["t0"][bad["t0"]] = 10000.0
    data["inTrace_n"][bad["pile_up"]] = 2
    data["inTrace_intersect"][bad["pile_up"]] = data["t0"][bad["pile_up"]] + 5000.0
    data["e_zac"][bad["energy"]] = np.nan
    return data, bad


@pytest.fixture
def qc_config():
    return QcConfig(
        blmean=WindowCutConfig(min=900.0, max=1200.0, n_bins_fraction=0.01),
        blslope=WindowCutConfig(min=-0.01, max=0.01, n_bins_fraction=0.01),
        blsigma=WindowCutConfig(min=0.0, max=50.0, n_bins_fraction=0.01),
        t0=Interval(min=46000.0, max=50000.0),
    )


class TestWindowCut:
    """Tests for get_centered_gaussian_window_cut."""

    def test_fixed_center(self, rng):
        """Should cut symmetrically around the given center."""
        x = rng.normal(0.0, 1e-3, 20000)
        cut = get_centered_gaussian_window_cut(x, -0.01, 0.01, 2.0, n_bins_cut=200)

        assert cut.center == 0.0
        assert cut.sigma == pytest.approx(1e-3, rel=0.05)
        assert cut.low_cut == pytest.approx(-cut.high_cut)
        assert np.mean(cut.mask(x)) == pytest.approx(0.954, abs=0.02)

    def test_center_from_histogram(self, rng):
        """Should center on the peak and fit the side without the tail."""
        x = np.concatenate([rng.normal(100.0, 2.0, 20000), rng.uniform(100.0, 150.0, 2000)])
        cut = get_centered_gaussian_window_cut(x, 80.0, 150.0, 3.0, n_bins_cut=350, left=True, fixed_center=False)

        assert cut.center == pytest.approx(100.0, abs=1.0)
        assert cut.sigma == pytest.approx(2.0, rel=0.15)


class TestQcCalEnergy:
    """Tests for qc_cal_energy."""

    def test_rejects_bad_events(self, cal_events, qc_config):
        """Should remove baseline outliers, late triggers, pile-up and NaN energies."""
        data, bad = cal_events
        result = qc_cal_energy(data, qc_config)

        assert set(result.masks) == {"blmean", "blslope", "blsigma", "t0", "in_trace", "energy", "qc"}
        assert not result.masks["blmean"][bad["blmean"]].any()
        assert not result.masks["blsigma"][bad["blsigma"]].any()
        assert not result.masks["t0"][bad["t0"]].any()
        assert not result.masks["in_trace"][bad["pile_up"]].any()
        assert not result.masks["energy"][bad["energy"]].any()
        for indices in bad.values():
            assert not result.qc[indices].any()

    def test_survival_fractions(self, cal_events, qc_config):
        """Should keep most good events and report each cut."""
        data, _ = cal_events
        result = qc_cal_energy(data, qc_config)

        fractions = result.survival_fractions
        assert fractions["t0"] == pytest.approx(1.0 - 100 / N_EVENTS)
        assert 0.75 < fractions["qc"] < 0.95
        assert {d.code for d in result.diagnostics} == {"qc_survival"}
        assert set(result.window_cuts) == {"blmean", "blslope", "blsigma"}

    def test_missing_column_raises(self, cal_events, qc_config):
        """Should name the missing column."""
        data, _ = cal_events
        del data["t0"]
        with pytest.raises(ContractViolationError, match="'t0'"):
            qc_cal_energy(data, qc_config)


class TestQcSgOptimization:
    """Tests for qc_sg_optimization."""

    def test_selects_events(self, rng):
        """Should keep events with finite energy and t50 in its window."""
        n = 5000

        def sample():
            e = rng.normal(6000.0, 10.0, n)
            e[:50] = np.nan
            t50 = rng.uniform(200.0, 800.0, n)
            t50[50:150] = 2000.0
            return {
                "e": e,
                "blslope": rng.normal(0.0, 1e-3, n),
                "t50": t50,
                "aoe": rng.normal(1.0, 0.01, (3, n)),
            }

        config = SgQcConfig(dep=DepSepCutConfig(t50=(100.0, 1000.0)), sep=DepSepCutConfig(t50=(100.0, 1000.0)))
        selected = qc_sg_optimization(sample(), sample(), config)

        assert set(selected) == {"dep", "sep"}
        for name in ("dep", "sep"):
            e, aoe = selected[name]["e"], selected[name]["aoe"]
            assert np.all(np.isfinite(e))
            assert aoe.shape == (3, e.size)
            assert 0.9 * (n - 150) < e.size <= n - 150


class TestPulserQc:
    """Tests for pulser_cal_qc."""

    @pytest.fixture
    def pulser_events(self, rng):
        frequency = 10.0
        n_pulser, n_physics = 1000, 5000
        pulser_ts = np.arange(n_pulser) / frequency + 0.0123
        physics_ts = rng.uniform(0.0, n_pulser / frequency, n_physics)
        timestamp = np.concatenate([pulser_ts, physics_ts])
        drift_time = np.concatenate([rng.normal(800.0, 1.0, n_pulser), rng.uniform(200.0, 1500.0, n_physics)])
        order = np.argsort(timestamp)
        is_pulser = np.concatenate([np.ones(n_pulser, bool), np.zeros(n_physics, bool)])[order]
        data = {"timestamp": timestamp[order], "drift_time": drift_time[order]}
        config = PulserConfig(
            frequency=frequency,
            drift_time=Interval(min=0.0, max=2000.0),
            drift_time_bin_width=5.0,
            drift_time_peak_width=10.0,
            pulser_diff=Interval(min=-1e-6, max=1e-6),
        )
        return data, config, np.flatnonzero(is_pulser)

    def test_tags_pulser_events(self, pulser_events):
        """Should tag every pulser event and almost nothing else."""
        data, config, pulser_idx = pulser_events
        tagged = pulser_cal_qc(data, config, seed=1)

        assert set(pulser_idx) <= set(tagged)
        assert tagged.size <= pulser_idx.size + 3

    def test_reproducible_with_seed(self, pulser_events):
        """Should give the same indices for the same seed."""
        data, config, _ = pulser_events
        np.testing.assert_array_equal(pulser_cal_qc(data, config, seed=5), pulser_cal_qc(data, config, seed=5))
