"""Pytest fixtures for specfit tests."""

import pytest

import numpy as np

from specfit.core.constants import TH228_LINES
from specfit.core.domain.histogram import Histogram

RAW_GAIN = 4.0
"""Raw units per keV of the synthetic detector."""


def resolution_sigma(energy):
    """Gaussian width (keV) of a typical HPGe detector."""
    return np.sqrt(0.25 + 0.0004 * np.asarray(energy, dtype=float))


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def gauss_peak_samples(rng):
    """Gaussian line at 1000 (sigma 2) on a flat background in [980, 1020]."""
    signal = rng.normal(1000.0, 2.0, 20000)
    background = rng.uniform(980.0, 1020.0, 2000)
    return np.concatenate([signal, background])


@pytest.fixture
def gauss_peak_hist(gauss_peak_samples):
    """Histogram of ``gauss_peak_samples`` with 0.5 wide bins."""
    return Histogram.from_samples(gauss_peak_samples, bin_width=0.5, range=(980.0, 1020.0))


@pytest.fixture
def th228_spectrum(rng):
    """Raw Th-228-like spectrum: lines on an exponential continuum.

    Returns the raw energies; the true calibration is ``e_keV = e_raw / RAW_GAIN``.
    """
    intensities = (30000, 6000, 4000, 3000, 2000, 4000, 50000)
    lines = [
        rng.normal(line, resolution_sigma(line), n) for line, n in zip(TH228_LINES, intensities, strict=True)
    ]
    continuum = rng.exponential(500.0, 200000)
    continuum = continuum[continuum < 3000.0]
    e_kev = np.concatenate([*lines, continuum])
    rng.shuffle(e_kev)
    return RAW_GAIN * e_kev


@pytest.fixture
def drift_time_spectrum(rng):
    """Energies broadened by a linear drift-time effect, and the drift-time charge.

    ``e = true - 2e-4 * qdrift``, so ``fct = 2e-4`` restores the resolution.
    """
    n_peak, n_background = 20000, 4000
    qdrift = rng.uniform(500.0, 15000.0, n_peak + n_background)
    true = np.concatenate(
        [rng.normal(2614.5, 1.0, n_peak), rng.uniform(2590.0, 2640.0, n_background)]
    )
    return true - 2e-4 * qdrift, qdrift
