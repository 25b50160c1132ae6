"""Closed-form peakshape densities for gamma-ray spectroscopy.

All functions are vectorized over ``x`` and return a density, i.e. counts
per unit of ``x``. Multiplying by a bin width gives expected bin counts.

Components of the HPGe peakshape
--------------------------------
- Gaussian core of the full-energy deposition.
- Low-energy tail: a Gaussian convolved with an exponential extending to
  lower energies (incomplete charge collection).
- Step: a smeared step on the low-energy side (small-angle Compton
  scattering in front of the detector).
- Flat background.

The exponentially modified Gaussian is evaluated through the scaled
complementary error function ``erfcx`` wherever the naive product
``exp(a) * erfc(b)`` would overflow.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy import special, stats

if TYPE_CHECKING:
    from specfit.core.shared.typing import FloatArray

_SQRT2 = np.sqrt(2.0)
_SQRT2PI = np.sqrt(2.0 * np.pi)
_MIN_TAU = 1e-12


def gaussian_pdf(x: FloatArray, mu: float, sigma: float) -> FloatArray:
    """Normalized Gaussian density."""
    z = (np.asarray(x, dtype=float) - mu) / sigma
    return np.exp(-0.5 * z**2) / (sigma * _SQRT2PI)


def ex_gauss_pdf(x: FloatArray, mu: float, sigma: float, tau: float) -> FloatArray:
    """Normalized low-energy tail: Gaussian convolved with ``exp((x - mu) / tau)``.

    The tail extends below ``mu`` with decay length ``tau``; for ``tau -> 0``
    it reduces to the Gaussian.
    """
    x = np.asarray(x, dtype=float)
    tau = max(abs(tau), _MIN_TAU)
    dx = x - mu
    b = (dx + sigma**2 / tau) / (_SQRT2 * sigma)
    with np.errstate(over="ignore", invalid="ignore", under="ignore"):
        # exp(a) * erfc(b) == exp(-dx^2 / 2 sigma^2) * erfcx(b)
        stable = np.exp(-0.5 * (dx / sigma) ** 2) * special.erfcx(np.maximum(b, 0.0))
        direct = np.exp(dx / tau + 0.5 * (sigma / tau) ** 2) * special.erfc(np.minimum(b, 0.0))
        value = np.where(b >= 0.0, stable, direct) / (2.0 * tau)
    return np.nan_to_num(value, nan=0.0, posinf=0.0)


def step_gauss(x: FloatArray, mu: float, sigma: float) -> FloatArray:
    """Smeared step: 1 far below ``mu``, 0 far above."""
    return 0.5 * special.erfc((np.asarray(x, dtype=float) - mu) / (_SQRT2 * sigma))


def gamma_peakshape(
    x: FloatArray,
    mu: float,
    sigma: float,
    n: float,
    step_amplitude: float,
    skew_fraction: float,
    skew_width: float,
    background: float = 0.0,
) -> FloatArray:
    """Full HPGe peakshape density.

    Args:
        x: Energies
        mu: Peak position
        sigma: Gaussian width
        n: Number of counts in Gaussian plus tail
        step_amplitude: Step height (counts per unit x)
        skew_fraction: Fraction of ``n`` in the low-energy tail
        skew_width: Tail decay length relative to ``mu`` (``tau = skew_width * mu``)
        background: Flat background density

    Returns
    -------
        Expected counts per unit ``x``
    """
    tau = skew_width * mu
    signal = (1.0 - skew_fraction) * gaussian_pdf(x, mu, sigma)
    if skew_fraction != 0.0:
        signal = signal + skew_fraction * ex_gauss_pdf(x, mu, sigma, tau)
    return n * signal + step_amplitude * step_gauss(x, mu, sigma) + background


def truncated_gaussian_pdf(x: FloatArray, mu: float, sigma: float, low: float, high: float) -> FloatArray:
    """Gaussian density renormalized to ``[low, high]`` and zero outside."""
    a, b = (low - mu) / sigma, (high - mu) / sigma
    return stats.truncnorm.pdf(np.asarray(x, dtype=float), a, b, loc=mu, scale=sigma)


def double_gaussian(
    x: FloatArray,
    mu1: float,
    sigma1: float,
    mu2: float,
    sigma2: float,
    n: float,
    fraction: float,
    background: float = 0.0,
) -> FloatArray:
    """Two Gaussians sharing ``n`` counts, ``fraction`` of them in the first."""
    return (
        n * (fraction * gaussian_pdf(x, mu1, sigma1) + (1.0 - fraction) * gaussian_pdf(x, mu2, sigma2))
        + background
    )
