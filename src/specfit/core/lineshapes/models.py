"""Peakshape model objects used by the binned and unbinned fitters.

A model bundles a density (counts per unit x), its parameter names, a
heuristic starting point derived from ``PeakStats`` and the component
functions handed out with fit results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Protocol, runtime_checkable

import numpy as np
from scipy import optimize

from specfit.core.constants import FWHM_TO_SIGMA
from specfit.core.domain.parameters import Parameters
from specfit.core.lineshapes.functions import (
    double_gaussian,
    ex_gauss_pdf,
    gamma_peakshape,
    gaussian_pdf,
    step_gauss,
    truncated_gaussian_pdf,
)
from specfit.core.shared.exceptions import ConfigError, NumericsError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from specfit.core.domain.histogram import Histogram
    from specfit.core.domain.peaks import PeakStats
    from specfit.core.shared.typing import FloatArray, ModelFunction

_N_FWHM_GRID = 2001


@runtime_checkable
class PeakModel(Protocol):
    """Protocol for peakshape models."""

    name: str
    param_names: tuple[str, ...]

    def density(self, x: FloatArray, values: Sequence[float]) -> FloatArray:
        """Evaluate the model density for positional parameter values."""
        ...

    def create_params(self, stats: PeakStats, histogram: Histogram) -> Parameters:
        """Create starting parameters with bounds."""
        ...

    def components(self, values: Sequence[float]) -> dict[str, ModelFunction]:
        """Component functions of the model at fixed parameters."""
        ...

    def fwhm(self, values: Sequence[float]) -> float:
        """Full width at half maximum of the signal part."""
        ...


# Global model registry
MODELS: dict[str, type[PeakModel]] = {}


def register_model(
    model_names: str | Iterable[str],
) -> Callable[[type[PeakModel]], type[PeakModel]]:
    """Register a peakshape model class under one or more names.

    Example:
        @register_model(["gamma", "hpge"])
        class GammaPeakModel(BasePeakModel):
            ...
    """
    if isinstance(model_names, str):
        model_names = [model_names]

    def decorator(model_class: type[PeakModel]) -> type[PeakModel]:
        for model_name in model_names:
            MODELS[model_name] = model_class
        return model_class

    return decorator


def get_model(name: str) -> PeakModel:
    """Instantiate a registered model.

    Raises
    ------
        ConfigError: If no model is registered under ``name``.
    """
    try:
        model_class = MODELS[name]
    except KeyError:
        msg = f"Unknown peakshape model '{name}'. Available: {sorted(MODELS)}"
        raise ConfigError(msg) from None
    return model_class()


def numerical_fwhm(f: ModelFunction, low: float, high: float) -> float:
    """FWHM of a unimodal function from its half-maximum crossings.

    The maximum is located on a grid over ``[low, high]`` and refined; the
    crossings are bracketed between the maximum and the interval ends.

    Raises
    ------
        NumericsError: If the half maximum is not crossed inside the interval.
    """
    grid = np.linspace(low, high, _N_FWHM_GRID)
    values = np.asarray(f(grid), dtype=float)
    i_max = int(np.argmax(values))
    refined = optimize.minimize_scalar(
        lambda x: -float(f(np.array([x]))[0]),
        bounds=(grid[max(i_max - 1, 0)], grid[min(i_max + 1, grid.size - 1)]),
        method="bounded",
    )
    x_max = float(refined.x)
    half = 0.5 * float(f(np.array([x_max]))[0])

    def shifted(x: float) -> float:
        return float(f(np.array([x]))[0]) - half

    if not (shifted(low) < 0 < shifted(x_max) and shifted(high) < 0):
        msg = "Half maximum is not bracketed by the search interval"
        raise NumericsError(msg)
    left = optimize.brentq(shifted, low, x_max)
    right = optimize.brentq(shifted, x_max, high)
    return float(right - left)


class BasePeakModel:
    """Base class for peakshape models."""

    name: ClassVar[str] = ""
    param_names: ClassVar[tuple[str, ...]] = ()

    def density(self, x: FloatArray, values: Sequence[float]) -> FloatArray:
        raise NotImplementedError

    def create_params(self, stats: PeakStats, histogram: Histogram) -> Parameters:
        raise NotImplementedError

    def components(self, values: Sequence[float]) -> dict[str, ModelFunction]:
        return {"total": lambda x: self.density(x, values)}

    def fwhm(self, values: Sequence[float]) -> float:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {', '.join(self.param_names)}>"


def _max_density(histogram: Histogram) -> float:
    return float(np.max(histogram.counts / histogram.widths))


@register_model(["gamma", "hpge"])
class GammaPeakModel(BasePeakModel):
    """HPGe gamma line: Gaussian, low-energy tail, step and flat background.

    Parameters (in order): ``mu``, ``sigma``, ``n``, ``step_amplitude``,
    ``skew_fraction``, ``skew_width``, ``background``. The tail decay
    length is ``skew_width * mu``.
    """

    name = "gamma"
    param_names = (
        "mu",
        "sigma",
        "n",
        "step_amplitude",
        "skew_fraction",
        "skew_width",
        "background",
    )

    def density(self, x: FloatArray, values: Sequence[float]) -> FloatArray:
        return gamma_peakshape(x, *values)

    def create_params(self, stats: PeakStats, histogram: Histogram) -> Parameters:
        low, high = float(histogram.edges[0]), float(histogram.edges[-1])
        max_density = _max_density(histogram)
        sigma = stats.peak_sigma
        pos = float(np.clip(stats.peak_pos, low, high))
        rel_sigma = sigma / abs(pos) if pos != 0 else 1e-3

        params = Parameters()
        params.add("mu", pos, max(low, pos - 5 * sigma), min(high, pos + 5 * sigma))
        params.add("sigma", sigma, 0.05 * sigma, 10.0 * sigma)
        params.add("n", stats.peak_counts, 0.0, 10.0 * max(histogram.total, 1.0))
        params.add("step_amplitude", 0.1 * stats.mean_background, 0.0, 10.0 * max_density)
        params.add("skew_fraction", 0.01, 0.0, 0.5)
        params.add("skew_width", rel_sigma, 0.05 * rel_sigma, 20.0 * rel_sigma)
        params.add("background", stats.mean_background, 0.0, 10.0 * max_density)
        return params

    def components(self, values: Sequence[float]) -> dict[str, ModelFunction]:
        mu, sigma, n, step_amplitude, skew_fraction, skew_width, background = values
        tau = skew_width * mu

        def f_signal(x: FloatArray) -> FloatArray:
            return gamma_peakshape(x, mu, sigma, n, 0.0, skew_fraction, skew_width)

        def f_gauss(x: FloatArray) -> FloatArray:
            return n * (1.0 - skew_fraction) * gaussian_pdf(x, mu, sigma)

        def f_tail(x: FloatArray) -> FloatArray:
            return n * skew_fraction * ex_gauss_pdf(x, mu, sigma, tau)

        def f_step(x: FloatArray) -> FloatArray:
            return step_amplitude * step_gauss(x, mu, sigma)

        def f_background(x: FloatArray) -> FloatArray:
            return np.full_like(np.asarray(x, dtype=float), background)

        return {
            "total": lambda x: self.density(x, values),
            "signal": f_signal,
            "gauss": f_gauss,
            "tail": f_tail,
            "step": f_step,
            "background": f_background,
        }

    def fwhm(self, values: Sequence[float]) -> float:
        mu, sigma, n, _, skew_fraction, skew_width, _ = values
        if skew_fraction <= 0 or n <= 0:
            return sigma / FWHM_TO_SIGMA
        tau = abs(skew_width * mu)
        signal = self.components(values)["signal"]
        return numerical_fwhm(signal, mu - 6 * sigma - 10 * tau, mu + 6 * sigma)


@register_model(["double_gaussian", "double_gauss"])
class DoubleGaussianModel(BasePeakModel):
    """Two Gaussians sharing ``n`` counts, ``fraction`` of them in the first.

    Parameters (in order): ``mu1``, ``sigma1``, ``mu2``, ``sigma2``, ``n``,
    ``fraction``, ``background``.
    """

    name = "double_gaussian"
    param_names = ("mu1", "sigma1", "mu2", "sigma2", "n", "fraction", "background")

    def density(self, x: FloatArray, values: Sequence[float]) -> FloatArray:
        return double_gaussian(x, *values)

    def create_params(self, stats: PeakStats, histogram: Histogram) -> Parameters:
        low, high = float(histogram.edges[0]), float(histogram.edges[-1])
        span = high - low
        sigma = stats.peak_sigma
        pos = float(np.clip(stats.peak_pos, low, high))

        params = Parameters()
        params.add("mu1", pos - 0.5 * sigma, low, high)
        params.add("sigma1", sigma, 1e-3 * sigma, span)
        params.add("mu2", pos + 0.5 * sigma, low, high)
        params.add("sigma2", 2.0 * sigma, 1e-3 * sigma, span)
        params.add("n", stats.peak_counts, 0.0, 10.0 * max(histogram.total, 1.0))
        params.add("fraction", 0.5, 0.0, 1.0)
        params.add("background", stats.mean_background, 0.0, _max_density(histogram))
        return params

    def components(self, values: Sequence[float]) -> dict[str, ModelFunction]:
        mu1, sigma1, mu2, sigma2, n, fraction, background = values
        return {
            "total": lambda x: self.density(x, values),
            "signal": lambda x: double_gaussian(x, mu1, sigma1, mu2, sigma2, n, fraction),
            "gauss1": lambda x: n * fraction * gaussian_pdf(x, mu1, sigma1),
            "gauss2": lambda x: n * (1.0 - fraction) * gaussian_pdf(x, mu2, sigma2),
            "background": lambda x: np.full_like(np.asarray(x, dtype=float), background),
        }

    def fwhm(self, values: Sequence[float]) -> float:
        mu1, sigma1, mu2, sigma2 = values[:4]
        low = min(mu1 - 6 * sigma1, mu2 - 6 * sigma2)
        high = max(mu1 + 6 * sigma1, mu2 + 6 * sigma2)
        return numerical_fwhm(self.components(values)["signal"], low, high)


class TruncatedGaussianModel(BasePeakModel):
    """Gaussian renormalized to the window ``[low, high]``.

    Parameters (in order): ``mu``, ``sigma``, ``n``. Used by the unbinned
    fits, where ``n`` is the number of events inside the window.
    """

    name = "truncated_gaussian"
    param_names = ("mu", "sigma", "n")

    def __init__(self, low: float = -np.inf, high: float = np.inf) -> None:
        self.low = low
        self.high = high

    def density(self, x: FloatArray, values: Sequence[float]) -> FloatArray:
        mu, sigma, n = values
        return n * truncated_gaussian_pdf(x, mu, sigma, self.low, self.high)

    def create_params(self, stats: PeakStats, histogram: Histogram) -> Parameters:
        params = Parameters()
        params.add("mu", stats.peak_pos, self.low, self.high)
        params.add("sigma", stats.peak_sigma, 1e-3 * stats.peak_sigma, np.inf)
        params.add("n", histogram.total, 0.0, np.inf, vary=False)
        return params

    def fwhm(self, values: Sequence[float]) -> float:
        return values[1] / FWHM_TO_SIGMA
