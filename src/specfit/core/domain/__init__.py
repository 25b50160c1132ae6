"""Domain objects: histograms, measurements, peak descriptors, configuration."""

from specfit.core.domain.config import (
    DepSepCutConfig,
    FilterSweepConfig,
    Interval,
    LqCtcConfig,
    PulserConfig,
    QcConfig,
    SgOptimizationConfig,
    SgQcConfig,
    WindowCutConfig,
)
from specfit.core.domain.histogram import (
    Histogram,
    get_friedman_diaconis_bin_width,
    get_number_of_bins,
)
from specfit.core.domain.measurement import Measurement, measurement, muncert, mvalue
from specfit.core.domain.parameters import Parameter, Parameters
from specfit.core.domain.peaks import CutWindow, PeakStats

__all__ = [
    "CutWindow",
    "DepSepCutConfig",
    "FilterSweepConfig",
    "Histogram",
    "Interval",
    "LqCtcConfig",
    "Measurement",
    "Parameter",
    "Parameters",
    "PeakStats",
    "PulserConfig",
    "QcConfig",
    "SgOptimizationConfig",
    "SgQcConfig",
    "WindowCutConfig",
    "get_friedman_diaconis_bin_width",
    "get_number_of_bins",
    "measurement",
    "muncert",
    "mvalue",
]
