"""specfit - Peak fitting and calibration of radiation-detector spectra.

Public API:
    - fit_single_peak, fit_binned_double_gauss: Binned ML peak fits
    - chi2fit, chi2fit_polynomial: Chi-square curve fits
    - simple_calibration, fit_peaks, fit_calibration, fit_fwhm: Energy calibration
    - fit_enc_sigmas, fit_fwhm_ft_fep, fit_sg_wl: Filter parameter sweeps
    - ctc_energy, ctc_lq, lq_ctc_lin_fit: Drift-time corrections

Domain Objects:
    - Histogram, PeakStats, CalibrationFunction
"""

import contextlib
from importlib import metadata

__version__ = "0.1.0"

with contextlib.suppress(metadata.PackageNotFoundError):
    __version__ = metadata.version(__name__)

from specfit.core.calibration.energy import (
    autocal_energy,
    calibrate_energy,
    fit_calibration,
    fit_fwhm,
    fit_peaks,
    simple_calibration,
)
from specfit.core.calibration.expressions import CalibrationFunction
from specfit.core.domain.histogram import Histogram
from specfit.core.domain.peaks import PeakStats
from specfit.core.fitting import (
    chi2fit,
    chi2fit_polynomial,
    estimate_single_peak_stats,
    fit_binned_double_gauss,
    fit_single_peak,
)
from specfit.core.optimization import (
    ctc_energy,
    ctc_lq,
    fit_enc_sigmas,
    fit_fwhm_ft_fep,
    fit_sg_wl,
    lq_ctc_lin_fit,
)

__all__ = [
    # Version
    "__version__",
    # Domain objects
    "CalibrationFunction",
    "Histogram",
    "PeakStats",
    # Fitting
    "chi2fit",
    "chi2fit_polynomial",
    "estimate_single_peak_stats",
    "fit_binned_double_gauss",
    "fit_single_peak",
    # Calibration
    "autocal_energy",
    "calibrate_energy",
    "fit_calibration",
    "fit_fwhm",
    "fit_peaks",
    "simple_calibration",
    # Optimization
    "ctc_energy",
    "ctc_lq",
    "fit_enc_sigmas",
    "fit_fwhm_ft_fep",
    "fit_sg_wl",
    "lq_ctc_lin_fit",
]
