"""Core constants for specfit fitting and calibration.

These constants define default values for peak fitting, goodness-of-fit
testing and the calibration sweeps. Most can be overridden through the
configuration models or keyword arguments.
"""

import numpy as np

# =============================================================================
# Peakshape Constants
# =============================================================================

FWHM_TO_SIGMA = 1.0 / (2.0 * np.sqrt(2.0 * np.log(2.0)))
"""Conversion factor from Gaussian FWHM to sigma (1/2.3548)."""

GAUSS_FWHM_CONTENT = 0.761
"""Fraction of a Gaussian's area contained within its FWHM."""

MIN_MEAN_BACKGROUND = 0.01
"""Floor used for the background guess of a histogram with empty edge bins."""

# =============================================================================
# Goodness-of-Fit Defaults
# =============================================================================

CHI2_MIN_MODEL_COUNTS = 5.0
"""Model bin content below which the asymptotic chi2 approximation is doubtful."""

MC_PVALUE_SAMPLES = 1000
"""Default number of Poisson-resampled histograms for the Monte-Carlo p-value."""

# =============================================================================
# Reference Lines (keV)
# =============================================================================

TL208_FEP = 2614.5
"""Tl-208 full-energy peak used as the anchor of rough calibrations."""

TH228_LINES = (583.191, 727.330, 860.564, 1592.53, 1620.50, 2103.53, 2614.51)
"""Th-228 chain gamma lines commonly used for HPGe calibration."""

DEP_LINE = 1592.53
"""Tl-208 double-escape peak."""

SEP_LINE = 2103.53
"""Tl-208 single-escape peak."""

# =============================================================================
# Sweep and Optimizer Defaults
# =============================================================================

SWEEP_MIN_COUNTS = 100
"""Minimum number of in-window events for a sweep point to be fitted."""

SWEEP_CUT_HALF_WIDTH = 300.0
"""Half width (raw units) of the window cut around the peak in FT sweeps."""

CTC_FCT_RANGE = (0.0, 1e-3)
"""Search interval for the energy drift-time correction factor."""

CTC_XATOL = 1e-9
"""Absolute tolerance of the bounded energy CTC search."""

CTC_TIME_LIMIT = 600.0
"""Wall-clock budget (seconds) for continuous CTC optimizations."""

LQ_CTC_MAXITER = 3000
"""Maximum iterations for the LQ drift-time correction search."""

PEAK_FIT_MAXITER = 5000
"""Maximum iterations of the binned maximum-likelihood fit."""

QBB_LINE = 2039.04
"""Q-value of the neutrinoless double-beta decay of Ge-76, where the resolution is quoted."""
