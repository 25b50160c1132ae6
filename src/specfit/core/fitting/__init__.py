"""Peak and curve fitting.

``chi2fit`` fits point-wise data with x/y uncertainties, ``peak`` fits
peakshape models to histograms by binned maximum likelihood and
``trunc_gauss`` fits truncated Gaussians to unbinned samples.
"""

from specfit.core.fitting.chi2fit import (
    Chi2FitResult,
    PullTerm,
    chi2fit,
    chi2fit_arrays,
    chi2fit_polynomial,
    polynomial_expression,
)
from specfit.core.fitting.peak import (
    PeakFitResult,
    estimate_single_peak_stats,
    fit_binned_double_gauss,
    fit_binned_peak,
    fit_single_peak,
    hist_loglike,
    peak_height,
)
from specfit.core.fitting.trunc_gauss import (
    TruncGaussFitResult,
    cut_single_peak,
    fit_half_centered_trunc_gauss,
    fit_single_trunc_gauss,
)

__all__ = [
    "Chi2FitResult",
    "PeakFitResult",
    "PullTerm",
    "TruncGaussFitResult",
    "chi2fit",
    "chi2fit_arrays",
    "chi2fit_polynomial",
    "cut_single_peak",
    "estimate_single_peak_stats",
    "fit_binned_double_gauss",
    "fit_binned_peak",
    "fit_half_centered_trunc_gauss",
    "fit_single_peak",
    "fit_single_trunc_gauss",
    "hist_loglike",
    "peak_height",
    "polynomial_expression",
]
