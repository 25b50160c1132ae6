"""Peakshape models package.

Closed-form densities live in ``functions``; ``models`` wraps them with
parameter names, starting values and bounds for the fitters.
"""

from specfit.core.lineshapes.functions import (
    double_gaussian,
    ex_gauss_pdf,
    gamma_peakshape,
    gaussian_pdf,
    step_gauss,
    truncated_gaussian_pdf,
)
from specfit.core.lineshapes.models import (
    MODELS,
    BasePeakModel,
    DoubleGaussianModel,
    GammaPeakModel,
    PeakModel,
    TruncatedGaussianModel,
    get_model,
    numerical_fwhm,
    register_model,
)

__all__ = [
    "MODELS",
    "BasePeakModel",
    "DoubleGaussianModel",
    "GammaPeakModel",
    "PeakModel",
    "TruncatedGaussianModel",
    "double_gaussian",
    "ex_gauss_pdf",
    "gamma_peakshape",
    "gaussian_pdf",
    "get_model",
    "numerical_fwhm",
    "register_model",
    "step_gauss",
    "truncated_gaussian_pdf",
]
