"""Filter sweeps, PSD cuts and drift-time corrections."""

from specfit.core.optimization.ctc import CtcResult, ctc_energy, ctc_expression, f_optimize_ctc
from specfit.core.optimization.filters import (
    SweepResult,
    fit_enc_sigmas,
    fit_fwhm_ft_fep,
    fit_sg_wl,
    grid_step,
    select_sweep_optimum,
)
from specfit.core.optimization.lq_ctc import (
    LqBox,
    LqCtcResult,
    LqLinFitResult,
    ctc_lq,
    ctc_lq_expression,
    lq_ctc_lin_fit,
    lq_lin_fit_expression,
)
from specfit.core.optimization.psd import (
    DepCalibrationResult,
    PsdCutResult,
    SurvivalFractionResult,
    get_peak_survival_fraction,
    get_psd_cut,
    prepare_dep_peakhist,
)

__all__ = [
    "CtcResult",
    "DepCalibrationResult",
    "LqBox",
    "LqCtcResult",
    "LqLinFitResult",
    "PsdCutResult",
    "SurvivalFractionResult",
    "SweepResult",
    "ctc_energy",
    "ctc_expression",
    "ctc_lq",
    "ctc_lq_expression",
    "f_optimize_ctc",
    "fit_enc_sigmas",
    "fit_fwhm_ft_fep",
    "fit_sg_wl",
    "get_peak_survival_fraction",
    "get_psd_cut",
    "grid_step",
    "lq_ctc_lin_fit",
    "lq_lin_fit_expression",
    "prepare_dep_peakhist",
    "select_sweep_optimum",
]
