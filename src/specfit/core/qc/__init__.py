"""Quality cuts on event-level DSP parameters."""

from specfit.core.qc.cuts import (
    QcResult,
    WindowCut,
    get_centered_gaussian_window_cut,
    pulser_cal_qc,
    qc_cal_energy,
    qc_sg_optimization,
)

__all__ = [
    "QcResult",
    "WindowCut",
    "get_centered_gaussian_window_cut",
    "pulser_cal_qc",
    "qc_cal_energy",
    "qc_sg_optimization",
]
