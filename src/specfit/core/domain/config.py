"""Configuration models for specfit calibration routines.

The core only reads these objects. Loading them from TOML/YAML/JSON is the
caller's business; ``Model.model_validate(mapping)`` is all that is needed.

Example (SG window-length optimization):
    [optimization]
    dep = 1592.53
    dep_window = [10.0, 10.0]
    sep = 2103.53
    sep_window = [10.0, 10.0]
    max_aoe_quantile = 0.99
    max_aoe_offset = 0.05
"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator

from specfit.core.constants import DEP_LINE, SEP_LINE, SWEEP_CUT_HALF_WIDTH, SWEEP_MIN_COUNTS
from specfit.core.shared.typing import BoolArray, FloatArray

DRIFT_TIME_CUTOFF_METHODS = ("percentile", "gaussian", "double_gaussian")
Fraction = Annotated[float, Field(ge=0.0, le=1.0)]


class Interval(BaseModel):
    """Open interval ``(min, max)``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    min: float
    max: float

    @model_validator(mode="after")
    def check_order(self) -> "Interval":
        """Ensure the interval is not inverted."""
        if self.max < self.min:
            msg = f"Interval max ({self.max}) is smaller than min ({self.min})"
            raise ValueError(msg)
        return self

    def contains(self, x: FloatArray) -> BoolArray:
        """Boolean mask of values strictly inside the interval."""
        return (x > self.min) & (x < self.max)


class WindowCutConfig(BaseModel):
    """Centered Gaussian window cut on a baseline-like quantity."""

    model_config = ConfigDict(extra="forbid")

    min: float = Field(description="Lower limit of the search window.")
    max: float = Field(description="Upper limit of the search window.")
    sigma: Annotated[float, Field(gt=0)] = Field(
        default=2.0, description="Cut width in units of the fitted sigma."
    )
    n_bins_fraction: Annotated[float, Field(gt=0, le=1)] = Field(
        default=0.001,
        description="Number of histogram bins as a fraction of the number of events.",
    )
    relative_cut: Fraction = Field(
        default=0.5, description="Fraction of the peak height defining the fit window."
    )


class QcConfig(BaseModel):
    """Quality cuts applied before the energy calibration."""

    model_config = ConfigDict(extra="forbid")

    blmean: WindowCutConfig
    blslope: WindowCutConfig
    blsigma: WindowCutConfig
    t0: Interval = Field(description="Accepted trigger-time window.")
    e_trap_min: float = Field(default=0.0, description="Minimum trapezoidal-filter energy.")


class DepSepCutConfig(BaseModel):
    """Quality cuts for one of the DEP/SEP samples of the SG optimization."""

    model_config = ConfigDict(extra="forbid")

    blslope_sigma: Annotated[float, Field(gt=0)] = 3.0
    nbins_blslope_cut: Annotated[int, Field(gt=0)] = 500
    rel_cut_blslope_cut: Fraction = 0.5
    blslope_window: tuple[float, float] = Field(
        default=(-0.1, 0.1), description="Search window for the baseline slope cut."
    )
    min_e: float = Field(default=0.0, description="Minimum raw energy.")
    e_quantile: tuple[Fraction, Fraction] = Field(
        default=(0.0, 1.0), description="Accepted energy quantile range."
    )
    t50: tuple[float, float] = Field(description="Accepted 50% rise-time window.")


class SgQcConfig(BaseModel):
    """QC settings for the DEP and SEP samples."""

    model_config = ConfigDict(extra="forbid")

    dep: DepSepCutConfig
    sep: DepSepCutConfig


class SgOptimizationConfig(BaseModel):
    """Savitzky-Golay window-length optimization settings."""

    model_config = ConfigDict(extra="forbid")

    dep: float = Field(default=DEP_LINE, description="DEP energy (keV).")
    dep_window: tuple[float, float] = Field(
        default=(10.0, 10.0), description="Window left/right of the DEP (keV)."
    )
    sep: float = Field(default=SEP_LINE, description="SEP energy (keV).")
    sep_window: tuple[float, float] = Field(
        default=(10.0, 10.0), description="Window left/right of the SEP (keV)."
    )
    nbins_dep_cut: Annotated[int, Field(gt=0)] = Field(
        default=500, description="Bins of the histogram used to locate the DEP."
    )
    dep_rel_cut: Fraction = 0.5
    max_aoe_quantile: Fraction = 0.99
    max_aoe_offset: float = 0.05
    min_aoe_quantile: Fraction = 0.1
    min_aoe_offset: float = 0.0
    dep_sf: Fraction = Field(
        default=0.9, description="DEP survival fraction defining the PSD cut."
    )
    default_wl: float = Field(
        default=100.0, description="Window length returned when no sweep point is valid."
    )
    sf_range: tuple[float, float] = Field(
        default=(1.0, 100.0), description="Open range (percent) of plausible SEP survival fractions."
    )


class FilterSweepConfig(BaseModel):
    """Settings shared by the ENC and FWHM filter sweeps."""

    model_config = ConfigDict(extra="forbid")

    min_value: float = Field(description="Lower limit of values considered for the fit.")
    max_value: float = Field(description="Upper limit of values considered for the fit.")
    nbins: int = Field(default=-1, description="Bins for the cut histogram (-1: Friedman-Diaconis).")
    rel_cut_fit: Fraction = Field(default=0.5, description="Relative height of the fit window.")
    default: float = Field(
        default=3.0, description="Sweep value returned when no grid point is valid."
    )
    min_counts: Annotated[int, Field(gt=0)] = SWEEP_MIN_COUNTS
    cut_half_width: Annotated[float, Field(gt=0)] = SWEEP_CUT_HALF_WIDTH
    calib_line: float = Field(
        default=2614.5, description="Line energy used to convert FWHM to keV."
    )


class LqCtcConfig(BaseModel):
    """Drift-time correction of the LQ classifier."""

    model_config = ConfigDict(extra="forbid")

    ctc_dep_edgesigma: Annotated[float, Field(gt=0)] = 3.0
    ctc_lq_precut_relative_cut: Fraction = 0.25
    lq_outlier_sigma: Annotated[float, Field(gt=0)] = 2.0
    ctc_driftime_cutoff_method: str = Field(
        default="percentile",
        description="Drift-time cutoff policy: percentile, gaussian or double_gaussian.",
    )
    dt_eff_outlier_sigma: Annotated[float, Field(gt=0)] = 2.0
    lq_variable: str = Field(default="lq", description="Name of the raw LQ variable.")
    dt_eff_variable: str = Field(default="qdrift", description="Name of the drift-time variable.")
    e_variable: str = Field(default="e", description="Name of the energy normalizing both.")
    ctc_dt_eff_low_quantile: Fraction = 0.15
    ctc_dt_eff_high_quantile: Fraction = 0.95
    pol_fit_order: Annotated[int, Field(ge=0, le=5)] = 1
    double_gaussian_threshold: Fraction = Field(
        default=0.1, description="Fraction of the fit maximum defining the drift-time edges."
    )


class PulserConfig(BaseModel):
    """Identification of pulser events from drift time and timestamps."""

    model_config = ConfigDict(extra="forbid")

    frequency: Annotated[float, Field(gt=0)] = Field(description="Pulser frequency (Hz).")
    drift_time: Interval = Field(description="Drift-time search window.")
    drift_time_bin_width: Annotated[float, Field(gt=0)]
    drift_time_peak_width: Annotated[float, Field(gt=0)]
    threshold: Fraction = Field(default=0.1, description="Relative prominence threshold.")
    pulser_diff: Interval = Field(description="Accepted time offset to the pulser period.")
    period_tolerance: Annotated[float, Field(ge=0)] = Field(
        default=10e-9, description="Tolerance (s) of the timestamp difference fallback."
    )
