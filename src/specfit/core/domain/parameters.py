"""Parameter containers for the peakshape fitters."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from specfit.core.shared.typing import FloatArray


class Parameter(BaseModel):
    """Single fit parameter with bounds."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    name: str
    value: float
    min: float = -np.inf
    max: float = np.inf
    vary: bool = True

    @model_validator(mode="after")
    def validate_bounds(self) -> Parameter:
        """Validate parameter bounds."""
        if self.min > self.max:
            msg = f"Parameter {self.name}: min ({self.min}) > max ({self.max})"
            raise ValueError(msg)
        return self

    def __repr__(self) -> str:
        """Return a string representation of the parameter."""
        vary_str = "vary" if self.vary else "fixed"
        min_str = f"{self.min:.4g}" if self.min > -1e300 else "-inf"
        max_str = f"{self.max:.4g}" if self.max < 1e300 else "inf"
        return f"<Parameter {self.name}={self.value:.6g} [{min_str}, {max_str}] ({vary_str})>"

    def clip(self, value: float) -> float:
        """Clip a value into the bounds."""
        return float(np.clip(value, self.min, self.max))


class Parameters(BaseModel):
    """Ordered collection of fit parameters."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    params: dict[str, Parameter] = Field(default_factory=dict)

    def add(
        self,
        name: str,
        value: float = 0.0,
        min: float = -np.inf,  # noqa: A002
        max: float = np.inf,  # noqa: A002
        *,
        vary: bool = True,
    ) -> None:
        """Add a parameter, clipping its value into the bounds."""
        value = float(np.clip(value, min, max))
        self.params[name] = Parameter(name=name, value=value, min=min, max=max, vary=vary)

    def __getitem__(self, key: str) -> Parameter:
        """Get parameter by name."""
        return self.params[key]

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        """Iterate over parameter names."""
        return iter(self.params)

    def __len__(self) -> int:
        """Return number of parameters."""
        return len(self.params)

    def fix(self, *names: str) -> None:
        """Freeze the named parameters at their current values."""
        for name in names:
            self.params[name].vary = False

    def set_values(self, values: Sequence[float]) -> None:
        """Set every parameter in insertion order, clipped into its bounds."""
        for param, value in zip(self.params.values(), values, strict=True):
            param.value = param.clip(value)

    def get_vary_names(self) -> list[str]:
        """Names of the free parameters, in insertion order."""
        return [name for name, param in self.params.items() if param.vary]

    def get_vary_mask(self) -> np.ndarray:
        """Boolean mask of the free parameters over all parameters."""
        return np.array([param.vary for param in self.params.values()], dtype=bool)

    def get_vary_values(self) -> FloatArray:
        """Values of the free parameters as an array."""
        return self.values_array()[self.get_vary_mask()]

    def get_vary_bounds(self) -> tuple[FloatArray, FloatArray]:
        """Lower and upper bounds of the free parameters (infinite when open)."""
        mask = self.get_vary_mask()
        lower = np.array([param.min for param in self.params.values()], dtype=float)[mask]
        upper = np.array([param.max for param in self.params.values()], dtype=float)[mask]
        return lower, upper

    def set_vary_values(self, values: FloatArray) -> None:
        """Set values of the free parameters from an array, clipped into the bounds."""
        for name, value in zip(self.get_vary_names(), values, strict=True):
            param = self.params[name]
            param.value = param.clip(value)

    def values_array(self) -> FloatArray:
        """Values of all parameters, in insertion order."""
        return np.array([param.value for param in self.params.values()], dtype=float)

    def __repr__(self) -> str:
        """Return a string representation of the parameters collection."""
        return f"<Parameters: {len(self.params)} total, {len(self.get_vary_names())} varying>"
