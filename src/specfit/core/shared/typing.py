"""Shared typing aliases used across specfit."""

from collections.abc import Callable
from typing import Any

import numpy as np
import numpy.typing as npt

FloatArray = npt.NDArray[np.float64]
BoolArray = npt.NDArray[np.bool_]
IntArray = npt.NDArray[np.int_]

# Model density f(x) -> counts per unit x
ModelFunction = Callable[[Any], Any]
