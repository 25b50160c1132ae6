"""Wall-clock budget for derivative-free searches.

SciPy's bounded scalar and Powell searches have no time limit of their
own. The objective is wrapped instead: once the budget is spent the next
evaluation raises ``TimeLimitReached`` and the caller falls back to the
best point seen so far.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable

    from specfit.core.shared.typing import FloatArray


class TimeLimitReached(Exception):
    """Raised from inside an objective once the wall-clock budget is spent."""


class TimeLimitedObjective:
    """Objective wrapper tracking the best point and enforcing a time budget."""

    def __init__(self, func: Callable[[FloatArray], float], time_limit: float) -> None:
        self._func = func
        self._deadline = time.perf_counter() + time_limit
        self.best_x: FloatArray | None = None
        self.best_value = np.inf
        self.n_calls = 0

    def __call__(self, x: FloatArray) -> float:
        if time.perf_counter() > self._deadline:
            raise TimeLimitReached
        self.n_calls += 1
        value = self._func(x)
        if value < self.best_value:
            self.best_value = value
            self.best_x = np.array(x, dtype=float, copy=True)
        return value
