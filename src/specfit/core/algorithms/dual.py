"""Forward-mode dual numbers for input-uncertainty propagation.

A ``Dual`` carries a value and a first-order perturbation. Seeding the
perturbation of an input ``x`` with its uncertainty ``sigma_x`` and pushing
it through a model gives ``f(x)`` together with ``f'(x) * sigma_x``, the
linearly propagated uncertainty of the prediction.

Values and perturbations may be scalars or NumPy arrays of equal shape, so
whole data vectors propagate in one pass. Supported NumPy/SciPy ufuncs
dispatch through ``__array_ufunc__``; ``np.sqrt(Dual(...))`` returns a Dual.

Example:
    >>> x = Dual(4.0, 0.1)
    >>> y = 3.0 * x**2 + 1.0
    >>> y.value, round(y.deriv, 12)
    (49.0, 2.4)
"""

from __future__ import annotations

from typing import Any

import numpy as np
from scipy import special

_TWO_OVER_SQRT_PI = 2.0 / np.sqrt(np.pi)


class Dual:
    """Value with a first-order derivative part."""

    __slots__ = ("deriv", "value")

    def __init__(self, value: Any, deriv: Any = 0.0) -> None:
        self.value = value
        self.deriv = deriv

    def __repr__(self) -> str:
        return f"Dual({self.value!r}, {self.deriv!r})"

    def __len__(self) -> int:
        return len(self.value)

    def __getitem__(self, index: Any) -> Dual:
        return Dual(np.asarray(self.value)[index], np.broadcast_to(self.deriv, np.shape(self.value))[index])

    # -- arithmetic ---------------------------------------------------------

    def __add__(self, other: Any) -> Dual:
        return _add(self, _as_dual(other))

    def __radd__(self, other: Any) -> Dual:
        return _add(_as_dual(other), self)

    def __sub__(self, other: Any) -> Dual:
        return _subtract(self, _as_dual(other))

    def __rsub__(self, other: Any) -> Dual:
        return _subtract(_as_dual(other), self)

    def __mul__(self, other: Any) -> Dual:
        return _multiply(self, _as_dual(other))

    def __rmul__(self, other: Any) -> Dual:
        return _multiply(_as_dual(other), self)

    def __truediv__(self, other: Any) -> Dual:
        return _divide(self, _as_dual(other))

    def __rtruediv__(self, other: Any) -> Dual:
        return _divide(_as_dual(other), self)

    def __pow__(self, other: Any) -> Dual:
        return _power(self, _as_dual(other))

    def __rpow__(self, other: Any) -> Dual:
        return _power(_as_dual(other), self)

    def __neg__(self) -> Dual:
        return Dual(-self.value, -self.deriv)

    def __pos__(self) -> Dual:
        return self

    def __abs__(self) -> Dual:
        return Dual(np.abs(self.value), np.sign(self.value) * self.deriv)

    # -- numpy interoperability ------------------------------------------------

    def __array_ufunc__(self, ufunc: np.ufunc, method: str, *inputs: Any, **kwargs: Any) -> Any:
        if method != "__call__" or kwargs:
            return NotImplemented
        rule = _UFUNC_RULES.get(ufunc)
        if rule is None:
            return NotImplemented
        return rule(*(_as_dual(arg) for arg in inputs))


def _as_dual(x: Any) -> Dual:
    if isinstance(x, Dual):
        return x
    value = np.asarray(x, dtype=float) if not np.isscalar(x) else float(x)
    return Dual(value, np.zeros_like(value) if not np.isscalar(value) else 0.0)


def _add(a: Dual, b: Dual) -> Dual:
    return Dual(a.value + b.value, a.deriv + b.deriv)


def _subtract(a: Dual, b: Dual) -> Dual:
    return Dual(a.value - b.value, a.deriv - b.deriv)


def _multiply(a: Dual, b: Dual) -> Dual:
    return Dual(a.value * b.value, a.deriv * b.value + a.value * b.deriv)


def _divide(a: Dual, b: Dual) -> Dual:
    value = a.value / b.value
    return Dual(value, (a.deriv - value * b.deriv) / b.value)


def _power(a: Dual, b: Dual) -> Dual:
    value = a.value**b.value
    if np.all(np.asarray(b.deriv) == 0):
        return Dual(value, b.value * a.value ** (b.value - 1) * a.deriv)
    return Dual(value, value * (b.deriv * np.log(a.value) + b.value * a.deriv / a.value))


def _exp(a: Dual) -> Dual:
    value = np.exp(a.value)
    return Dual(value, value * a.deriv)


def _log(a: Dual) -> Dual:
    return Dual(np.log(a.value), a.deriv / a.value)


def _sqrt(a: Dual) -> Dual:
    value = np.sqrt(a.value)
    return Dual(value, 0.5 * a.deriv / value)


def _square(a: Dual) -> Dual:
    return Dual(a.value**2, 2.0 * a.value * a.deriv)


def _erf(a: Dual) -> Dual:
    return Dual(special.erf(a.value), _TWO_OVER_SQRT_PI * np.exp(-(a.value**2)) * a.deriv)


def _erfc(a: Dual) -> Dual:
    return Dual(special.erfc(a.value), -_TWO_OVER_SQRT_PI * np.exp(-(a.value**2)) * a.deriv)


_UFUNC_RULES = {
    np.add: _add,
    np.subtract: _subtract,
    np.multiply: _multiply,
    np.true_divide: _divide,
    np.power: _power,
    np.negative: lambda a: -a,
    np.positive: lambda a: a,
    np.absolute: abs,
    np.exp: _exp,
    np.log: _log,
    np.sqrt: _sqrt,
    np.square: _square,
    special.erf: _erf,
    special.erfc: _erfc,
}


def value_and_deriv(x: Any) -> tuple[Any, Any]:
    """Split a possibly-dual result into value and derivative parts."""
    if isinstance(x, Dual):
        return x.value, x.deriv
    return x, np.zeros_like(np.asarray(x, dtype=float))
