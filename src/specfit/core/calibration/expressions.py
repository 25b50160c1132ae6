"""Calibration expressions as a small closed tagged union.

Calibration and correction functions are trees of a handful of node
types. A tree can be evaluated on floats, NumPy arrays or ``Dual`` numbers,
rendered as a formula with ``str()`` and converted to and from plain
dictionaries for storage.

Example:
    >>> expr = Polynomial((Variable("p0"), Variable("p1")), Variable("e"))
    >>> str(expr)
    'p0 + p1 * e'
    >>> evaluate(expr, {"p0": 1.0, "p1": 2.0, "e": 3.0})
    7.0
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np

from specfit.core.domain.measurement import mvalue
from specfit.core.shared.exceptions import ConfigError

if TYPE_CHECKING:
    from specfit.core.domain.measurement import Measurement

OUTER_FUNCTIONS = {
    "sqrt": np.sqrt,
    "exp": np.exp,
    "log": np.log,
    "square": np.square,
}
"""Named outer functions allowed in ``Composed`` nodes."""


def _fmt(value: float) -> str:
    return f"{value:.10g}"


@dataclass(frozen=True, slots=True)
class Variable:
    """Named input (an event variable or a fit parameter)."""

    kind: ClassVar[str] = "variable"
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class Constant:
    """Numeric literal."""

    kind: ClassVar[str] = "constant"
    value: float

    def __str__(self) -> str:
        return _fmt(self.value)


@dataclass(frozen=True, slots=True)
class Ratio:
    """Quotient of two expressions."""

    kind: ClassVar[str] = "ratio"
    numerator: Expression
    denominator: Expression

    def __str__(self) -> str:
        return f"({self.numerator} / {self.denominator})"


@dataclass(frozen=True, slots=True)
class Polynomial:
    """``c0 + c1 * a + c2 * a^2 + ...`` evaluated with Horner's scheme.

    Coefficients are numbers or expressions (usually parameter variables).
    """

    kind: ClassVar[str] = "polynomial"
    coefficients: tuple[Coefficient, ...]
    argument: Expression = field(default_factory=lambda: Variable("x"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "coefficients", tuple(self.coefficients))

    @property
    def order(self) -> int:
        """Polynomial degree."""
        return len(self.coefficients) - 1

    def __str__(self) -> str:
        arg = str(self.argument)
        terms = []
        for i, coefficient in enumerate(self.coefficients):
            c = _fmt(coefficient) if isinstance(coefficient, int | float) else str(coefficient)
            if i == 0:
                terms.append(c)
            elif i == 1:
                terms.append(f"{c} * {arg}")
            else:
                terms.append(f"{c} * {arg}^{i}")
        return " + ".join(terms) if terms else "0"


@dataclass(frozen=True, slots=True)
class Composed:
    """Named outer function applied to an inner expression."""

    kind: ClassVar[str] = "composed"
    outer: str
    inner: Expression

    def __post_init__(self) -> None:
        if self.outer not in OUTER_FUNCTIONS:
            msg = f"Unknown outer function '{self.outer}'. Available: {sorted(OUTER_FUNCTIONS)}"
            raise ConfigError(msg)

    def __str__(self) -> str:
        return f"{self.outer}({self.inner})"


@dataclass(frozen=True, slots=True)
class LinearCombination:
    """``(sum_i c_i * t_i + offset) / divisor``."""

    kind: ClassVar[str] = "linear_combination"
    terms: tuple[tuple[Coefficient, Expression], ...]
    offset: Coefficient = 0.0
    divisor: Coefficient = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "terms", tuple(tuple(term) for term in self.terms))

    def __str__(self) -> str:
        parts = []
        for coefficient, term in self.terms:
            if isinstance(coefficient, int | float):
                if coefficient == 1:
                    parts.append(str(term))
                    continue
                c = _fmt(coefficient)
            else:
                c = str(coefficient)
            parts.append(f"{c} * {term}")
        if not (isinstance(self.offset, int | float) and self.offset == 0):
            parts.append(_fmt(self.offset) if isinstance(self.offset, int | float) else str(self.offset))
        body = " + ".join(parts) if parts else "0"
        if isinstance(self.divisor, int | float) and self.divisor == 1:
            return body
        d = _fmt(self.divisor) if isinstance(self.divisor, int | float) else str(self.divisor)
        return f"({body}) / {d}"


Expression = Variable | Constant | Ratio | Polynomial | Composed | LinearCombination
Coefficient = float | Expression

_NODE_TYPES: dict[str, type] = {
    cls.kind: cls for cls in (Variable, Constant, Ratio, Polynomial, Composed, LinearCombination)
}


def evaluate(expr: Coefficient, variables: Mapping[str, Any]) -> Any:
    """Evaluate an expression tree.

    Args:
        expr: Expression or numeric coefficient
        variables: Values for every ``Variable`` in the tree (floats,
            arrays or ``Dual`` numbers)

    Returns
    -------
        Value of the expression, with the type the inputs propagate to
    """
    if isinstance(expr, int | float):
        return expr
    if isinstance(expr, Variable):
        try:
            value = variables[expr.name]
        except KeyError:
            msg = f"No value given for variable '{expr.name}'"
            raise ConfigError(msg) from None
        return value
    if isinstance(expr, Constant):
        return expr.value
    if isinstance(expr, Ratio):
        return evaluate(expr.numerator, variables) / evaluate(expr.denominator, variables)
    if isinstance(expr, Polynomial):
        if not expr.coefficients:
            return 0.0
        arg = evaluate(expr.argument, variables)
        result = evaluate(expr.coefficients[-1], variables)
        for coefficient in reversed(expr.coefficients[:-1]):
            result = result * arg + evaluate(coefficient, variables)
        return result
    if isinstance(expr, Composed):
        return OUTER_FUNCTIONS[expr.outer](evaluate(expr.inner, variables))
    if isinstance(expr, LinearCombination):
        result = evaluate(expr.offset, variables)
        for coefficient, term in expr.terms:
            result = result + evaluate(coefficient, variables) * evaluate(term, variables)
        return result / evaluate(expr.divisor, variables)
    msg = f"Unsupported expression node: {type(expr).__name__}"
    raise ConfigError(msg)


def variables_of(expr: Coefficient) -> set[str]:
    """Names of all variables referenced by an expression."""
    if isinstance(expr, Variable):
        return {expr.name}
    if isinstance(expr, Ratio):
        return variables_of(expr.numerator) | variables_of(expr.denominator)
    if isinstance(expr, Polynomial):
        names = variables_of(expr.argument)
        for coefficient in expr.coefficients:
            names |= variables_of(coefficient)
        return names
    if isinstance(expr, Composed):
        return variables_of(expr.inner)
    if isinstance(expr, LinearCombination):
        names = variables_of(expr.offset) | variables_of(expr.divisor)
        for coefficient, term in expr.terms:
            names |= variables_of(coefficient) | variables_of(term)
        return names
    return set()


def to_dict(expr: Coefficient) -> Any:
    """Serialize an expression into plain dictionaries, lists and floats."""
    if isinstance(expr, int | float):
        return float(expr)
    if isinstance(expr, Variable):
        return {"kind": expr.kind, "name": expr.name}
    if isinstance(expr, Constant):
        return {"kind": expr.kind, "value": expr.value}
    if isinstance(expr, Ratio):
        return {"kind": expr.kind, "numerator": to_dict(expr.numerator), "denominator": to_dict(expr.denominator)}
    if isinstance(expr, Polynomial):
        return {
            "kind": expr.kind,
            "coefficients": [to_dict(c) for c in expr.coefficients],
            "argument": to_dict(expr.argument),
        }
    if isinstance(expr, Composed):
        return {"kind": expr.kind, "outer": expr.outer, "inner": to_dict(expr.inner)}
    return {
        "kind": expr.kind,
        "terms": [[to_dict(c), to_dict(t)] for c, t in expr.terms],
        "offset": to_dict(expr.offset),
        "divisor": to_dict(expr.divisor),
    }


def from_dict(data: Any) -> Coefficient:
    """Rebuild an expression serialized by ``to_dict``.

    Raises
    ------
        ConfigError: If a node kind is unknown.
    """
    if isinstance(data, int | float):
        return float(data)
    kind = data.get("kind")
    if kind not in _NODE_TYPES:
        msg = f"Unknown expression kind '{kind}'"
        raise ConfigError(msg)
    if kind == "variable":
        return Variable(data["name"])
    if kind == "constant":
        return Constant(float(data["value"]))
    if kind == "ratio":
        return Ratio(from_dict(data["numerator"]), from_dict(data["denominator"]))
    if kind == "polynomial":
        return Polynomial(tuple(from_dict(c) for c in data["coefficients"]), from_dict(data["argument"]))
    if kind == "composed":
        return Composed(data["outer"], from_dict(data["inner"]))
    return LinearCombination(
        terms=tuple((from_dict(c), from_dict(t)) for c, t in data["terms"]),
        offset=from_dict(data["offset"]),
        divisor=from_dict(data["divisor"]),
    )


def parameter_names(n: int, prefix: str = "p") -> tuple[Variable, ...]:
    """Parameter placeholders ``p0 .. p{n-1}`` for generic expressions."""
    return tuple(Variable(f"{prefix}{i}") for i in range(n))


@dataclass(frozen=True, slots=True)
class CalibrationFunction:
    """Fitted calibration or correction, callable on raw values.

    Attributes
    ----------
        expression: Generic formula referencing parameter variables
        parameters: Fitted parameter values by name
        variable: Name of the raw input variable
    """

    expression: Expression
    parameters: dict[str, Measurement | float] = field(default_factory=dict)
    variable: str = "e"

    def __call__(self, x: Any, **variables: Any) -> Any:
        """Apply the calibration to ``x``; extra variables by keyword."""
        values = {name: mvalue(value) for name, value in self.parameters.items()}
        values.update(variables)
        values[self.variable] = x
        return evaluate(self.expression, values)

    @property
    def parameter_values(self) -> np.ndarray:
        """Nominal parameter values in insertion order."""
        return np.array([mvalue(v) for v in self.parameters.values()], dtype=float)

    def substituted(self) -> Expression:
        """Expression with the parameter variables replaced by their values."""
        values = {name: float(mvalue(value)) for name, value in self.parameters.items()}
        return _substitute(self.expression, values)

    def __str__(self) -> str:
        return str(self.substituted())


def _substitute(expr: Coefficient, values: Mapping[str, float]) -> Any:
    if isinstance(expr, int | float):
        return expr
    if isinstance(expr, Variable):
        return values.get(expr.name, expr)
    if isinstance(expr, Ratio):
        return Ratio(
            _as_expression(_substitute(expr.numerator, values)),
            _as_expression(_substitute(expr.denominator, values)),
        )
    if isinstance(expr, Polynomial):
        return Polynomial(
            tuple(_substitute(c, values) for c in expr.coefficients),
            _as_expression(_substitute(expr.argument, values)),
        )
    if isinstance(expr, Composed):
        return Composed(expr.outer, _as_expression(_substitute(expr.inner, values)))
    if isinstance(expr, LinearCombination):
        return LinearCombination(
            terms=tuple((_substitute(c, values), _as_expression(_substitute(t, values))) for c, t in expr.terms),
            offset=_substitute(expr.offset, values),
            divisor=_substitute(expr.divisor, values),
        )
    return expr


def _as_expression(value: Coefficient) -> Expression:
    return Constant(float(value)) if isinstance(value, int | float) else value
