"""Test calibration expressions and calibration functions."""

import pytest

import numpy as np

from specfit.core.algorithms.dual import Dual, value_and_deriv
from specfit.core.calibration import (
    CalibrationFunction,
    Composed,
    Constant,
    LinearCombination,
    Polynomial,
    Ratio,
    Variable,
    evaluate,
    from_dict,
    parameter_names,
    to_dict,
    variables_of,
)
from specfit.core.domain.measurement import measurement
from specfit.core.shared.exceptions import ConfigError


@pytest.fixture
def ctc_like():
    """``(lq / e + fct * qdrift / e - 0.5) / 2``."""
    e = Variable("e")
    return LinearCombination(
        terms=((1.0, Ratio(Variable("lq"), e)), (Variable("fct"), Ratio(Variable("qdrift"), e))),
        offset=-0.5,
        divisor=2.0,
    )


class TestFormatting:
    """Tests for the string form of expressions."""

    def test_polynomial(self):
        """Should render coefficients in increasing order."""
        expr = Polynomial(parameter_names(3), Variable("e"))
        assert str(expr) == "p0 + p1 * e + p2 * e^2"

    def test_numeric_polynomial(self):
        """Should render numeric coefficients."""
        assert str(Polynomial((0.0, 0.25), Variable("e"))) == "0 + 0.25 * e"

    def test_composed(self):
        """Should wrap the inner expression in the outer function."""
        assert str(Composed("sqrt", Polynomial(parameter_names(2)))) == "sqrt(p0 + p1 * x)"

    def test_linear_combination(self, ctc_like):
        """Should render terms, offset and divisor."""
        assert str(ctc_like) == "((lq / e) + fct * (qdrift / e) + -0.5) / 2"

    def test_unknown_outer_function_raises(self):
        """Should reject unknown outer functions."""
        with pytest.raises(ConfigError, match="Unknown outer function"):
            Composed("tanh", Variable("x"))


class TestEvaluate:
    """Tests for expression evaluation."""

    def test_polynomial_horner(self):
        """Should evaluate polynomials on scalars and arrays."""
        expr = Polynomial((1.0, Variable("a"), 3.0), Variable("x"))
        assert evaluate(expr, {"a": 2.0, "x": 2.0}) == pytest.approx(1 + 4 + 12)
        np.testing.assert_allclose(evaluate(expr, {"a": 0.0, "x": np.array([0.0, 1.0])}), [1.0, 4.0])

    def test_linear_combination(self, ctc_like):
        """Should evaluate terms, offset and divisor."""
        values = {"lq": 2.0, "e": 4.0, "fct": 0.5, "qdrift": 4.0}
        assert evaluate(ctc_like, values) == pytest.approx((0.5 + 0.5 - 0.5) / 2)

    def test_missing_variable_raises(self):
        """Should name the missing variable."""
        with pytest.raises(ConfigError, match="'e'"):
            evaluate(Polynomial((0.0, 1.0), Variable("e")), {})

    def test_dual_derivative(self):
        """Should propagate derivatives through the tree."""
        expr = Composed("sqrt", Polynomial((4.0, 0.0, 1.0), Variable("x")))
        value, deriv = value_and_deriv(evaluate(expr, {"x": Dual(3.0, 1.0)}))
        assert value == pytest.approx(5.0)
        assert deriv == pytest.approx(3.0 / 5.0)

    def test_variables_of(self, ctc_like):
        """Should collect every referenced name."""
        assert variables_of(ctc_like) == {"lq", "e", "fct", "qdrift"}
        assert variables_of(Constant(1.0)) == set()


class TestSerialization:
    """Tests for to_dict / from_dict."""

    def test_plain_data(self, ctc_like):
        """Should produce nested dictionaries of plain values."""
        data = to_dict(ctc_like)
        assert data["kind"] == "linear_combination"
        assert data["offset"] == -0.5
        assert data["terms"][1][0] == {"kind": "variable", "name": "fct"}

    def test_restores_expression(self, ctc_like):
        """Should rebuild an equal tree."""
        expr = Composed("log", Ratio(Polynomial(parameter_names(2)), Constant(2.0)))
        assert from_dict(to_dict(expr)) == expr
        assert from_dict(to_dict(ctc_like)) == ctc_like

    def test_unknown_kind_raises(self):
        """Should reject unknown node kinds."""
        with pytest.raises(ConfigError, match="Unknown expression kind"):
            from_dict({"kind": "spline"})


class TestCalibrationFunction:
    """Tests for CalibrationFunction."""

    def test_call_with_measurements(self):
        """Should use the nominal parameter values."""
        f = CalibrationFunction(
            expression=Polynomial(parameter_names(2), Variable("e")),
            parameters={"p0": measurement(1.0, 0.1), "p1": measurement(0.25, 0.01)},
            variable="e",
        )
        np.testing.assert_allclose(f(np.array([0.0, 4.0])), [1.0, 2.0])
        np.testing.assert_allclose(f.parameter_values, [1.0, 0.25])

    def test_extra_variables(self):
        """Should accept further event variables by keyword."""
        f = CalibrationFunction(
            expression=LinearCombination(((1.0, Variable("e")), (Variable("fct"), Variable("qdrift")))),
            parameters={"fct": 1e-3},
            variable="e",
        )
        assert f(2614.0, qdrift=500.0) == pytest.approx(2614.5)

    def test_str_substitutes_parameters(self):
        """Should show the fitted values in the formula."""
        f = CalibrationFunction(
            expression=Polynomial(parameter_names(2), Variable("e")),
            parameters={"p0": 0.5, "p1": 0.25},
        )
        assert str(f) == "0.5 + 0.25 * e"
