"""Test chi-square fits of point-wise data."""

import dataclasses

import pytest

import numpy as np

from specfit.core.domain.measurement import measurement
from specfit.core.fitting.chi2fit import (
    PullTerm,
    chi2fit,
    chi2fit_arrays,
    chi2fit_polynomial,
    count_model_parameters,
)
from specfit.core.shared.exceptions import ConfigError, ContractViolationError

X = np.array([1.0, 2.0, 3.0, 4.0])


def line(x, a, b):
    return a + b * x


class TestChi2Fit:
    """Tests for chi2fit."""

    def test_exact_line(self):
        """Should recover an exact straight line with chi2 ~ 0."""
        y = [measurement(1.0 + 2.0 * x, 0.1) for x in X]
        result = chi2fit(line, X, y)

        np.testing.assert_allclose(result.values, [1.0, 2.0], atol=1e-5)
        assert result.gof.chi2 == pytest.approx(0.0, abs=1e-8)
        assert result.gof.dof == 2
        assert result.gof.pvalue == pytest.approx(1.0, abs=1e-6)

    def test_errors_match_least_squares(self):
        """Should reproduce the analytic straight-line uncertainties."""
        y = [measurement(1.0 + 2.0 * x, 0.1) for x in X]
        result = chi2fit(line, X, y)

        # var(b) = s^2 / Sxx, var(a) = s^2 * sum(x^2) / (n * Sxx)
        sxx = np.sum((X - X.mean()) ** 2)
        expected = [0.1 * np.sqrt(np.sum(X**2) / (X.size * sxx)), 0.1 / np.sqrt(sxx)]
        np.testing.assert_allclose(result.errors, expected, rtol=1e-3)

    def test_x_uncertainties_propagate(self):
        """Should weight by the x uncertainty times the model slope."""
        x = [measurement(xi, 0.05) for xi in X]
        y = 1.0 + 2.0 * X
        result = chi2fit(line, x, y)

        reference = chi2fit(line, X, [measurement(yi, 0.1) for yi in y])
        np.testing.assert_allclose(result.values, [1.0, 2.0], atol=1e-5)
        np.testing.assert_allclose(result.errors, reference.errors, rtol=1e-3)

    def test_x_only_uncertainties_residuals(self):
        """Should give finite residuals in y units when only x carries errors."""
        x = [measurement(xi, 0.1) for xi in X]
        y = np.array([2.1, 3.9, 6.2, 7.9])
        result = chi2fit(line, x, y)

        assert np.all(np.isfinite(result.gof.residuals_norm))
        np.testing.assert_allclose(result.gof.residuals_norm, y - result.f_fit(X), atol=1e-12)
        assert np.all(result.errors > 0)

    def test_unit_weights_without_uncertainties(self):
        """Should fall back to unit weights for plain floats."""
        result = chi2fit(line, X, 3.0 + 0.5 * X)
        np.testing.assert_allclose(result.values, [3.0, 0.5], atol=1e-5)

    def test_pull_term_constrains_parameter(self):
        """Should pull a parameter towards its prior."""
        y = [measurement(1.0 + 2.0 * x, 0.1) for x in X]
        result = chi2fit(line, X, y, pull_t=[PullTerm(5.0, 1e-4), None])
        assert result.values[0] == pytest.approx(5.0, abs=1e-3)

    def test_without_uncertainty(self):
        """Should skip covariance and goodness of fit."""
        result = chi2fit(line, X, 1.0 + 2.0 * X, uncertainty=False)
        assert result.covariance is None
        assert result.gof is None
        assert np.all(np.isnan(result.errors))

    def test_length_mismatch_raises(self):
        """Should reject x and y of different lengths."""
        with pytest.raises(ContractViolationError, match="equal lengths"):
            chi2fit(line, X, [1.0, 2.0, 3.0])

    def test_variadic_model_needs_count(self):
        """Should refuse to guess the parameter count of a variadic model."""

        def poly(x, *p):
            return sum(c * x**i for i, c in enumerate(p))

        with pytest.raises(ContractViolationError, match="variadic"):
            count_model_parameters(poly)
        result = chi2fit(poly, X, 1.0 + 2.0 * X, v_init=[0.0, 0.0])
        np.testing.assert_allclose(result.values, [1.0, 2.0], atol=1e-5)

    def test_best_fit_function(self):
        """Should return a callable with the fitted parameters fixed."""
        result = chi2fit(line, X, 1.0 + 2.0 * X)
        assert result.f_fit(10.0) == pytest.approx(21.0, abs=1e-4)


class TestChi2FitArrays:
    """Tests for chi2fit_arrays."""

    def test_arrays_fit(self):
        """Should fit value and error arrays."""
        result = chi2fit_arrays(line, X, 1.0 + 2.0 * X, np.full(4, 0.1))
        np.testing.assert_allclose(result.values, [1.0, 2.0], atol=1e-5)

    def test_arrays_length_mismatch_raises(self):
        """Should reject error arrays of the wrong length."""
        with pytest.raises(ContractViolationError, match="Array lengths differ"):
            chi2fit_arrays(line, X, 1.0 + 2.0 * X, np.full(3, 0.1))

    def test_arrays_fit_options(self):
        """Should accept the chi2fit keyword options."""
        result = chi2fit_arrays(
            line, X, 1.0 + 2.0 * X, np.full(4, 0.1), pull_t=[PullTerm(1.0, 0.01), None], uncertainty=False
        )
        assert result.gof is None
        np.testing.assert_allclose(result.values, [1.0, 2.0], atol=1e-4)

    def test_arrays_unknown_option_raises(self):
        """Should reject keywords that chi2fit does not know."""
        with pytest.raises(TypeError):
            chi2fit_arrays(line, X, 1.0 + 2.0 * X, np.full(4, 0.1), method="lm")


class TestChi2FitPolynomial:
    """Tests for chi2fit_polynomial."""

    def test_quadratic(self):
        """Should fit a quadratic and expose its formula."""
        x = np.linspace(0.0, 10.0, 8)
        y = [measurement(0.5 - 0.2 * xi + 0.03 * xi**2, 0.01) for xi in x]
        result = chi2fit_polynomial(2, x, y, variable="e")

        np.testing.assert_allclose(result.values, [0.5, -0.2, 0.03], atol=1e-4)
        assert str(result.expression) == "p0 + p1 * e + p2 * e^2"
        assert result.function(2.0) == pytest.approx(0.5 - 0.4 + 0.12, abs=1e-4)

    def test_outer_function(self):
        """Should fit a polynomial inside a square root."""
        x = np.array([500.0, 1000.0, 1500.0, 2000.0, 2600.0])
        y = [measurement(np.sqrt(4.0 + 0.002 * xi), 0.01) for xi in x]
        result = chi2fit_polynomial(1, x, y, f_outer="sqrt", v_init=[3.0, 0.001])

        np.testing.assert_allclose(result.values, [4.0, 0.002], rtol=1e-3)
        assert str(result.expression) == "sqrt(p0 + p1 * x)"

    def test_result_is_immutable(self):
        """Should not allow replacing the fitted function."""
        result = chi2fit_polynomial(1, X, 1.0 + 2.0 * X)
        assert result.function is not None
        assert result.function.expression is result.expression
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.function = None

    def test_pull_length_mismatch_raises(self):
        """Should require one pull entry per coefficient."""
        with pytest.raises(ContractViolationError, match="pull_t"):
            chi2fit_polynomial(2, X, X, pull_t=[None, None])

    def test_unknown_outer_function_raises(self):
        """Should reject unknown outer functions."""
        with pytest.raises(ConfigError, match="Unknown outer function"):
            chi2fit_polynomial(1, X, X, f_outer="tanh")
