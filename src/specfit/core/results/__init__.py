"""Goodness-of-fit statistics shared by all fitters."""

from specfit.core.results.statistics import (
    GoodnessOfFit,
    MonteCarloPValue,
    chi2_pvalue,
    get_model_counts,
    p_value,
    p_value_loglike_ratio,
    p_value_mc,
    poisson_deviance,
    prepare_data,
)

__all__ = [
    "GoodnessOfFit",
    "MonteCarloPValue",
    "chi2_pvalue",
    "get_model_counts",
    "p_value",
    "p_value_loglike_ratio",
    "p_value_mc",
    "poisson_deviance",
    "prepare_data",
]
