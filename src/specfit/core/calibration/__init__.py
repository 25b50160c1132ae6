"""Calibration functions and the energy calibration chain.

Only the expression layer is re-exported here; the energy calibration
routines live in ``specfit.core.calibration.energy``.
"""

from specfit.core.calibration.expressions import (
    OUTER_FUNCTIONS,
    CalibrationFunction,
    Coefficient,
    Composed,
    Constant,
    Expression,
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

__all__ = [
    "OUTER_FUNCTIONS",
    "CalibrationFunction",
    "Coefficient",
    "Composed",
    "Constant",
    "Expression",
    "LinearCombination",
    "Polynomial",
    "Ratio",
    "Variable",
    "evaluate",
    "from_dict",
    "parameter_names",
    "to_dict",
    "variables_of",
]
