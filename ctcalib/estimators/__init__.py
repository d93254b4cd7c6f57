"""Nonlinear least-squares machinery.

The solver lives here; the calibration problem in ctcalib/calibration
wires splines, residuals and calibration state into it.
"""

from ctcalib.estimators.factor_graph import (
    EUCLIDEAN,
    QUATERNION,
    FactorGraph,
    FactorGroup,
    SolverSummary,
    Variable,
    manifold_plus,
)

__all__ = [
    "EUCLIDEAN",
    "QUATERNION",
    "FactorGraph",
    "FactorGroup",
    "SolverSummary",
    "Variable",
    "manifold_plus",
]
