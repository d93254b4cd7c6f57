"""Continuous-time trajectory representation.

Main components:
    - KnotGrid, blending_matrix: Uniform knot grids in nanoseconds
    - SO3Spline, evaluate_so3: Cumulative quaternion B-spline
    - R3Spline, evaluate_r3: Uniform vector B-spline
    - SplitTrajectory: Rotation and translation splines behind one interface
"""

from ctcalib.spline.knots import (
    KnotGrid,
    OutOfSupportError,
    basis_powers,
    blending_matrix,
    blending_weights,
)
from ctcalib.spline.r3_spline import R3Spline, evaluate_r3
from ctcalib.spline.so3_spline import SO3Spline, evaluate_so3
from ctcalib.spline.split_trajectory import SplitTrajectory

__all__ = [
    "KnotGrid",
    "OutOfSupportError",
    "basis_powers",
    "blending_matrix",
    "blending_weights",
    "R3Spline",
    "evaluate_r3",
    "SO3Spline",
    "evaluate_so3",
    "SplitTrajectory",
]
