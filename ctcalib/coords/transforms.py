"""Rigid-body transforms stored as (quaternion, translation) pairs.

A pose T_a_b = (q_a_b, p_a_b) maps points from frame b into frame a:

    x_a = R(q_a_b) x_b + p_a_b

Every function broadcasts over leading axes, matching
ctcalib.coords.rotations.
"""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from ctcalib.coords.rotations import (
    quat_conjugate,
    quat_multiply,
    quat_rotate,
)

Pose = Tuple[NDArray[np.float64], NDArray[np.float64]]


def compose_poses(
    q_a_b: NDArray[np.float64],
    p_a_b: NDArray[np.float64],
    q_b_c: NDArray[np.float64],
    p_b_c: NDArray[np.float64],
) -> Pose:
    """Compose T_a_c = T_a_b ∘ T_b_c.

    Returns:
        Tuple (q_a_c, p_a_c).
    """
    q_a_c = quat_multiply(q_a_b, q_b_c)
    p_a_c = quat_rotate(q_a_b, p_b_c) + p_a_b
    return q_a_c, p_a_c


def invert_pose(q_a_b: NDArray[np.float64], p_a_b: NDArray[np.float64]) -> Pose:
    """Invert T_a_b into T_b_a."""
    q_b_a = quat_conjugate(q_a_b)
    return q_b_a, -quat_rotate(q_b_a, p_a_b)


def transform_points(
    q_a_b: NDArray[np.float64],
    p_a_b: NDArray[np.float64],
    points_b: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Map point(s) from frame b into frame a."""
    return quat_rotate(q_a_b, points_b) + p_a_b


def inverse_transform_points(
    q_a_b: NDArray[np.float64],
    p_a_b: NDArray[np.float64],
    points_a: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Map point(s) from frame a into frame b, i.e. apply T_a_b⁻¹."""
    return quat_rotate(quat_conjugate(q_a_b), np.asarray(points_a) - p_a_b)
