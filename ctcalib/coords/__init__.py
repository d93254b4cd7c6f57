"""Rotation and rigid-transform helpers.

Quaternions are scalar-first [qw, qx, qy, qz] throughout the package.
"""

from ctcalib.coords.rotations import (
    euler_to_quat,
    quat_angle_between,
    quat_conjugate,
    quat_exp,
    quat_identity,
    quat_log,
    quat_multiply,
    quat_normalize,
    quat_rotate,
    quat_slerp,
    quat_to_rotation_matrix,
    rotation_matrix_to_quat,
)
from ctcalib.coords.transforms import (
    Pose,
    compose_poses,
    inverse_transform_points,
    invert_pose,
    transform_points,
)

__all__ = [
    # Rotations
    "euler_to_quat",
    "quat_angle_between",
    "quat_conjugate",
    "quat_exp",
    "quat_identity",
    "quat_log",
    "quat_multiply",
    "quat_normalize",
    "quat_rotate",
    "quat_slerp",
    "quat_to_rotation_matrix",
    "rotation_matrix_to_quat",
    # Transforms
    "Pose",
    "compose_poses",
    "inverse_transform_points",
    "invert_pose",
    "transform_points",
]
