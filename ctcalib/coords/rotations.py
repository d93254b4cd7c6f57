"""Quaternion algebra on SO(3).

This module provides the rotation operations used by the spline trajectory
and the calibration residuals. All functions broadcast over leading axes,
so a batch of M quaternions is simply an array of shape (M, 4).

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part (Hamilton)
- q_a_b rotates vectors from frame b into frame a: v_a = q_a_b * v_b
- Rotation vectors (tangent space, "so(3)"): axis * angle in radians
- Rotation matrices: 3x3 numpy arrays with v_a = R_a_b @ v_b

Reference: Sola, "Quaternion kinematics for the error-state Kalman filter"
"""

import numpy as np
from numpy.typing import NDArray

# Below this angle the exp/log maps switch to their Taylor expansions.
_SMALL_ANGLE = 1e-8


def quat_identity(shape: tuple = ()) -> NDArray[np.float64]:
    """Return identity quaternion(s) with the given leading shape."""
    q = np.zeros(tuple(shape) + (4,), dtype=np.float64)
    q[..., 0] = 1.0
    return q


def quat_multiply(
    p: NDArray[np.float64], q: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Hamilton product p ⊗ q.

    Args:
        p: Quaternion(s) [qw, qx, qy, qz], shape (..., 4).
        q: Quaternion(s) [qw, qx, qy, qz], shape (..., 4).

    Returns:
        Product quaternion(s), broadcast shape (..., 4).

    Example:
        >>> q = quat_exp(np.array([0.0, 0.0, np.pi / 2]))
        >>> quat_multiply(q, quat_conjugate(q))  # identity
    """
    pw, px, py, pz = p[..., 0], p[..., 1], p[..., 2], p[..., 3]
    qw, qx, qy, qz = q[..., 0], q[..., 1], q[..., 2], q[..., 3]
    return np.stack(
        [
            pw * qw - px * qx - py * qy - pz * qz,
            pw * qx + px * qw + py * qz - pz * qy,
            pw * qy - px * qz + py * qw + pz * qx,
            pw * qz + px * qy - py * qx + pz * qw,
        ],
        axis=-1,
    )


def quat_conjugate(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Conjugate (inverse for unit quaternions)."""
    q = np.asarray(q, dtype=np.float64)
    out = q.copy()
    out[..., 1:] = -out[..., 1:]
    return out


def quat_normalize(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Normalize quaternion(s) to unit length.

    Raises:
        ValueError: If any quaternion has (near) zero norm.
    """
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q, axis=-1, keepdims=True)
    if np.any(norm < 1e-12):
        raise ValueError("Cannot normalize a zero-norm quaternion")
    return q / norm


def quat_exp(rotvec: NDArray[np.float64]) -> NDArray[np.float64]:
    """Exponential map from rotation vector(s) to unit quaternion(s).

    Implements q = [cos(θ/2), sin(θ/2) * φ/θ] with θ = |φ|, using the
    first-order expansion sin(θ/2)/θ ≈ 1/2 - θ²/48 near zero.

    Args:
        rotvec: Rotation vector(s) φ, shape (..., 3).

    Returns:
        Unit quaternion(s), shape (..., 4).
    """
    rotvec = np.asarray(rotvec, dtype=np.float64)
    theta = np.linalg.norm(rotvec, axis=-1)
    half = 0.5 * theta
    small = theta < _SMALL_ANGLE
    safe_theta = np.where(small, 1.0, theta)
    scale = np.where(small, 0.5 - theta**2 / 48.0, np.sin(half) / safe_theta)
    return np.concatenate(
        [np.cos(half)[..., None], scale[..., None] * rotvec], axis=-1
    )


def quat_log(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Logarithm map from unit quaternion(s) to rotation vector(s).

    The result is the shortest rotation: quaternions with negative scalar
    part are flipped before taking the logarithm, so the returned angle
    lies in [0, π].

    Args:
        q: Unit quaternion(s), shape (..., 4).

    Returns:
        Rotation vector(s), shape (..., 3).
    """
    q = np.asarray(q, dtype=np.float64)
    sign = np.where(q[..., 0] < 0.0, -1.0, 1.0)[..., None]
    q = q * sign
    w = q[..., 0]
    xyz = q[..., 1:]
    n = np.linalg.norm(xyz, axis=-1)
    small = n < _SMALL_ANGLE
    safe_n = np.where(small, 1.0, n)
    safe_w = np.where(small, np.maximum(w, _SMALL_ANGLE), 1.0)
    # 2 atan2(n, w) / n -> 2 / w as n -> 0
    scale = np.where(small, 2.0 / safe_w, 2.0 * np.arctan2(n, w) / safe_n)
    return scale[..., None] * xyz


def quat_rotate(
    q: NDArray[np.float64], v: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Rotate vector(s) v by quaternion(s) q, i.e. q ⊗ [0, v] ⊗ q*.

    Uses the expansion v' = v + 2w (u × v) + 2 u × (u × v) with u the
    vector part of q.

    Args:
        q: Unit quaternion(s), shape (..., 4).
        v: Vector(s), shape (..., 3).

    Returns:
        Rotated vector(s), broadcast shape (..., 3).
    """
    q = np.asarray(q, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    w = q[..., :1]
    u = q[..., 1:]
    uv = np.cross(u, v)
    return v + 2.0 * w * uv + 2.0 * np.cross(u, uv)


def quat_slerp(
    q0: NDArray[np.float64], q1: NDArray[np.float64], alpha
) -> NDArray[np.float64]:
    """Spherical linear interpolation q0 ⊗ exp(alpha * log(q0* ⊗ q1))."""
    alpha = np.asarray(alpha, dtype=np.float64)
    delta = quat_log(quat_multiply(quat_conjugate(q0), q1))
    return quat_multiply(q0, quat_exp(alpha[..., None] * delta))


def quat_angle_between(
    q0: NDArray[np.float64], q1: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Angle (radians) of the relative rotation q0* ⊗ q1."""
    delta = quat_log(quat_multiply(quat_conjugate(q0), q1))
    return np.linalg.norm(delta, axis=-1)


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion(s) to rotation matrix (matrices).

    Args:
        q: Unit quaternion(s) [qw, qx, qy, qz], shape (4,) or (..., 4).

    Returns:
        Rotation matrix (matrices) R such that v_a = R @ v_b, shape (..., 3, 3).

    Raises:
        ValueError: If the last axis does not have 4 elements.
    """
    q = np.asarray(q, dtype=np.float64)
    if q.shape[-1] != 4:
        raise ValueError(f"Expected quaternion(s) of shape (..., 4), got {q.shape}")

    qw, qx, qy, qz = q[..., 0], q[..., 1], q[..., 2], q[..., 3]
    R = np.empty(q.shape[:-1] + (3, 3), dtype=np.float64)
    R[..., 0, 0] = 1.0 - 2.0 * (qy * qy + qz * qz)
    R[..., 0, 1] = 2.0 * (qx * qy - qw * qz)
    R[..., 0, 2] = 2.0 * (qx * qz + qw * qy)
    R[..., 1, 0] = 2.0 * (qx * qy + qw * qz)
    R[..., 1, 1] = 1.0 - 2.0 * (qx * qx + qz * qz)
    R[..., 1, 2] = 2.0 * (qy * qz - qw * qx)
    R[..., 2, 0] = 2.0 * (qx * qz - qw * qy)
    R[..., 2, 1] = 2.0 * (qy * qz + qw * qx)
    R[..., 2, 2] = 1.0 - 2.0 * (qx * qx + qy * qy)
    return R


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a rotation matrix to a unit quaternion (Shepperd's method).

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Unit quaternion [qw, qx, qy, qz] with qw >= 0.

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    trace = np.trace(R)
    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        q = [0.25 / s, (R[2, 1] - R[1, 2]) * s, (R[0, 2] - R[2, 0]) * s,
             (R[1, 0] - R[0, 1]) * s]
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        q = [(R[2, 1] - R[1, 2]) / s, 0.25 * s, (R[0, 1] + R[1, 0]) / s,
             (R[0, 2] + R[2, 0]) / s]
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        q = [(R[0, 2] - R[2, 0]) / s, (R[0, 1] + R[1, 0]) / s, 0.25 * s,
             (R[1, 2] + R[2, 1]) / s]
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        q = [(R[1, 0] - R[0, 1]) / s, (R[0, 2] + R[2, 0]) / s,
             (R[1, 2] + R[2, 1]) / s, 0.25 * s]

    q = np.array(q, dtype=np.float64)
    if q[0] < 0:
        q = -q
    return q / np.linalg.norm(q)


def euler_to_quat(roll: float, pitch: float, yaw: float) -> NDArray[np.float64]:
    """Convert roll-pitch-yaw (ZYX convention) to a unit quaternion.

    Accepts scalars or equally shaped arrays; the quaternion axis is appended
    last.
    """
    cr, sr = np.cos(np.multiply(roll, 0.5)), np.sin(np.multiply(roll, 0.5))
    cp, sp = np.cos(np.multiply(pitch, 0.5)), np.sin(np.multiply(pitch, 0.5))
    cy, sy = np.cos(np.multiply(yaw, 0.5)), np.sin(np.multiply(yaw, 0.5))

    return np.stack(
        [
            cr * cp * cy + sr * sp * sy,
            sr * cp * cy - cr * sp * sy,
            cr * sp * cy + sr * cp * sy,
            cr * cp * sy - sr * sp * cy,
        ],
        axis=-1,
    ).astype(np.float64)
