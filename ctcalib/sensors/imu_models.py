"""
IMU measurement models and sample conditioning.

This module provides the forward models that predict raw IMU readings from
a body trajectory, and the helpers that prepare recorded samples for the
calibration:
    - Gyroscope model: ω̃ = ω_i + b_g
    - Accelerometer model: f̃ = R_w_i^T (a_w - g_w) + b_a
    - Constant offset, sub-sampling and time-window selection

Frame Conventions:
    - w: World (calibration target) frame
    - i: IMU body frame
    - g_w: Gravity vector in the world frame, pointing down (|g| ≈ 9.81)

A static, level IMU therefore measures f̃ = -R_w_i^T g_w, i.e. the
"upward" reaction to gravity.
"""

import numpy as np

from ctcalib.coords.rotations import quat_conjugate, quat_rotate
from ctcalib.sensors.types import ImuBias, ImuSamples

STANDARD_GRAVITY = 9.80665


def predict_gyro(omega_body: np.ndarray, gyro_bias: np.ndarray) -> np.ndarray:
    """
    Predict gyroscope readings from body angular velocity.

    Args:
        omega_body: Angular velocity of the IMU frame expressed in the IMU
                    frame, shape (3,) or (N, 3). Units: rad/s.
        gyro_bias: Gyroscope bias, shape (3,) or (N, 3). Units: rad/s.

    Returns:
        Predicted readings ω̃ = ω + b_g, same shape as omega_body.
    """
    return np.asarray(omega_body, dtype=np.float64) + np.asarray(gyro_bias, dtype=np.float64)


def predict_specific_force(
    q_w_i: np.ndarray,
    accel_world: np.ndarray,
    gravity_world: np.ndarray,
    accel_bias: np.ndarray,
) -> np.ndarray:
    """
    Predict accelerometer readings from world-frame acceleration.

    Implements f̃ = R_w_i^T (a_w - g_w) + b_a.

    Args:
        q_w_i: IMU orientation (body to world), shape (4,) or (N, 4).
        accel_world: Linear acceleration in the world frame, shape (3,) or (N, 3).
        gravity_world: Gravity vector in the world frame (pointing down),
                       shape (3,) or (N, 3).
        accel_bias: Accelerometer bias, shape (3,) or (N, 3).

    Returns:
        Predicted specific force in the IMU frame, shape (3,) or (N, 3).

    Example:
        >>> q = np.array([1.0, 0.0, 0.0, 0.0])
        >>> g = np.array([0.0, 0.0, -9.80665])
        >>> predict_specific_force(q, np.zeros(3), g, np.zeros(3))  # [0, 0, 9.80665]
    """
    specific_force_world = np.asarray(accel_world, dtype=np.float64) - np.asarray(
        gravity_world, dtype=np.float64
    )
    return quat_rotate(quat_conjugate(q_w_i), specific_force_world) + np.asarray(
        accel_bias, dtype=np.float64
    )


def apply_bias_offsets(accel: ImuSamples, gyro: ImuSamples, bias: ImuBias):
    """
    Add constant bias offsets to raw accelerometer and gyroscope samples.

    Returns:
        Tuple (accel, gyro) of new ImuSamples.
    """
    return (
        ImuSamples(accel.timestamps_ns, accel.values + bias.accel_bias, dict(accel.meta)),
        ImuSamples(gyro.timestamps_ns, gyro.values + bias.gyro_bias, dict(gyro.meta)),
    )


def subsample(samples: ImuSamples, step: int) -> ImuSamples:
    """Keep every `step`-th sample.

    Raises:
        ValueError: If step < 1.
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")
    if step == 1:
        return samples
    return ImuSamples(samples.timestamps_ns[::step], samples.values[::step], dict(samples.meta))


def select_time_window(
    samples: ImuSamples,
    start_t_ns: int,
    end_t_ns: int,
    shift_ns: int = 0,
) -> ImuSamples:
    """
    Keep samples whose shifted time lies in [start_t_ns, end_t_ns).

    The lower bound is inclusive and the upper bound exclusive. The returned
    timestamps are the original (unshifted) ones.

    Args:
        samples: Input samples.
        start_t_ns: Inclusive lower bound (ns).
        end_t_ns: Exclusive upper bound (ns).
        shift_ns: Offset added to sample times before the comparison.
    """
    t = samples.timestamps_ns + np.int64(shift_ns)
    mask = (t >= start_t_ns) & (t < end_t_ns)
    return ImuSamples(samples.timestamps_ns[mask], samples.values[mask], dict(samples.meta))


def first_sample_within(samples: ImuSamples, t_ns: int, tolerance_ns: int, shift_ns: int = 0):
    """
    First sample whose shifted time is within tolerance_ns of t_ns.

    Returns:
        Index of the sample, or None if no sample is close enough.
    """
    t = samples.timestamps_ns + np.int64(shift_ns)
    close = np.flatnonzero(np.abs(t - np.int64(t_ns)) < tolerance_ns)
    if close.size == 0:
        return None
    return int(close[0])
