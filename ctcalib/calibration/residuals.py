"""
Measurement residuals of the camera-IMU calibration.

All functions are vectorised over M observations and return raw
(unweighted) residuals predicted - observed.

Implements:
    - Corner reprojection:
        T_w_c(t) = T_w_i(t) ∘ T_i_c
        p_c = T_w_c⁻¹ p_w
        r = π(p_c; K) - z
    - Gyroscope: r = ω_i(t) + b_g - ω̃
    - Accelerometer: r = R_w_i(t)ᵀ (a_w(t) - g_w) + b_a - f̃
    - Rolling shutter: the corner on image row v is captured at
        t + readout · v / height
"""

import numpy as np

from ctcalib.coords.transforms import compose_poses, inverse_transform_points
from ctcalib.sensors.imu_models import predict_gyro, predict_specific_force
from ctcalib.vision.camera import project_points


def corner_residuals(
    q_w_i: np.ndarray,
    p_w_i: np.ndarray,
    q_i_c: np.ndarray,
    t_i_c: np.ndarray,
    intrinsics: np.ndarray,
    points_w: np.ndarray,
    observed: np.ndarray,
) -> np.ndarray:
    """
    Reprojection residuals of target corners.

    Args:
        q_w_i: IMU orientation at the capture time, shape (M, 4).
        p_w_i: IMU position at the capture time, shape (M, 3).
        q_i_c: Camera-to-IMU rotation, shape (4,) or (M, 4).
        t_i_c: Camera-to-IMU translation, shape (3,) or (M, 3).
        intrinsics: Parameter vector(s) [fx, fy, cx, cy, k1, k2, p1, p2],
            shape (8,) or (M, 8).
        points_w: Target points in the world frame, shape (M, 3).
        observed: Observed corners (px), shape (M, 2).

    Returns:
        Pixel residuals, shape (M, 2).
    """
    q_w_c, p_w_c = compose_poses(q_w_i, p_w_i, q_i_c, t_i_c)
    points_c = inverse_transform_points(q_w_c, p_w_c, points_w)
    return project_points(points_c, intrinsics) - np.asarray(observed, dtype=np.float64)


def gyro_residuals(omega_body: np.ndarray, gyro_bias: np.ndarray, measured: np.ndarray) -> np.ndarray:
    """Gyroscope residuals (rad/s), shape (M, 3)."""
    return predict_gyro(omega_body, gyro_bias) - np.asarray(measured, dtype=np.float64)


def accel_residuals(
    q_w_i: np.ndarray,
    accel_world: np.ndarray,
    gravity_world: np.ndarray,
    accel_bias: np.ndarray,
    measured: np.ndarray,
) -> np.ndarray:
    """Accelerometer residuals (m/s²), shape (M, 3)."""
    predicted = predict_specific_force(q_w_i, accel_world, gravity_world, accel_bias)
    return predicted - np.asarray(measured, dtype=np.float64)


def rolling_shutter_times_ns(
    frame_t_ns,
    rows: np.ndarray,
    readout_s: float,
    image_height: int,
) -> np.ndarray:
    """
    Capture time of every corner under a rolling-shutter readout.

    Args:
        frame_t_ns: Frame timestamp(s) in ns (start of readout).
        rows: Image row (v coordinate) of every corner, shape (M,).
        readout_s: Time to read out the full sensor (s); 0 for a global shutter.
        image_height: Number of image rows.

    Returns:
        Integer capture times in ns, shape (M,).
    """
    rows = np.asarray(rows, dtype=np.float64).reshape(-1)
    delay_ns = np.round(readout_s * 1e9 * rows / float(image_height)).astype(np.int64)
    return np.asarray(frame_t_ns, dtype=np.int64) + delay_ns
