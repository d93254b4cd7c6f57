"""
Evaluation metrics for camera-IMU calibration.

This module provides error statistics of residuals and errors of a
calibration state against ground truth.
"""

from typing import Dict, Optional, Union

import numpy as np

from ctcalib.calibration.types import CalibrationState
from ctcalib.coords.rotations import quat_angle_between


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Compute Root Mean Square Error (RMSE).

    Args:
        errors: Error vectors, shape (N, d) or (N,)
        axis: Axis along which to compute RMSE
              None: scalar RMSE across all dimensions
              0: per-dimension RMSE
              1: per-sample RMSE

    Returns:
        rmse: RMSE value(s)
    """
    errors = np.asarray(errors, dtype=np.float64)
    if axis is None:
        return float(np.sqrt(np.mean(errors**2)))
    return np.sqrt(np.mean(errors**2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Statistics of error magnitudes.

    Args:
        errors: Error vectors, shape (N, d) or (N,)

    Returns:
        stats: Dictionary with keys 'count', 'mean', 'median', 'std',
               'rmse', 'p90', 'p95' and 'max'. Every value but 'count' is
               NaN for an empty input.
    """
    errors = np.asarray(errors, dtype=np.float64)
    if errors.ndim > 1:
        magnitudes = np.linalg.norm(errors, axis=1)
    else:
        magnitudes = np.abs(errors)

    if magnitudes.size == 0:
        nan = float("nan")
        return {"count": 0, "mean": nan, "median": nan, "std": nan, "rmse": nan,
                "p90": nan, "p95": nan, "max": nan}

    return {
        "count": int(magnitudes.size),
        "mean": float(np.mean(magnitudes)),
        "median": float(np.median(magnitudes)),
        "std": float(np.std(magnitudes)),
        "rmse": float(np.sqrt(np.mean(magnitudes**2))),
        "p90": float(np.percentile(magnitudes, 90)),
        "p95": float(np.percentile(magnitudes, 95)),
        "max": float(np.max(magnitudes)),
    }


def residual_stats(residuals: Dict[str, np.ndarray]) -> Dict[str, Dict[str, float]]:
    """Error statistics per residual type ('corners', 'gyro', 'accel')."""
    return {
        name: compute_error_stats(residuals[name])
        for name in ("corners", "gyro", "accel")
        if name in residuals
    }


def rotation_error_deg(q_estimated: np.ndarray, q_truth: np.ndarray) -> Union[float, np.ndarray]:
    """Angle of the relative rotation between two orientations (deg)."""
    angle = np.rad2deg(quat_angle_between(q_estimated, q_truth))
    return float(angle) if np.ndim(angle) == 0 else angle


def compare_calibration(estimated: CalibrationState, truth: CalibrationState) -> Dict[str, float]:
    """
    Errors of an estimated calibration state against ground truth.

    Returns:
        Dictionary with
            'rotation_deg': angle between estimated and true q_i_c
            'translation_m': norm of the t_i_c error
            'gravity_direction_deg': angle between the gravity vectors
            'gravity_norm_rel': relative gravity magnitude error
            'accel_bias': norm of the accelerometer bias error (m/s²)
            'gyro_bias': norm of the gyroscope bias error (rad/s)
            'time_offset_s': absolute time offset error
    """
    g_est, g_true = estimated.gravity, truth.gravity
    cos_g = np.dot(g_est, g_true) / (np.linalg.norm(g_est) * np.linalg.norm(g_true))
    return {
        "rotation_deg": rotation_error_deg(estimated.q_i_c, truth.q_i_c),
        "translation_m": float(np.linalg.norm(estimated.t_i_c - truth.t_i_c)),
        "gravity_direction_deg": float(np.rad2deg(np.arccos(np.clip(cos_g, -1.0, 1.0)))),
        "gravity_norm_rel": float(abs(np.linalg.norm(g_est) - np.linalg.norm(g_true)) / np.linalg.norm(g_true)),
        "accel_bias": float(np.linalg.norm(estimated.accel_bias - truth.accel_bias)),
        "gyro_bias": float(np.linalg.norm(estimated.gyro_bias - truth.gyro_bias)),
        "time_offset_s": float(abs(estimated.time_offset_s - truth.time_offset_s)),
    }
