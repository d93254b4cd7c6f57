"""Pinhole camera projection with Brown-Conrady distortion.

The projection of a point X_c = (X, Y, Z) in the camera frame is

    (x, y) = (X/Z, Y/Z)
    r² = x² + y²
    x_d = x (1 + k1 r² + k2 r⁴) + 2 p1 x y + p2 (r² + 2 x²)
    y_d = y (1 + k1 r² + k2 r⁴) + p1 (r² + 2 y²) + 2 p2 x y
    (u, v) = (fx x_d + cx, fy y_d + cy)

Intrinsics are passed as parameter vectors [fx, fy, cx, cy, k1, k2, p1, p2]
so that the optimizer can perturb them row by row.
"""

from typing import Union

import numpy as np

from ctcalib.vision.types import CameraIntrinsics

# Depth below which points are treated as lying on the image plane.
MIN_DEPTH = 1e-6


def distort_normalized(
    xy_normalized: np.ndarray,
    k1,
    k2,
    p1,
    p2,
) -> np.ndarray:
    """
    Apply radial and tangential distortion to normalized image coordinates.

    Args:
        xy_normalized: Normalized coordinates (X/Z, Y/Z), shape (N, 2) or (2,).
        k1: First radial distortion coefficient (scalar or (N,)).
        k2: Second radial distortion coefficient (scalar or (N,)).
        p1: First tangential distortion coefficient (scalar or (N,)).
        p2: Second tangential distortion coefficient (scalar or (N,)).

    Returns:
        Distorted normalized coordinates, same shape as input.

    Raises:
        ValueError: If the input does not have 2 columns.

    Example:
        >>> xy = np.array([[0.1, 0.2], [0.3, 0.4]])
        >>> distorted = distort_normalized(xy, k1=-0.1, k2=0.01, p1=0.001, p2=0.001)
    """
    xy = np.asarray(xy_normalized, dtype=np.float64)
    if xy.shape[-1] != 2 or xy.ndim > 2:
        raise ValueError(f"Input must be (N, 2) or (2,), got {xy.shape}")
    single_point = xy.ndim == 1
    xy = xy.reshape(-1, 2)

    x = xy[:, 0]
    y = xy[:, 1]
    r2 = x**2 + y**2

    radial = 1.0 + k1 * r2 + k2 * r2**2
    x_d = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x**2)
    y_d = y * radial + p1 * (r2 + 2.0 * y**2) + 2.0 * p2 * x * y

    result = np.column_stack([x_d, y_d])
    return result.reshape(2) if single_point else result


def project_points(
    points_camera: np.ndarray,
    intrinsics: Union[CameraIntrinsics, np.ndarray],
) -> np.ndarray:
    """
    Project 3D points in the camera frame to pixel coordinates.

    Points closer than MIN_DEPTH are clamped to that depth instead of
    raising, so the function stays defined while the optimizer explores
    poor poses. Use in_front_of_camera() to test visibility.

    Args:
        points_camera: Points in the camera frame, shape (N, 3) or (3,).
        intrinsics: CameraIntrinsics, a parameter vector (8,), or one
            parameter vector per point (N, 8).

    Returns:
        Pixel coordinates, shape (N, 2) or (2,).
    """
    pts = np.asarray(points_camera, dtype=np.float64)
    single_point = pts.ndim == 1
    pts = pts.reshape(-1, 3)

    if isinstance(intrinsics, CameraIntrinsics):
        params = intrinsics.to_array()
    else:
        params = np.asarray(intrinsics, dtype=np.float64)
    params = np.broadcast_to(params, (pts.shape[0], 8))

    z = np.maximum(pts[:, 2], MIN_DEPTH)
    xy = pts[:, :2] / z[:, None]
    xy_d = distort_normalized(xy, params[:, 4], params[:, 5], params[:, 6], params[:, 7])
    uv = np.column_stack(
        [params[:, 0] * xy_d[:, 0] + params[:, 2], params[:, 1] * xy_d[:, 1] + params[:, 3]]
    )
    return uv.reshape(2) if single_point else uv


def in_front_of_camera(points_camera: np.ndarray) -> np.ndarray:
    """Boolean mask of points with positive depth."""
    pts = np.asarray(points_camera, dtype=np.float64).reshape(-1, 3)
    return pts[:, 2] > MIN_DEPTH


def inside_image(pixels: np.ndarray, intrinsics: CameraIntrinsics, margin: float = 0.0) -> np.ndarray:
    """Boolean mask of pixels inside the image (with an optional border margin)."""
    uv = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
    return (
        (uv[:, 0] >= margin)
        & (uv[:, 0] < intrinsics.width - margin)
        & (uv[:, 1] >= margin)
        & (uv[:, 1] < intrinsics.height - margin)
    )


def compute_reprojection_error(observed: np.ndarray, projected: np.ndarray) -> np.ndarray:
    """
    Euclidean pixel distance between observed and projected corners.

    Args:
        observed: Observed pixels, shape (N, 2).
        projected: Projected pixels, shape (N, 2).

    Returns:
        Per-corner error in pixels, shape (N,).
    """
    diff = np.asarray(projected, dtype=np.float64) - np.asarray(observed, dtype=np.float64)
    return np.linalg.norm(diff.reshape(-1, 2), axis=1)
