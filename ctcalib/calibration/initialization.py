"""
Initialization of the calibration state and trajectory.

Implements:
    - Extrinsic seed: T_i_c = (q_c_i⁻¹, 0) from an IMU-to-camera rotation
    - Usable time span: frames with t0 <= t < t_end, t0/t_end the first and
      last frame times (t_end optionally capped by a maximum duration)
    - Gravity bootstrap from a (near) static start:
        g_w = -R_w_i f̃,    T_w_i = T_w_c ∘ T_i_c⁻¹
      using the first accelerometer sample within a tolerance of the first
      frame with an initial pose
    - Knot seeding: every knot equal to the first IMU pose, or knots
      interpolated from the initial per-frame poses
"""

from typing import List, Tuple

import numpy as np

from ctcalib.coords.rotations import quat_conjugate, quat_rotate, quat_slerp
from ctcalib.coords.transforms import compose_poses, invert_pose
from ctcalib.sensors.imu_models import first_sample_within
from ctcalib.sensors.types import ImuSamples
from ctcalib.spline.split_trajectory import SplitTrajectory
from ctcalib.vision.types import Reconstruction, TimeCamId


def initial_extrinsic(q_imu_to_camera: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Camera-to-IMU transform from an IMU-to-camera rotation guess.

    Returns:
        Tuple (q_i_c, t_i_c) with zero translation.
    """
    q = np.asarray(q_imu_to_camera, dtype=np.float64).reshape(4)
    q = q / np.linalg.norm(q)
    return quat_conjugate(q), np.zeros(3)


def usable_frames(
    reconstruction: Reconstruction,
    max_duration_s: float = None,
) -> Tuple[List[TimeCamId], int, int]:
    """
    Frames inside the calibrated time span.

    Args:
        reconstruction: Input reconstruction.
        max_duration_s: Optional cap on t_end - t0.

    Returns:
        Tuple (frames, t0_ns, t_end_ns) with frames sorted by time and
        t0 <= frame time < t_end.

    Raises:
        ValueError: If fewer than two frames are usable.
    """
    frames = reconstruction.frame_ids()
    if not frames:
        raise ValueError("Reconstruction contains no frames")
    t0 = frames[0].frame_id
    t_end = frames[-1].frame_id
    if max_duration_s is not None:
        t_end = min(t_end, t0 + int(round(max_duration_s * 1e9)))

    usable = [f for f in frames if t0 <= f.frame_id < t_end]
    if len(usable) < 2:
        raise ValueError(
            f"Need at least two usable frames in [{t0}, {t_end}) ns, got {len(usable)}"
        )
    return usable, t0, t_end


def imu_pose_from_camera(
    q_w_c: np.ndarray, p_w_c: np.ndarray, q_i_c: np.ndarray, t_i_c: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """IMU pose T_w_i = T_w_c ∘ T_i_c⁻¹."""
    q_c_i, t_c_i = invert_pose(q_i_c, t_i_c)
    return compose_poses(q_w_c, p_w_c, q_c_i, t_c_i)


def initial_gravity(
    reconstruction: Reconstruction,
    frames: List[TimeCamId],
    accel: ImuSamples,
    q_i_c: np.ndarray,
    t_i_c: np.ndarray,
    time_offset_s: float = 0.0,
    tolerance_s: float = 0.003,
) -> Tuple[np.ndarray, TimeCamId]:
    """
    Gravity seed from the accelerometer at the first posed frame.

    A static IMU measures f̃ = -R_w_iᵀ g_w, so g_w ≈ -R_w_i f̃. If the rig is
    moving the seed is biased and refined later by the optimizer.

    Args:
        reconstruction: Input reconstruction with initial camera poses.
        frames: Usable frames in time order.
        accel: Accelerometer samples (IMU clock, bias offsets applied).
        q_i_c: Camera-to-IMU rotation guess.
        t_i_c: Camera-to-IMU translation guess.
        time_offset_s: Offset added to IMU timestamps.
        tolerance_s: Maximum gap between frame and sample.

    Returns:
        Tuple (gravity, frame) with the frame whose pose was used.

    Raises:
        ValueError: If no frame has an initial pose or no accelerometer
            sample is close enough to it.
    """
    frame = reconstruction.first_pose(frames)
    if frame is None:
        raise ValueError("No usable frame has an initial pose")

    idx = first_sample_within(
        accel,
        frame.frame_id,
        int(round(tolerance_s * 1e9)),
        shift_ns=int(round(time_offset_s * 1e9)),
    )
    if idx is None:
        raise ValueError(
            f"No accelerometer sample within {tolerance_s * 1e3:.1f} ms of frame {frame.frame_id}"
        )

    q_w_c, p_w_c = reconstruction.poses[frame]
    q_w_i, _ = imu_pose_from_camera(q_w_c, p_w_c, q_i_c, t_i_c)
    return -quat_rotate(q_w_i, accel.values[idx]), frame


def seed_knots_from_frames(
    trajectory: SplitTrajectory,
    reconstruction: Reconstruction,
    frames: List[TimeCamId],
    q_i_c: np.ndarray,
    t_i_c: np.ndarray,
) -> int:
    """
    Overwrite the knots with IMU poses interpolated from the frame poses.

    Each knot takes the pose at the time where its basis function peaks;
    knots before the first or after the last posed frame copy the nearest
    frame pose. Rotations are interpolated by slerp, positions linearly.

    Returns:
        Number of posed frames used.

    Raises:
        ValueError: If no frame has an initial pose.
    """
    posed = [f for f in frames if f in reconstruction.poses]
    if not posed:
        raise ValueError("No usable frame has an initial pose")

    times = np.array([f.frame_id for f in posed], dtype=np.float64)
    q_w_c = np.array([reconstruction.poses[f][0] for f in posed])
    p_w_c = np.array([reconstruction.poses[f][1] for f in posed])
    q_w_i, p_w_i = imu_pose_from_camera(q_w_c, p_w_c, q_i_c, t_i_c)
    # Keep consecutive quaternions in the same hemisphere
    for k in range(1, q_w_i.shape[0]):
        if np.dot(q_w_i[k - 1], q_w_i[k]) < 0:
            q_w_i[k] = -q_w_i[k]

    def interpolate(t_query: np.ndarray):
        if len(times) == 1:
            return np.repeat(q_w_i[:1], len(t_query), axis=0), np.repeat(p_w_i[:1], len(t_query), axis=0)
        t_query = np.clip(t_query, times[0], times[-1])
        upper = np.clip(np.searchsorted(times, t_query, side="right"), 1, len(times) - 1)
        lower = upper - 1
        span = times[upper] - times[lower]
        alpha = np.where(span > 0, (t_query - times[lower]) / np.where(span > 0, span, 1.0), 0.0)
        q = quat_slerp(q_w_i[lower], q_w_i[upper], alpha)
        p = p_w_i[lower] + alpha[:, None] * (p_w_i[upper] - p_w_i[lower])
        return q, p

    so3, r3 = trajectory.so3, trajectory.r3
    q_knots, _ = interpolate(so3.grid.knot_time_ns(np.arange(so3.num_knots)))
    _, p_knots = interpolate(r3.grid.knot_time_ns(np.arange(r3.num_knots)))
    so3.set_knots(q_knots)
    r3.set_knots(p_knots)
    return len(posed)
