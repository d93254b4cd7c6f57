"""
End-to-end camera-IMU calibration run.

Control flow:
    1. Select frames in [t0, t_end) and seed T_i_c from the rotation guess
    2. Add the bias offsets to the raw IMU samples, sub-sample, and keep
       samples whose camera-clock time lies in [t0, t_end)
    3. Seed gravity from the accelerometer at the first posed frame
    4. Seed the split trajectory with the first IMU pose and extend it over
       every query time (optionally re-seed knots from all frame poses)
    5. Add corner, accelerometer and gyroscope residuals
    6. Optimize and report the refined state and mean reprojection error
"""

import warnings
from typing import Callable, Optional, Tuple

import numpy as np
from tqdm import tqdm

from ctcalib.calibration.initialization import (
    imu_pose_from_camera,
    initial_extrinsic,
    initial_gravity,
    seed_knots_from_frames,
    usable_frames,
)
from ctcalib.calibration.problem import CalibrationProblem
from ctcalib.calibration.residuals import rolling_shutter_times_ns
from ctcalib.calibration.types import CalibrationConfig, CalibrationResult
from ctcalib.sensors.imu_models import apply_bias_offsets, select_time_window, subsample
from ctcalib.sensors.types import ImuBias, Telemetry
from ctcalib.vision.types import CornerData, Reconstruction


def build_problem(
    reconstruction: Reconstruction,
    telemetry: Telemetry,
    bias: ImuBias,
    q_imu_to_camera: np.ndarray,
    time_offset_s: float,
    config: CalibrationConfig,
    progress: bool = False,
) -> CalibrationProblem:
    """
    Initialize a CalibrationProblem and add every usable measurement.

    Args:
        reconstruction: Target geometry, corners and initial camera poses.
        telemetry: Raw accelerometer and gyroscope streams (IMU clock).
        bias: Offsets added to the raw IMU samples.
        q_imu_to_camera: Initial IMU-to-camera rotation [qw, qx, qy, qz].
        time_offset_s: Initial offset added to IMU timestamps.
        config: Calibration configuration.
        progress: Show tqdm progress bars while adding measurements.

    Returns:
        Problem ready for optimize().

    Raises:
        ValueError: If fewer than two frames are usable or gravity cannot be
            seeded.
    """
    frames, t0, t_end = usable_frames(reconstruction, config.max_duration_s)
    q_i_c, t_i_c = initial_extrinsic(q_imu_to_camera)

    accel_all, gyro_all = apply_bias_offsets(telemetry.accelerometer, telemetry.gyroscope, bias)
    gravity, seed_frame = initial_gravity(
        reconstruction,
        frames,
        accel_all,
        q_i_c,
        t_i_c,
        time_offset_s=time_offset_s,
        tolerance_s=config.gravity_init_tolerance_s,
    )

    shift_ns = int(round(time_offset_s * 1e9))
    margin_ns = int(round(config.max_time_offset_s * 1e9)) if config.estimate_time_offset else 0
    accel = select_time_window(
        subsample(accel_all, config.imu_subsample), t0 + margin_ns, t_end - margin_ns, shift_ns
    )
    gyro = select_time_window(
        subsample(gyro_all, config.imu_subsample), t0 + margin_ns, t_end - margin_ns, shift_ns
    )

    problem = CalibrationProblem(config, reconstruction.intrinsics, start_t_ns=t0)
    problem.set_t_i_c(q_i_c, t_i_c)
    problem.set_gravity(gravity)
    problem.set_time_offset(time_offset_s)

    q_seed, p_seed = imu_pose_from_camera(*reconstruction.poses[seed_frame], q_i_c, t_i_c)
    so3_grid, r3_grid = problem.trajectory.so3.grid, problem.trajectory.r3.grid
    problem.init(
        q_seed, p_seed, so3_grid.num_knots_for_span(t_end), r3_grid.num_knots_for_span(t_end)
    )

    last_query = t_end
    if config.rolling_shutter_readout_s > 0:
        for frame in frames:
            rows = reconstruction.corners[frame].corners[:, 1]
            if rows.size:
                query = rolling_shutter_times_ns(
                    frame.frame_id,
                    rows,
                    config.rolling_shutter_readout_s,
                    reconstruction.intrinsics.height,
                )
                last_query = max(last_query, int(query.max()))
    problem.extend_to(last_query)
    if config.knot_seeding == "frame_poses":
        seed_knots_from_frames(problem.trajectory, reconstruction, frames, q_i_c, t_i_c)

    known_ids = np.array(sorted(reconstruction.target_points), dtype=np.int64)
    for frame in tqdm(frames, desc="Adding corners", unit="frame", disable=not progress):
        data = reconstruction.corners[frame]
        known = np.isin(data.track_ids, known_ids)
        if not np.all(known):
            warnings.warn(
                f"Frame {frame.frame_id}: {int(np.sum(~known))} corners reference unknown "
                "target points and are ignored"
            )
            data = CornerData(data.corners[known], data.track_ids[known])
        problem.add_corners_measurement(frame, data, reconstruction.points_for(data))

    problem.add_accel_measurements(accel.timestamps_ns, accel.values)
    problem.add_gyro_measurements(gyro.timestamps_ns, gyro.values)
    return problem


def run_calibration(
    reconstruction: Reconstruction,
    telemetry: Telemetry,
    bias: ImuBias,
    q_imu_to_camera: np.ndarray,
    time_offset_s: float,
    config: CalibrationConfig,
    progress: bool = False,
    callback: Optional[Callable[[int, float, float], None]] = None,
) -> Tuple[CalibrationResult, CalibrationProblem]:
    """
    Run a complete calibration (see build_problem for the arguments).

    Args:
        callback: Optional per-iteration solver callback(iteration, cost, mu).

    Returns:
        Tuple (result, problem). The problem holds the refined trajectory
        and can be queried for residuals.
    """
    problem = build_problem(
        reconstruction, telemetry, bias, q_imu_to_camera, time_offset_s, config, progress
    )
    summary = problem.optimize(callback=callback)

    _, t0, t_end = usable_frames(reconstruction, config.max_duration_s)
    counters = {
        "num_frames": problem.num_frames,
        "num_corners": problem.num_corners,
        "num_gyro": problem.num_gyro,
        "num_accel": problem.num_accel,
        "num_knots_so3": problem.trajectory.so3.num_knots,
        "num_knots_r3": problem.trajectory.r3.num_knots,
        "duration_s": (t_end - t0) * 1e-9,
    }
    result = CalibrationResult(
        state=problem.state.copy(),
        summary=summary,
        mean_reprojection_error=problem.mean_reprojection(),
        counters=counters,
    )
    return result, problem
