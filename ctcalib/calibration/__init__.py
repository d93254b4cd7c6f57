"""Continuous-time camera-IMU calibration.

Main components:
    - CalibrationProblem: Trajectory, state and residuals in one problem
    - CalibrationConfig, SplineWeighting: Run configuration
    - run_calibration: Initialization, measurement assembly and optimization
"""

from ctcalib.calibration.initialization import (
    imu_pose_from_camera,
    initial_extrinsic,
    initial_gravity,
    seed_knots_from_frames,
    usable_frames,
)
from ctcalib.calibration.pipeline import build_problem, run_calibration
from ctcalib.calibration.problem import CalibrationProblem
from ctcalib.calibration.residuals import (
    accel_residuals,
    corner_residuals,
    gyro_residuals,
    rolling_shutter_times_ns,
)
from ctcalib.calibration.types import (
    KNOT_SEEDING_MODES,
    CalibrationConfig,
    CalibrationResult,
    CalibrationState,
    SplineWeighting,
)

__all__ = [
    "imu_pose_from_camera",
    "initial_extrinsic",
    "initial_gravity",
    "seed_knots_from_frames",
    "usable_frames",
    "build_problem",
    "run_calibration",
    "CalibrationProblem",
    "accel_residuals",
    "corner_residuals",
    "gyro_residuals",
    "rolling_shutter_times_ns",
    "KNOT_SEEDING_MODES",
    "CalibrationConfig",
    "CalibrationResult",
    "CalibrationState",
    "SplineWeighting",
]
