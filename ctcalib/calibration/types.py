"""
Configuration, state and result types for camera-IMU calibration.

Key types:
    - SplineWeighting: Knot spacings and residual weights as read from file
    - CalibrationConfig: Every tunable of a calibration run
    - CalibrationState: Parameters solved jointly with the trajectory
    - CalibrationResult: Refined state plus diagnostics

Frames:
    - w: World frame, identical to the calibration target frame
    - i: IMU body frame
    - c: Camera frame
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from ctcalib.coords.rotations import quat_normalize
from ctcalib.estimators.factor_graph import SolverSummary
from ctcalib.vision.types import CameraIntrinsics

KNOT_SEEDING_MODES = ("first_pose", "frame_poses")


@dataclass(frozen=True)
class SplineWeighting:
    """
    Spline and error-weighting parameters.

    Attributes:
        dt_so3: Rotation knot spacing (s).
        dt_r3: Translation knot spacing (s).
        var_so3: Weight of gyroscope residuals (information, 1/σ² in (rad/s)⁻²).
        var_r3: Weight of accelerometer residuals (information, 1/σ² in (m/s²)⁻²).
        var_corner: Weight of corner residuals (information, 1/σ² in px⁻²).

    Notes:
        The var_* names follow the on-disk format; the values are inverse
        variances, not variances.
    """

    dt_so3: float
    dt_r3: float
    var_so3: float
    var_r3: float
    var_corner: float = 1.0

    def __post_init__(self) -> None:
        for name in ("dt_so3", "dt_r3", "var_so3", "var_r3", "var_corner"):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0):
                raise ValueError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Configuration of one calibration run.

    Attributes:
        dt_so3_s: Rotation knot spacing (s).
        dt_r3_s: Translation knot spacing (s).
        gyro_weight: Information of every gyroscope residual component.
        accel_weight: Information of every accelerometer residual component.
        corner_weight: Information of every corner residual component (px⁻²).
        order: Spline order (5 = quartic).
        max_iterations: LM iteration cap.
        function_tolerance: Relative cost decrease below which LM stops.
        parameter_tolerance: Relative step size below which LM stops.
        gradient_tolerance: Gradient infinity norm below which LM stops.
        jacobian_step: Central-difference step of the numeric Jacobians.
        gravity_init_tolerance_s: Maximum gap between the first frame and the
            accelerometer sample used to seed gravity.
        imu_subsample: Use every n-th IMU sample.
        max_duration_s: Optional cap on the processed time span.
        rolling_shutter_readout_s: Sensor readout time; 0 disables the
            rolling-shutter corner model.
        knot_seeding: 'first_pose' (every knot copies the first frame pose)
            or 'frame_poses' (knots interpolate the initial frame poses).
        estimate_time_offset: Solve for the IMU-to-camera time offset.
        max_time_offset_s: Bound on the estimated time offset change; IMU
            samples within this margin of the support edges are dropped.
        estimate_intrinsics: Solve for the camera intrinsics.
        fix_extrinsic_translation: Keep the camera-to-IMU translation fixed.
        time_offset_passes: Rebinding passes when the time offset moves
            samples across knot segments.
    """

    dt_so3_s: float = 0.1
    dt_r3_s: float = 0.1
    gyro_weight: float = 1.0
    accel_weight: float = 1.0
    corner_weight: float = 1.0
    order: int = 5
    max_iterations: int = 50
    function_tolerance: float = 1e-10
    parameter_tolerance: float = 1e-10
    gradient_tolerance: float = 1e-12
    jacobian_step: float = 1e-6
    gravity_init_tolerance_s: float = 0.003
    imu_subsample: int = 1
    max_duration_s: Optional[float] = None
    rolling_shutter_readout_s: float = 0.0
    knot_seeding: str = "first_pose"
    estimate_time_offset: bool = False
    max_time_offset_s: float = 0.05
    estimate_intrinsics: bool = False
    fix_extrinsic_translation: bool = False
    time_offset_passes: int = 3

    def __post_init__(self) -> None:
        """Validate configuration values."""
        for name in ("dt_so3_s", "dt_r3_s", "gyro_weight", "accel_weight", "corner_weight"):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0):
                raise ValueError(f"{name} must be positive, got {value}")
        if self.order < 2:
            raise ValueError(f"order must be at least 2, got {self.order}")
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {self.max_iterations}")
        if self.imu_subsample < 1:
            raise ValueError(f"imu_subsample must be >= 1, got {self.imu_subsample}")
        if self.max_duration_s is not None and self.max_duration_s <= 0:
            raise ValueError(f"max_duration_s must be positive, got {self.max_duration_s}")
        if self.rolling_shutter_readout_s < 0:
            raise ValueError("rolling_shutter_readout_s must be non-negative")
        if self.gravity_init_tolerance_s <= 0:
            raise ValueError("gravity_init_tolerance_s must be positive")
        if self.knot_seeding not in KNOT_SEEDING_MODES:
            raise ValueError(
                f"knot_seeding must be one of {KNOT_SEEDING_MODES}, got '{self.knot_seeding}'"
            )
        if self.max_time_offset_s < 0:
            raise ValueError("max_time_offset_s must be non-negative")
        if self.time_offset_passes < 1:
            raise ValueError("time_offset_passes must be >= 1")

    @property
    def dt_so3_ns(self) -> int:
        return int(round(self.dt_so3_s * 1e9))

    @property
    def dt_r3_ns(self) -> int:
        return int(round(self.dt_r3_s * 1e9))

    @classmethod
    def from_weighting(cls, weighting: SplineWeighting, **overrides) -> "CalibrationConfig":
        """Build a configuration from a spline-weighting file plus overrides."""
        values = dict(
            dt_so3_s=weighting.dt_so3,
            dt_r3_s=weighting.dt_r3,
            gyro_weight=weighting.var_so3,
            accel_weight=weighting.var_r3,
            corner_weight=weighting.var_corner,
        )
        values.update(overrides)
        return cls(**values)


@dataclass
class CalibrationState:
    """
    Calibration parameters refined together with the trajectory.

    Attributes:
        q_i_c: Camera-to-IMU rotation [qw, qx, qy, qz].
        t_i_c: Camera origin in the IMU frame (m).
        gravity: Gravity in the world frame, pointing down (m/s²).
        accel_bias: Accelerometer bias (m/s²).
        gyro_bias: Gyroscope bias (rad/s).
        intrinsics: Camera intrinsics.
        time_offset_s: Offset added to IMU timestamps to reach camera time.
    """

    q_i_c: np.ndarray
    t_i_c: np.ndarray
    intrinsics: CameraIntrinsics
    gravity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    accel_bias: np.ndarray = field(default_factory=lambda: np.zeros(3))
    gyro_bias: np.ndarray = field(default_factory=lambda: np.zeros(3))
    time_offset_s: float = 0.0

    def __post_init__(self) -> None:
        self.q_i_c = quat_normalize(np.asarray(self.q_i_c, dtype=np.float64).reshape(4))
        self.t_i_c = np.asarray(self.t_i_c, dtype=np.float64).reshape(3)
        self.gravity = np.asarray(self.gravity, dtype=np.float64).reshape(3)
        self.accel_bias = np.asarray(self.accel_bias, dtype=np.float64).reshape(3)
        self.gyro_bias = np.asarray(self.gyro_bias, dtype=np.float64).reshape(3)
        self.time_offset_s = float(self.time_offset_s)

    def copy(self) -> "CalibrationState":
        return CalibrationState(
            q_i_c=self.q_i_c.copy(),
            t_i_c=self.t_i_c.copy(),
            intrinsics=CameraIntrinsics(**self.intrinsics.to_dict()),
            gravity=self.gravity.copy(),
            accel_bias=self.accel_bias.copy(),
            gyro_bias=self.gyro_bias.copy(),
            time_offset_s=self.time_offset_s,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "q_i_c": self.q_i_c.tolist(),
            "t_i_c": self.t_i_c.tolist(),
            "gravity": self.gravity.tolist(),
            "accel_bias": self.accel_bias.tolist(),
            "gyro_bias": self.gyro_bias.tolist(),
            "time_offset_s": self.time_offset_s,
            "intrinsics": self.intrinsics.to_dict(),
        }


@dataclass
class CalibrationResult:
    """
    Outcome of a calibration run.

    Attributes:
        state: Refined calibration state.
        summary: Solver diagnostics of the last optimization pass.
        mean_reprojection_error: Mean corner reprojection error (px).
        counters: Number of frames, corners, gyro and accel samples used,
            knot counts and the processed duration.
    """

    state: CalibrationState
    summary: SolverSummary
    mean_reprojection_error: float
    counters: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "state": self.state.to_dict(),
            "summary": self.summary.to_dict(),
            "mean_reprojection_error_px": float(self.mean_reprojection_error),
            "counters": dict(self.counters),
        }
