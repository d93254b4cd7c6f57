"""
Synthetic camera-IMU rig for testing and demonstrating the calibration.

A camera observes a planar chessboard (target frame z = 0) from roughly
`distance_m` behind it while oscillating in rotation and translation. The
IMU trajectory is itself a split B-spline, so a calibration with the same
knot grid can represent it exactly.

Forward models:
    Corners:       z = π(T_w_c(t)⁻¹ p_w; K) + n_px,   T_w_c = T_w_i ∘ T_i_c
    Gyroscope:     ω̃ = ω_i(t) + b_g + n_g
    Accelerometer: f̃ = R_w_i(t)ᵀ (a_w(t) - g_w) + b_a + n_a

Timing:
    Frame timestamps are on the camera clock. IMU timestamps are on the IMU
    clock, t_imu = t_cam - time_offset_s.

The rig rests for `static_s` and the motion amplitude then ramps up from
zero (smootherstep envelope over `ramp_s`), so the IMU is at rest at the
first frame, where gravity is bootstrapped from the accelerometer.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from ctcalib.calibration.initialization import imu_pose_from_camera
from ctcalib.calibration.types import CalibrationState
from ctcalib.coords.rotations import euler_to_quat, quat_conjugate, quat_exp, quat_multiply
from ctcalib.coords.transforms import compose_poses, inverse_transform_points
from ctcalib.sensors.imu_models import STANDARD_GRAVITY, predict_gyro, predict_specific_force
from ctcalib.sensors.types import ImuBias, ImuSamples, Telemetry
from ctcalib.spline.split_trajectory import SplitTrajectory
from ctcalib.vision.camera import inside_image, project_points
from ctcalib.vision.types import CameraIntrinsics, CornerData, Reconstruction, TimeCamId

# Cap on the fixed-point iterations solving rolling-shutter capture times.
MAX_SHUTTER_ITERATIONS = 20


@dataclass
class SyntheticRigConfig:
    """
    Parameters of a synthetic calibration recording.

    Attributes:
        duration_s: Recording length (s).
        start_time_s: Camera-clock time of the first frame (s).
        camera_rate_hz: Frame rate (Hz).
        imu_rate_hz: IMU sample rate (Hz).
        dt_knot_s: Knot spacing of the ground-truth splines (s).
        order: Spline order.
        board_rows: Chessboard corner rows.
        board_cols: Chessboard corner columns.
        square_size_m: Chessboard square size (m).
        distance_m: Nominal camera distance to the board (m).
        rotation_amplitude_rad: Per-axis rotation oscillation amplitude.
        translation_amplitude_m: Per-axis translation oscillation amplitude.
        frequencies_hz: Oscillation frequencies (one per axis, reused for
            rotation and translation with different phases).
        static_s: Rest period at the start of the recording (s).
        ramp_s: Duration of the motion ramp-up (s).
        intrinsics: Camera model used to render corners.
        extrinsic_euler_rad: Camera-to-IMU rotation as (roll, pitch, yaw).
        t_i_c: Camera origin in the IMU frame (m).
        gravity_w: Gravity in the target frame (m/s²).
        accel_bias: True accelerometer bias (m/s²).
        gyro_bias: True gyroscope bias (rad/s).
        time_offset_s: True offset added to IMU timestamps.
        pixel_noise_std: Corner noise (px).
        accel_noise_std: Accelerometer white noise (m/s²).
        gyro_noise_std: Gyroscope white noise (rad/s).
        pose_noise_rad: Noise of the initial frame orientations (rad).
        pose_noise_m: Noise of the initial frame positions (m).
        extrinsic_init_error_deg: Rotation error of the initial extrinsic (deg).
        rolling_shutter_readout_s: Sensor readout time (0 = global shutter).
        min_corners: Frames with fewer visible corners are dropped.
    """

    duration_s: float = 6.0
    start_time_s: float = 1.0
    camera_rate_hz: float = 30.0
    imu_rate_hz: float = 200.0
    dt_knot_s: float = 0.1
    order: int = 5
    board_rows: int = 6
    board_cols: int = 8
    square_size_m: float = 0.04
    distance_m: float = 0.7
    rotation_amplitude_rad: Tuple[float, float, float] = (0.15, 0.15, 0.35)
    translation_amplitude_m: Tuple[float, float, float] = (0.08, 0.08, 0.05)
    frequencies_hz: Tuple[float, float, float] = (0.45, 0.6, 0.35)
    static_s: float = 0.5
    ramp_s: float = 0.5
    intrinsics: CameraIntrinsics = field(
        default_factory=lambda: CameraIntrinsics(
            fx=500.0, fy=500.0, cx=320.0, cy=240.0, k1=-0.05, k2=0.01, width=640, height=480
        )
    )
    extrinsic_euler_rad: Tuple[float, float, float] = (0.1, -0.2, 1.2)
    t_i_c: Tuple[float, float, float] = (0.02, -0.01, 0.005)
    gravity_w: Tuple[float, float, float] = (0.0, STANDARD_GRAVITY, 0.0)
    accel_bias: Tuple[float, float, float] = (0.05, -0.03, 0.02)
    gyro_bias: Tuple[float, float, float] = (0.004, -0.002, 0.003)
    time_offset_s: float = 0.0
    pixel_noise_std: float = 0.5
    accel_noise_std: float = 0.02
    gyro_noise_std: float = 0.001
    pose_noise_rad: float = 0.005
    pose_noise_m: float = 0.005
    extrinsic_init_error_deg: float = 2.0
    rolling_shutter_readout_s: float = 0.0
    min_corners: int = 8

    def __post_init__(self) -> None:
        """Validate rig parameters."""
        for name in ("duration_s", "camera_rate_hz", "imu_rate_hz", "dt_knot_s", "distance_m"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("pixel_noise_std", "accel_noise_std", "gyro_noise_std", "pose_noise_rad",
                     "pose_noise_m", "extrinsic_init_error_deg", "rolling_shutter_readout_s", "static_s", "ramp_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.board_rows < 2 or self.board_cols < 2:
            raise ValueError("Chessboard needs at least 2x2 corners")


@dataclass
class SyntheticDataset:
    """
    Synthetic recording plus its ground truth.

    Attributes:
        reconstruction: Target points, noisy corners and noisy initial poses.
        telemetry: Noisy IMU streams on the IMU clock.
        bias: Offsets to add to the raw IMU samples (zero).
        q_imu_to_camera: Perturbed initial IMU-to-camera rotation.
        time_offset_s: Initial time offset given to the calibration.
        trajectory: Ground-truth IMU trajectory T_w_i(t).
        truth: Ground-truth calibration state.
        config: Generating configuration.
    """

    reconstruction: Reconstruction
    telemetry: Telemetry
    bias: ImuBias
    q_imu_to_camera: np.ndarray
    time_offset_s: float
    trajectory: SplitTrajectory
    truth: CalibrationState
    config: SyntheticRigConfig


def chessboard_points(rows: int, cols: int, square_size_m: float) -> Dict[int, np.ndarray]:
    """Planar chessboard corners centred on the target origin (z = 0)."""
    points = {}
    for r in range(rows):
        for c in range(cols):
            points[r * cols + c] = np.array(
                [(c - (cols - 1) / 2.0) * square_size_m, (r - (rows - 1) / 2.0) * square_size_m, 0.0]
            )
    return points


def _smootherstep(x: np.ndarray) -> np.ndarray:
    x = np.clip(x, 0.0, 1.0)
    return x**3 * (10.0 - 15.0 * x + 6.0 * x**2)


def camera_motion(t_s: np.ndarray, config: SyntheticRigConfig) -> Tuple[np.ndarray, np.ndarray]:
    """
    Nominal camera pose T_w_c at relative times t_s (s from the first frame).

    Returns:
        Tuple (q_w_c (M, 4), p_w_c (M, 3)).
    """
    t_s = np.atleast_1d(np.asarray(t_s, dtype=np.float64))
    tau = t_s - config.static_s
    if config.ramp_s > 0:
        ramp = _smootherstep(tau / config.ramp_s)
    else:
        ramp = (tau >= 0).astype(np.float64)
    phase = 2.0 * np.pi * np.outer(tau, config.frequencies_hz)

    rotvec = ramp[:, None] * np.asarray(config.rotation_amplitude_rad) * np.sin(phase)
    offset = ramp[:, None] * np.asarray(config.translation_amplitude_m) * np.sin(phase + 1.0)
    p_w_c = np.array([0.0, 0.0, -config.distance_m]) + offset
    return quat_exp(rotvec), p_w_c


def _random_rotation(rng: np.random.Generator, angle_rad: float, size: int = 1) -> np.ndarray:
    axis = rng.normal(size=(size, 3))
    axis /= np.linalg.norm(axis, axis=1, keepdims=True)
    return quat_exp(axis * angle_rad)


def build_ground_truth(
    config: SyntheticRigConfig,
) -> Tuple[SplitTrajectory, CalibrationState, int, int]:
    """
    Ground-truth IMU trajectory and calibration state.

    Returns:
        Tuple (trajectory, truth, t0_ns, t_end_ns) with the camera-clock span
        [t0_ns, t_end_ns] covered by the recording.
    """
    t0 = int(round(config.start_time_s * 1e9))
    t_end = t0 + int(round(config.duration_s * 1e9))
    dt_ns = int(round(config.dt_knot_s * 1e9))

    q_i_c = euler_to_quat(*config.extrinsic_euler_rad)
    t_i_c = np.asarray(config.t_i_c, dtype=np.float64)
    truth = CalibrationState(
        q_i_c=q_i_c,
        t_i_c=t_i_c,
        intrinsics=config.intrinsics,
        gravity=np.asarray(config.gravity_w, dtype=np.float64),
        accel_bias=np.asarray(config.accel_bias, dtype=np.float64),
        gyro_bias=np.asarray(config.gyro_bias, dtype=np.float64),
        time_offset_s=config.time_offset_s,
    )

    trajectory = SplitTrajectory(dt_ns, dt_ns, t0, config.order)
    readout_ns = int(np.ceil(config.rolling_shutter_readout_s * 1e9))
    num_knots = trajectory.so3.grid.num_knots_for_span(t_end + readout_ns)
    trajectory.init(np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3), num_knots, num_knots)

    knot_t_s = (trajectory.so3.grid.knot_time_ns(np.arange(num_knots)) - t0) * 1e-9
    q_w_c, p_w_c = camera_motion(knot_t_s, config)
    q_w_i, p_w_i = imu_pose_from_camera(q_w_c, p_w_c, q_i_c, t_i_c)
    for k in range(1, num_knots):
        if np.dot(q_w_i[k - 1], q_w_i[k]) < 0:
            q_w_i[k] = -q_w_i[k]
    trajectory.so3.set_knots(q_w_i)
    trajectory.r3.set_knots(p_w_i)
    return trajectory, truth, t0, t_end


def render_corners(
    trajectory: SplitTrajectory,
    truth: CalibrationState,
    points: Dict[int, np.ndarray],
    frame_t_ns: int,
    readout_s: float = 0.0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Noise-free corner pixels of one frame.

    Under a rolling shutter the capture time depends on the image row,
    which is solved by fixed-point iteration until the integer capture
    times stop changing.

    Returns:
        Tuple (pixels (M, 2), track_ids (M,)) of corners in front of the
        camera and inside the image.
    """
    ids = np.array(sorted(points), dtype=np.int64)
    points_w = np.array([points[i] for i in ids])
    height = truth.intrinsics.height

    query = np.full(ids.shape[0], frame_t_ns, dtype=np.int64)
    for _ in range(MAX_SHUTTER_ITERATIONS if readout_s > 0 else 1):
        q_w_i, p_w_i = trajectory.pose(query)
        q_w_c, p_w_c = compose_poses(q_w_i, p_w_i, truth.q_i_c, truth.t_i_c)
        points_c = inverse_transform_points(q_w_c, p_w_c, points_w)
        pixels = project_points(points_c, truth.intrinsics)
        if readout_s <= 0:
            break
        rows = np.clip(pixels[:, 1], 0.0, height)
        updated = frame_t_ns + np.round(readout_s * 1e9 * rows / height).astype(np.int64)
        if np.array_equal(updated, query):
            break
        query = updated

    visible = (points_c[:, 2] > 0.05) & inside_image(pixels, truth.intrinsics, margin=2.0)
    return pixels[visible], ids[visible]


def generate_synthetic_dataset(
    config: Optional[SyntheticRigConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> SyntheticDataset:
    """
    Generate a complete synthetic calibration recording.

    Args:
        config: Rig configuration (defaults to SyntheticRigConfig()).
        rng: Random generator. If None, uses np.random.default_rng(0).

    Returns:
        SyntheticDataset with measurements, initial guesses and ground truth.
    """
    if config is None:
        config = SyntheticRigConfig()
    if rng is None:
        rng = np.random.default_rng(0)

    trajectory, truth, t0, t_end = build_ground_truth(config)
    points = chessboard_points(config.board_rows, config.board_cols, config.square_size_m)

    # Camera frames
    frame_dt_ns = int(round(1e9 / config.camera_rate_hz))
    corners: Dict[TimeCamId, CornerData] = {}
    poses: Dict[TimeCamId, Tuple[np.ndarray, np.ndarray]] = {}
    for t_ns in range(t0, t_end + 1, frame_dt_ns):
        pixels, ids = render_corners(trajectory, truth, points, t_ns, config.rolling_shutter_readout_s)
        if ids.shape[0] < config.min_corners:
            continue
        frame = TimeCamId(t_ns)
        noisy = pixels + rng.normal(scale=config.pixel_noise_std, size=pixels.shape)
        corners[frame] = CornerData(noisy, ids)

        q_w_i, p_w_i = trajectory.pose(np.array([t_ns], dtype=np.int64))
        q_w_c, p_w_c = compose_poses(q_w_i[0], p_w_i[0], truth.q_i_c, truth.t_i_c)
        q_noise = _random_rotation(rng, config.pose_noise_rad)[0]
        poses[frame] = (
            quat_multiply(q_w_c, q_noise),
            p_w_c + rng.normal(scale=config.pose_noise_m, size=3),
        )

    reconstruction = Reconstruction(config.intrinsics, points, corners, poses)

    # IMU samples, generated on the camera clock and stamped on the IMU clock
    imu_dt_ns = int(round(1e9 / config.imu_rate_hz))
    t_cam = np.arange(t0, t_end + 1, imu_dt_ns, dtype=np.int64)
    q_w_i = trajectory.orientation(t_cam)
    omega = trajectory.angular_velocity(t_cam)
    accel_w = trajectory.acceleration(t_cam)

    gyro = predict_gyro(omega, truth.gyro_bias)
    gyro = gyro + rng.normal(scale=config.gyro_noise_std, size=gyro.shape)
    accel = predict_specific_force(q_w_i, accel_w, truth.gravity, truth.accel_bias)
    accel = accel + rng.normal(scale=config.accel_noise_std, size=accel.shape)

    t_imu = t_cam - np.int64(round(config.time_offset_s * 1e9))
    telemetry = Telemetry(
        accelerometer=ImuSamples(t_imu, accel, meta={"sensor": "accelerometer"}),
        gyroscope=ImuSamples(t_imu, gyro, meta={"sensor": "gyroscope"}),
    )

    # Initial extrinsic guess: truth rotated by a fixed angle about a random axis
    q_err = _random_rotation(rng, np.deg2rad(config.extrinsic_init_error_deg))[0]
    q_i_c_init = quat_multiply(truth.q_i_c, q_err)

    return SyntheticDataset(
        reconstruction=reconstruction,
        telemetry=telemetry,
        bias=ImuBias(),
        q_imu_to_camera=quat_conjugate(q_i_c_init),
        time_offset_s=config.time_offset_s,
        trajectory=trajectory,
        truth=truth,
        config=config,
    )
