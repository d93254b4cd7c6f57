"""
Joint continuous-time calibration problem.

CalibrationProblem owns a SplitTrajectory, the CalibrationState and every
residual block. optimize() wires them into a sparse factor graph whose free
variables are the knots touched by at least one residual plus the state,
runs Levenberg-Marquardt and writes the solution back.

Usage:
    >>> problem = CalibrationProblem(config, intrinsics, start_t_ns=t0)
    >>> problem.set_t_i_c(q_i_c, t_i_c)
    >>> problem.set_gravity(g_init)
    >>> problem.init(q_w_i, p_w_i, num_knots_so3, num_knots_r3)
    >>> problem.add_corners_measurement(frame, corners, points_w)
    >>> problem.add_gyro_measurements(t_ns, gyro)
    >>> problem.add_accel_measurements(t_ns, accel)
    >>> summary = problem.optimize()
    >>> problem.mean_reprojection()
"""

import warnings
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ctcalib.calibration.measurements import (
    CornerBlock,
    ImuBlock,
    VariableLayout,
    build_accel_group,
    build_corner_group,
    build_gyro_group,
    concat_corner_blocks,
    concat_imu_blocks,
    segments_changed,
)
from ctcalib.calibration.residuals import rolling_shutter_times_ns
from ctcalib.calibration.types import CalibrationConfig, CalibrationState
from ctcalib.coords.rotations import quat_identity
from ctcalib.coords.transforms import compose_poses, inverse_transform_points
from ctcalib.estimators.factor_graph import EUCLIDEAN, QUATERNION, FactorGraph, SolverSummary
from ctcalib.spline.knots import OutOfSupportError
from ctcalib.spline.split_trajectory import SplitTrajectory
from ctcalib.vision.camera import in_front_of_camera
from ctcalib.vision.types import CameraIntrinsics, CornerData, TimeCamId

__all__ = ["CalibrationProblem", "OutOfSupportError"]


class CalibrationProblem:
    """
    Camera-IMU calibration over a split B-spline trajectory.

    Args:
        config: Calibration configuration (knot spacing, weights, solver).
        intrinsics: Initial camera intrinsics.
        start_t_ns: Start of the spline support (ns), usually the first
            usable frame.

    Attributes:
        trajectory: IMU trajectory T_w_i(t).
        state: Calibration state refined in place by optimize().
    """

    def __init__(self, config: CalibrationConfig, intrinsics: CameraIntrinsics, start_t_ns: int = 0):
        self.config = config
        self.trajectory = SplitTrajectory(
            config.dt_r3_ns, config.dt_so3_ns, int(start_t_ns), config.order
        )
        self.state = CalibrationState(
            q_i_c=quat_identity(), t_i_c=np.zeros(3), intrinsics=intrinsics
        )
        self._corners: List[CornerBlock] = []
        self._gyro: List[ImuBlock] = []
        self._accel: List[ImuBlock] = []

    # ------------------------------------------------------------------
    # State setup
    # ------------------------------------------------------------------

    def set_t_i_c(self, q_i_c: np.ndarray, t_i_c: np.ndarray) -> None:
        """Set the camera-to-IMU transform T_i_c."""
        self.state.q_i_c = np.asarray(q_i_c, dtype=np.float64).reshape(4) / np.linalg.norm(q_i_c)
        self.state.t_i_c = np.asarray(t_i_c, dtype=np.float64).reshape(3)

    def set_gravity(self, gravity: np.ndarray) -> None:
        self.state.gravity = np.asarray(gravity, dtype=np.float64).reshape(3)

    def set_biases(self, accel_bias: np.ndarray, gyro_bias: np.ndarray) -> None:
        self.state.accel_bias = np.asarray(accel_bias, dtype=np.float64).reshape(3)
        self.state.gyro_bias = np.asarray(gyro_bias, dtype=np.float64).reshape(3)

    def set_time_offset(self, time_offset_s: float) -> None:
        self.state.time_offset_s = float(time_offset_s)

    def init(self, q_w_i: np.ndarray, p_w_i: np.ndarray, num_knots_so3: int, num_knots_r3: int) -> None:
        """Seed every knot of both splines with the pose T_w_i."""
        self.trajectory.init(q_w_i, p_w_i, num_knots_so3, num_knots_r3)

    def extend_to(self, t_ns: int) -> None:
        self.trajectory.extend_to(t_ns)

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    def add_corners_measurement(
        self,
        frame: TimeCamId,
        corners: CornerData,
        points_w: np.ndarray,
    ) -> int:
        """
        Add the corners of one frame.

        With a rolling-shutter readout configured, each corner is evaluated
        at the capture time of its image row.

        Args:
            frame: Frame identifier; frame.frame_id is the timestamp in ns.
            corners: Observed corners of the frame.
            points_w: Target point of every corner, shape (M, 3).

        Returns:
            Number of corners added.

        Raises:
            OutOfSupportError: If a corner time lies outside the trajectory support.
            ValueError: If points and corners do not match.
        """
        points_w = np.asarray(points_w, dtype=np.float64).reshape(-1, 3)
        if points_w.shape[0] != len(corners):
            raise ValueError(
                f"Got {points_w.shape[0]} target points for {len(corners)} corners"
            )
        if len(corners) == 0:
            warnings.warn(f"Frame {frame.frame_id} has no corners; skipped")
            return 0

        query = rolling_shutter_times_ns(
            frame.frame_id,
            corners.corners[:, 1],
            self.config.rolling_shutter_readout_s,
            self.state.intrinsics.height,
        )
        self.trajectory.check_support(query)
        self._corners.append(CornerBlock(frame, query, points_w, corners.corners.copy()))
        return len(corners)

    def _imu_block(self, timestamps_ns, values) -> ImuBlock:
        t = np.atleast_1d(np.asarray(timestamps_ns, dtype=np.int64))
        v = np.asarray(values, dtype=np.float64).reshape(-1, 3)
        if t.shape[0] != v.shape[0]:
            raise ValueError(f"Got {t.shape[0]} timestamps for {v.shape[0]} samples")
        self.trajectory.check_support(t + np.int64(round(self.state.time_offset_s * 1e9)))
        return ImuBlock(t, v)

    def add_gyro_measurements(self, timestamps_ns, values) -> int:
        """
        Add gyroscope samples (IMU clock).

        Raises:
            OutOfSupportError: If a sample time shifted by the time offset lies
                outside the trajectory support.
        """
        block = self._imu_block(timestamps_ns, values)
        if len(block):
            self._gyro.append(block)
        return len(block)

    def add_accel_measurements(self, timestamps_ns, values) -> int:
        """Add accelerometer samples (IMU clock); see add_gyro_measurements."""
        block = self._imu_block(timestamps_ns, values)
        if len(block):
            self._accel.append(block)
        return len(block)

    def add_gyro_measurement(self, t_ns: int, value: np.ndarray) -> None:
        self.add_gyro_measurements([t_ns], np.reshape(value, (1, 3)))

    def add_accel_measurement(self, t_ns: int, value: np.ndarray) -> None:
        self.add_accel_measurements([t_ns], np.reshape(value, (1, 3)))

    @property
    def num_corners(self) -> int:
        return sum(len(b) for b in self._corners)

    @property
    def num_frames(self) -> int:
        return len({b.frame for b in self._corners})

    @property
    def num_gyro(self) -> int:
        return sum(len(b) for b in self._gyro)

    @property
    def num_accel(self) -> int:
        return sum(len(b) for b in self._accel)

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def _build_graph(self) -> Tuple[FactorGraph, VariableLayout]:
        cfg = self.config
        so3, r3 = self.trajectory.so3, self.trajectory.r3
        layout = VariableLayout(so3.num_knots, r3.num_knots)
        graph = FactorGraph(jacobian_step=cfg.jacobian_step)

        for j in range(so3.num_knots):
            graph.add_variable(int(layout.so3(j)), so3.knots[j], QUATERNION)
        for j in range(r3.num_knots):
            graph.add_variable(int(layout.r3(j)), r3.knots[j], EUCLIDEAN)

        state = self.state
        graph.add_variable(layout.q_i_c, state.q_i_c, QUATERNION)
        graph.add_variable(layout.t_i_c, state.t_i_c, constant=cfg.fix_extrinsic_translation)
        graph.add_variable(layout.gravity, state.gravity)
        graph.add_variable(layout.accel_bias, state.accel_bias)
        graph.add_variable(layout.gyro_bias, state.gyro_bias)
        graph.add_variable(
            layout.intrinsics, state.intrinsics.to_array(), constant=not cfg.estimate_intrinsics
        )
        graph.add_variable(
            layout.time_offset, np.array([state.time_offset_s]), constant=not cfg.estimate_time_offset
        )

        if self._corners:
            graph.add_factor_group(
                build_corner_group(self.trajectory, self._corners, layout, cfg.corner_weight)
            )
        if self._gyro:
            graph.add_factor_group(
                build_gyro_group(
                    self.trajectory, self._gyro, layout, cfg.gyro_weight, state.time_offset_s
                )
            )
        if self._accel:
            graph.add_factor_group(
                build_accel_group(
                    self.trajectory, self._accel, layout, cfg.accel_weight, state.time_offset_s
                )
            )
        return graph, layout

    def _write_back(self, graph: FactorGraph, layout: VariableLayout) -> None:
        so3, r3 = self.trajectory.so3, self.trajectory.r3
        so3.set_knots(np.array([graph.value(int(layout.so3(j))) for j in range(so3.num_knots)]))
        r3.set_knots(np.array([graph.value(int(layout.r3(j))) for j in range(r3.num_knots)]))

        state = self.state
        state.q_i_c = graph.value(layout.q_i_c).copy()
        state.t_i_c = graph.value(layout.t_i_c).copy()
        state.gravity = graph.value(layout.gravity).copy()
        state.accel_bias = graph.value(layout.accel_bias).copy()
        state.gyro_bias = graph.value(layout.gyro_bias).copy()
        state.intrinsics = CameraIntrinsics.from_array(
            graph.value(layout.intrinsics), state.intrinsics.width, state.intrinsics.height
        )
        state.time_offset_s = float(graph.value(layout.time_offset)[0])

    def optimize(
        self, callback: Optional[Callable[[int, float, float], None]] = None
    ) -> SolverSummary:
        """
        Jointly optimize trajectory knots and calibration state.

        With time-offset estimation enabled, IMU samples are re-bound to
        their knot windows and the problem is solved again whenever the
        estimated offset moves a sample into another segment (at most
        config.time_offset_passes solves).

        Args:
            callback: Optional per-iteration callback(iteration, cost, mu).

        Returns:
            Summary of the last solve. Non-convergence is reported in the
            summary rather than raised.

        Raises:
            ValueError: If no measurements were added.
        """
        if not (self._corners or self._gyro or self._accel):
            raise ValueError("No measurements added to the calibration problem")

        cfg = self.config
        initial_offset = self.state.time_offset_s
        summary = None
        for _ in range(cfg.time_offset_passes):
            bound_offset = self.state.time_offset_s
            graph, layout = self._build_graph()
            pass_summary = graph.optimize(
                max_iterations=cfg.max_iterations,
                function_tolerance=cfg.function_tolerance,
                parameter_tolerance=cfg.parameter_tolerance,
                gradient_tolerance=cfg.gradient_tolerance,
                callback=callback,
            )
            self._write_back(graph, layout)
            if summary is None:
                summary = pass_summary
            else:
                pass_summary.initial_cost = summary.initial_cost
                pass_summary.iterations += summary.iterations
                pass_summary.cost_history = summary.cost_history + pass_summary.cost_history[1:]
                summary = pass_summary

            if not cfg.estimate_time_offset:
                break
            imu_blocks = self._gyro + self._accel
            if not segments_changed(self.trajectory, imu_blocks, bound_offset, self.state.time_offset_s):
                break

        if cfg.estimate_time_offset and abs(self.state.time_offset_s - initial_offset) > cfg.max_time_offset_s:
            warnings.warn(
                f"Time offset moved by {self.state.time_offset_s - initial_offset:.4f} s, "
                f"more than max_time_offset_s={cfg.max_time_offset_s}"
            )
        return summary

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def residuals(self) -> Dict[str, np.ndarray]:
        """
        Unweighted residuals at the current estimate.

        Returns:
            Dictionary with 'corners' (M, 2) px, 'gyro' (N, 3) rad/s,
            'accel' (K, 3) m/s², and the matching query times
            'corners_t_ns', 'gyro_t_ns', 'accel_t_ns'.
        """
        graph, _ = self._build_graph()
        whitened = graph.residuals()
        cfg = self.config
        weights = {"corners": cfg.corner_weight, "gyro": cfg.gyro_weight, "accel": cfg.accel_weight}
        dims = {"corners": 2, "gyro": 3, "accel": 3}

        out: Dict[str, np.ndarray] = {}
        for name in weights:
            r = whitened.get(name)
            out[name] = np.zeros((0, dims[name])) if r is None else r / np.sqrt(weights[name])

        offset_ns = np.int64(round(self.state.time_offset_s * 1e9))
        out["corners_t_ns"] = concat_corner_blocks(self._corners)[0]
        out["gyro_t_ns"] = concat_imu_blocks(self._gyro)[0] + offset_ns
        out["accel_t_ns"] = concat_imu_blocks(self._accel)[0] + offset_ns
        return out

    def points_behind_camera(self) -> np.ndarray:
        """Mask of corners whose target point lies behind the camera at the current estimate."""
        query_t_ns, points_w, _ = concat_corner_blocks(self._corners)
        if query_t_ns.size == 0:
            return np.zeros(0, dtype=bool)
        q_w_i, p_w_i = self.trajectory.pose(query_t_ns)
        q_w_c, p_w_c = compose_poses(q_w_i, p_w_i, self.state.q_i_c, self.state.t_i_c)
        return ~in_front_of_camera(inverse_transform_points(q_w_c, p_w_c, points_w))

    def reprojection_errors(self) -> np.ndarray:
        """
        Per-corner reprojection error (px).

        Corners behind the camera are projected at a clamped depth and
        reported with a warning.
        """
        behind = self.points_behind_camera()
        if np.any(behind):
            warnings.warn(
                f"{int(np.sum(behind))} of {behind.size} corners lie behind the camera; "
                "their reprojection errors are unreliable"
            )
        return np.linalg.norm(self.residuals()["corners"], axis=1)

    def mean_reprojection(self) -> float:
        """Mean corner reprojection error (px) at the current estimate; NaN without corners."""
        errors = self.reprojection_errors()
        if errors.size == 0:
            return float("nan")
        return float(np.mean(errors))

    def cost(self) -> float:
        """Current total cost ½ Σ rᵀΛr."""
        graph, _ = self._build_graph()
        return graph.compute_error()
