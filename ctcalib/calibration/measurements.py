"""
Residual blocks: observations bound to spline knots and calibration state.

Each observation touches only the N rotation knots and/or N translation
knots whose basis functions are non-zero at its time, plus a few state
variables. This module records those index windows and turns a batch of
observations into one vectorised FactorGroup.

Variable ids follow VariableLayout: rotation knots first, then translation
knots, then the calibration state.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from ctcalib.calibration.residuals import accel_residuals, corner_residuals, gyro_residuals
from ctcalib.estimators.factor_graph import FactorGroup
from ctcalib.spline.knots import KnotGrid
from ctcalib.spline.r3_spline import evaluate_r3
from ctcalib.spline.so3_spline import evaluate_so3
from ctcalib.spline.split_trajectory import SplitTrajectory
from ctcalib.vision.types import TimeCamId


@dataclass(frozen=True)
class VariableLayout:
    """Integer ids of every optimization variable."""

    num_so3: int
    num_r3: int

    def so3(self, index):
        return np.asarray(index, dtype=np.int64)

    def r3(self, index):
        return self.num_so3 + np.asarray(index, dtype=np.int64)

    @property
    def _state_base(self) -> int:
        return self.num_so3 + self.num_r3

    @property
    def q_i_c(self) -> int:
        return self._state_base

    @property
    def t_i_c(self) -> int:
        return self._state_base + 1

    @property
    def gravity(self) -> int:
        return self._state_base + 2

    @property
    def accel_bias(self) -> int:
        return self._state_base + 3

    @property
    def gyro_bias(self) -> int:
        return self._state_base + 4

    @property
    def intrinsics(self) -> int:
        return self._state_base + 5

    @property
    def time_offset(self) -> int:
        return self._state_base + 6


@dataclass(frozen=True)
class CornerBlock:
    """
    Corner observations of one frame.

    Attributes:
        frame: Frame identifier.
        query_t_ns: Trajectory query time of every corner (ns), shape (M,).
        points_w: Target points in the world frame, shape (M, 3).
        observed: Observed pixels, shape (M, 2).
    """

    frame: TimeCamId
    query_t_ns: np.ndarray
    points_w: np.ndarray
    observed: np.ndarray

    def __len__(self) -> int:
        return self.query_t_ns.shape[0]


@dataclass(frozen=True)
class ImuBlock:
    """
    Inertial samples added in one call.

    Attributes:
        timestamps_ns: Sample times on the IMU clock (ns), shape (M,).
        values: Measurements, shape (M, 3).
    """

    timestamps_ns: np.ndarray
    values: np.ndarray

    def __len__(self) -> int:
        return self.timestamps_ns.shape[0]


def concat_corner_blocks(blocks: Sequence[CornerBlock]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Stack corner blocks into (query_t_ns, points_w, observed)."""
    if not blocks:
        return np.zeros(0, dtype=np.int64), np.zeros((0, 3)), np.zeros((0, 2))
    return (
        np.concatenate([b.query_t_ns for b in blocks]),
        np.concatenate([b.points_w for b in blocks]),
        np.concatenate([b.observed for b in blocks]),
    )


def concat_imu_blocks(blocks: Sequence[ImuBlock]) -> Tuple[np.ndarray, np.ndarray]:
    """Stack IMU blocks into (timestamps_ns, values)."""
    if not blocks:
        return np.zeros(0, dtype=np.int64), np.zeros((0, 3))
    return (
        np.concatenate([b.timestamps_ns for b in blocks]),
        np.concatenate([b.values for b in blocks]),
    )


def bind_segments(
    grid: KnotGrid,
    num_knots: int,
    timestamps_ns: np.ndarray,
    time_offset_s: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Bind IMU samples to spline segments at the current time offset.

    Query times are clamped into the support, so samples pushed out by a
    drifting time offset evaluate the boundary segment polynomial.

    Returns:
        Tuple (segment, rel_ns): segment index (M,) and the raw sample time
        relative to the segment start (M,), as float ns.
    """
    t = np.asarray(timestamps_ns, dtype=np.int64)
    query = t + np.int64(round(time_offset_s * 1e9))
    query = np.clip(query, grid.start_t_ns, grid.end_t_ns(num_knots))
    segment, _ = grid.locate(query, num_knots)
    seg_start = grid.start_t_ns + segment * grid.dt_ns
    return segment, (t - seg_start).astype(np.float64)


def _stack_window(values: List[np.ndarray], first: int, order: int) -> np.ndarray:
    return np.stack(values[first : first + order], axis=1)


def build_corner_group(
    trajectory: SplitTrajectory,
    blocks: Sequence[CornerBlock],
    layout: VariableLayout,
    weight: float,
) -> FactorGroup:
    """
    Factor group of all corner reprojection residuals.

    Slots: N rotation knots, N translation knots, q_i_c, t_i_c, intrinsics.
    """
    query, points_w, observed = concat_corner_blocks(blocks)
    n = trajectory.order
    idx_so3, u_so3 = trajectory.so3.window_indices(query)
    idx_r3, u_r3 = trajectory.r3.window_indices(query)
    m = query.shape[0]

    ids = np.hstack(
        [
            layout.so3(idx_so3),
            layout.r3(idx_r3),
            np.full((m, 1), layout.q_i_c),
            np.full((m, 1), layout.t_i_c),
            np.full((m, 1), layout.intrinsics),
        ]
    )
    so3_matrix, so3_dt = trajectory.so3.matrix, trajectory.so3.grid.dt_s
    r3_matrix, r3_dt = trajectory.r3.matrix, trajectory.r3.grid.dt_s

    def residual(values: List[np.ndarray]) -> np.ndarray:
        q_w_i = evaluate_so3(_stack_window(values, 0, n), u_so3, so3_matrix, so3_dt, derivatives=False)[0]
        p_w_i = evaluate_r3(_stack_window(values, n, n), u_r3, r3_matrix, r3_dt)
        return corner_residuals(
            q_w_i, p_w_i, values[2 * n], values[2 * n + 1], values[2 * n + 2], points_w, observed
        )

    return FactorGroup("corners", ids, residual, residual_dim=2, information=weight)


def build_gyro_group(
    trajectory: SplitTrajectory,
    blocks: Sequence[ImuBlock],
    layout: VariableLayout,
    weight: float,
    time_offset_s: float,
) -> FactorGroup:
    """
    Factor group of all gyroscope residuals.

    Slots: N rotation knots, gyro bias, time offset.
    """
    timestamps, measured = concat_imu_blocks(blocks)
    n = trajectory.order
    grid = trajectory.so3.grid
    segment, rel_ns = bind_segments(grid, trajectory.so3.num_knots, timestamps, time_offset_s)
    m = timestamps.shape[0]

    ids = np.hstack(
        [
            layout.so3(grid.window(segment)),
            np.full((m, 1), layout.gyro_bias),
            np.full((m, 1), layout.time_offset),
        ]
    )
    matrix, dt_s, dt_ns = trajectory.so3.matrix, grid.dt_s, float(grid.dt_ns)

    def residual(values: List[np.ndarray]) -> np.ndarray:
        u = (rel_ns + values[n + 1][:, 0] * 1e9) / dt_ns
        omega = evaluate_so3(_stack_window(values, 0, n), u, matrix, dt_s)[1]
        return gyro_residuals(omega, values[n], measured)

    return FactorGroup("gyro", ids, residual, residual_dim=3, information=weight)


def build_accel_group(
    trajectory: SplitTrajectory,
    blocks: Sequence[ImuBlock],
    layout: VariableLayout,
    weight: float,
    time_offset_s: float,
) -> FactorGroup:
    """
    Factor group of all accelerometer residuals.

    Slots: N rotation knots, N translation knots, gravity, accel bias,
    time offset.
    """
    timestamps, measured = concat_imu_blocks(blocks)
    n = trajectory.order
    so3_grid, r3_grid = trajectory.so3.grid, trajectory.r3.grid
    seg_so3, rel_so3 = bind_segments(so3_grid, trajectory.so3.num_knots, timestamps, time_offset_s)
    seg_r3, rel_r3 = bind_segments(r3_grid, trajectory.r3.num_knots, timestamps, time_offset_s)
    m = timestamps.shape[0]

    ids = np.hstack(
        [
            layout.so3(so3_grid.window(seg_so3)),
            layout.r3(r3_grid.window(seg_r3)),
            np.full((m, 1), layout.gravity),
            np.full((m, 1), layout.accel_bias),
            np.full((m, 1), layout.time_offset),
        ]
    )
    so3_matrix, r3_matrix = trajectory.so3.matrix, trajectory.r3.matrix

    def residual(values: List[np.ndarray]) -> np.ndarray:
        shift_ns = values[2 * n + 2][:, 0] * 1e9
        u_so3 = (rel_so3 + shift_ns) / so3_grid.dt_ns
        u_r3 = (rel_r3 + shift_ns) / r3_grid.dt_ns
        q_w_i = evaluate_so3(
            _stack_window(values, 0, n), u_so3, so3_matrix, so3_grid.dt_s, derivatives=False
        )[0]
        accel_w = evaluate_r3(_stack_window(values, n, n), u_r3, r3_matrix, r3_grid.dt_s, derivative=2)
        return accel_residuals(q_w_i, accel_w, values[2 * n], values[2 * n + 1], measured)

    return FactorGroup("accel", ids, residual, residual_dim=3, information=weight)


def segments_changed(
    trajectory: SplitTrajectory,
    blocks: Sequence[ImuBlock],
    old_offset_s: float,
    new_offset_s: float,
) -> bool:
    """True if any IMU sample falls into a different segment after an offset update."""
    timestamps, _ = concat_imu_blocks(blocks)
    if timestamps.size == 0:
        return False
    for spline in (trajectory.so3, trajectory.r3):
        old, _ = bind_segments(spline.grid, spline.num_knots, timestamps, old_offset_s)
        new, _ = bind_segments(spline.grid, spline.num_knots, timestamps, new_offset_s)
        if np.any(old != new):
            return True
    return False
