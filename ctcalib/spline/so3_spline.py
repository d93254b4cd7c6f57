"""Cumulative B-spline on SO(3).

The orientation at normalized time u of a segment with control points
q_0 ... q_{N-1} is

    q(u) = q_0 ⊗ Π_{j=1}^{N-1} Exp(λ_j(u) d_j),    d_j = Log(q_{j-1}⁻¹ ⊗ q_j)

where λ_j are the cumulative blending weights. Differentiating the product
term by term gives the body-frame angular velocity and acceleration,
propagated through the chain as

    ω ← R_j^T ω + λ̇_j d_j
    α ← R_j^T α + λ̈_j d_j + (R_j^T ω) × (λ̇_j d_j)

with R_j = Exp(λ_j d_j). See Sommer et al., "Efficient Derivative
Computation for Cumulative B-Splines on Lie Groups" (CVPR 2020).
"""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from ctcalib.coords.rotations import (
    quat_conjugate,
    quat_exp,
    quat_log,
    quat_multiply,
    quat_normalize,
    quat_rotate,
)
from ctcalib.spline.knots import KnotGrid, blending_matrix, blending_weights


def evaluate_so3(
    window: NDArray[np.float64],
    u: NDArray[np.float64],
    matrix: NDArray[np.float64],
    dt_s: float,
    derivatives: bool = True,
) -> Tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """Evaluate a batch of cumulative SO(3) spline segments.

    Args:
        window: Control quaternions per query, shape (M, N, 4).
        u: Normalized times, shape (M,). Values outside [0, 1] extrapolate
            the segment polynomial.
        matrix: Cumulative blending matrix, shape (N, N).
        dt_s: Knot spacing in seconds.
        derivatives: If False, only orientations are computed and omega,
            alpha are returned as zeros.

    Returns:
        Tuple (q, omega, alpha):
            q: Orientations (body to world), shape (M, 4)
            omega: Body-frame angular velocities (rad/s), shape (M, 3)
            alpha: Body-frame angular accelerations (rad/s²), shape (M, 3)
    """
    window = np.asarray(window, dtype=np.float64)
    n = window.shape[1]
    coeff = blending_weights(u, matrix, dt_s, 0)
    dcoeff = blending_weights(u, matrix, dt_s, 1)
    ddcoeff = blending_weights(u, matrix, dt_s, 2)

    q = window[:, 0].copy()
    omega = np.zeros((window.shape[0], 3), dtype=np.float64)
    alpha = np.zeros_like(omega)

    for j in range(1, n):
        delta = quat_log(quat_multiply(quat_conjugate(window[:, j - 1]), window[:, j]))
        rot = quat_exp(coeff[:, j, None] * delta)
        q = quat_multiply(q, rot)
        if not derivatives:
            continue

        rot_inv = quat_conjugate(rot)
        omega_rotated = quat_rotate(rot_inv, omega)
        rate = dcoeff[:, j, None] * delta
        alpha = (
            quat_rotate(rot_inv, alpha)
            + ddcoeff[:, j, None] * delta
            + np.cross(omega_rotated, rate)
        )
        omega = omega_rotated + rate

    return q, omega, alpha


class SO3Spline:
    """
    Uniform cumulative quaternion B-spline.

    Control points are unit quaternions q_w_i (body to world), stored in an
    array of shape (K, 4) owned by the spline. Extending the spline appends
    copies of the last control point, so the new segments continue the
    current orientation until the optimizer moves them.

    Attributes:
        grid: Knot grid (start time, spacing, order).
        knots: Control quaternions, shape (K, 4).

    Example:
        >>> spline = SO3Spline(dt_ns=100_000_000)
        >>> spline.init(np.array([1.0, 0.0, 0.0, 0.0]), num_knots=10)
        >>> q = spline.evaluate(250_000_000)
    """

    def __init__(self, dt_ns: int, start_t_ns: int = 0, order: int = 5):
        self.grid = KnotGrid(int(start_t_ns), int(dt_ns), int(order))
        self.matrix = blending_matrix(self.grid.order, cumulative=True)
        self.knots = np.zeros((0, 4), dtype=np.float64)

    @property
    def num_knots(self) -> int:
        return self.knots.shape[0]

    @property
    def min_time_ns(self) -> int:
        return self.grid.start_t_ns

    @property
    def max_time_ns(self) -> int:
        return self.grid.end_t_ns(self.num_knots)

    def init(self, q: NDArray[np.float64], num_knots: int) -> None:
        """Reset the spline to num_knots copies of q."""
        if num_knots < self.grid.order:
            raise ValueError(
                f"num_knots must be at least the order {self.grid.order}, got {num_knots}"
            )
        q = quat_normalize(np.asarray(q, dtype=np.float64).reshape(4))
        self.knots = np.tile(q, (int(num_knots), 1))

    def set_knots(self, knots: NDArray[np.float64]) -> None:
        """Replace all control points (normalized on assignment)."""
        knots = np.asarray(knots, dtype=np.float64)
        if knots.ndim != 2 or knots.shape[1] != 4:
            raise ValueError(f"Expected knots of shape (K, 4), got {knots.shape}")
        self.knots = quat_normalize(knots)

    def extend_to(self, t_ns: int) -> int:
        """Append copies of the last knot until t_ns lies inside the support.

        Returns:
            Number of knots appended.
        """
        if self.num_knots == 0:
            raise ValueError("Spline must be initialized before it can be extended")
        added = 0
        while self.max_time_ns < t_ns:
            self.knots = np.vstack([self.knots, self.knots[-1:]])
            added += 1
        return added

    def locate(self, t_ns) -> Tuple[NDArray[np.int64], NDArray[np.float64]]:
        return self.grid.locate(t_ns, self.num_knots)

    def window_indices(self, t_ns) -> Tuple[NDArray[np.int64], NDArray[np.float64]]:
        """Control-point indices (M, N) and normalized times (M,) for t_ns."""
        segment, u = self.locate(t_ns)
        return self.grid.window(segment), u

    def _evaluate_all(self, t_ns):
        scalar = np.ndim(t_ns) == 0
        indices, u = self.window_indices(t_ns)
        q, omega, alpha = evaluate_so3(self.knots[indices], u, self.matrix, self.grid.dt_s)
        if scalar:
            return q[0], omega[0], alpha[0]
        return q, omega, alpha

    def evaluate(self, t_ns) -> NDArray[np.float64]:
        """Orientation q_w_i at t_ns, shape (4,) or (M, 4)."""
        return self._evaluate_all(t_ns)[0]

    def angular_velocity(self, t_ns) -> NDArray[np.float64]:
        """Body-frame angular velocity (rad/s) at t_ns."""
        return self._evaluate_all(t_ns)[1]

    def angular_acceleration(self, t_ns) -> NDArray[np.float64]:
        """Body-frame angular acceleration (rad/s²) at t_ns."""
        return self._evaluate_all(t_ns)[2]
