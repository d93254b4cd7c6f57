"""Uniform B-spline in R³ for the translation part of a trajectory."""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from ctcalib.spline.knots import KnotGrid, blending_matrix, blending_weights


def evaluate_r3(
    window: NDArray[np.float64],
    u: NDArray[np.float64],
    matrix: NDArray[np.float64],
    dt_s: float,
    derivative: int = 0,
) -> NDArray[np.float64]:
    """Evaluate a batch of R³ spline segments.

    p^(k)(u) = Σ_j λ_j^(k)(u) p_j, computed independently per axis.

    Args:
        window: Control points per query, shape (M, N, 3).
        u: Normalized times, shape (M,).
        matrix: Standard blending matrix, shape (N, N).
        dt_s: Knot spacing in seconds.
        derivative: 0 for position, 1 for velocity, 2 for acceleration.

    Returns:
        Array of shape (M, 3).
    """
    weights = blending_weights(u, matrix, dt_s, derivative)
    return np.einsum("mn,mnd->md", weights, np.asarray(window, dtype=np.float64))


class R3Spline:
    """
    Uniform B-spline over 3D positions.

    Shares the grid conventions and extension policy of SO3Spline: new knots
    copy the last control point.
    """

    def __init__(self, dt_ns: int, start_t_ns: int = 0, order: int = 5):
        self.grid = KnotGrid(int(start_t_ns), int(dt_ns), int(order))
        self.matrix = blending_matrix(self.grid.order)
        self.knots = np.zeros((0, 3), dtype=np.float64)

    @property
    def num_knots(self) -> int:
        return self.knots.shape[0]

    @property
    def min_time_ns(self) -> int:
        return self.grid.start_t_ns

    @property
    def max_time_ns(self) -> int:
        return self.grid.end_t_ns(self.num_knots)

    def init(self, p: NDArray[np.float64], num_knots: int) -> None:
        """Reset the spline to num_knots copies of p."""
        if num_knots < self.grid.order:
            raise ValueError(
                f"num_knots must be at least the order {self.grid.order}, got {num_knots}"
            )
        p = np.asarray(p, dtype=np.float64).reshape(3)
        self.knots = np.tile(p, (int(num_knots), 1))

    def set_knots(self, knots: NDArray[np.float64]) -> None:
        knots = np.asarray(knots, dtype=np.float64)
        if knots.ndim != 2 or knots.shape[1] != 3:
            raise ValueError(f"Expected knots of shape (K, 3), got {knots.shape}")
        self.knots = knots.copy()

    def extend_to(self, t_ns: int) -> int:
        """Append copies of the last knot until t_ns lies inside the support."""
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
        segment, u = self.locate(t_ns)
        return self.grid.window(segment), u

    def _evaluate(self, t_ns, derivative: int) -> NDArray[np.float64]:
        indices, u = self.window_indices(t_ns)
        out = evaluate_r3(self.knots[indices], u, self.matrix, self.grid.dt_s, derivative)
        return out[0] if np.ndim(t_ns) == 0 else out

    def position(self, t_ns) -> NDArray[np.float64]:
        return self._evaluate(t_ns, 0)

    def velocity(self, t_ns) -> NDArray[np.float64]:
        return self._evaluate(t_ns, 1)

    def acceleration(self, t_ns) -> NDArray[np.float64]:
        return self._evaluate(t_ns, 2)
