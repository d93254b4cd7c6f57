"""Uniform knot grids and B-spline blending matrices.

A uniform B-spline of order N (degree N-1) evaluated at time t uses the N
consecutive control points k_s ... k_{s+N-1}, where s is the index of the
segment containing t and u ∈ [0, 1] the normalized offset inside it:

    s = floor((t - t_start) / Δt),    u = (t - t_start - s Δt) / Δt

Time is kept in integer nanoseconds so that long sequences do not lose
resolution. With K control points the spline has K - N + 1 segments and its
support is the closed interval [t_start, t_start + (K - N + 1) Δt]; the upper
end evaluates the last segment at u = 1.

The matrix form of the basis follows Qin, "General matrix representations
for B-splines" (2000), including its cumulative variant used for rotations.
"""

from dataclasses import dataclass
from math import comb, factorial
from typing import Tuple

import numpy as np
from numpy.typing import NDArray


class OutOfSupportError(ValueError):
    """Raised when a query time lies outside a spline's support."""


def blending_matrix(order: int, cumulative: bool = False) -> NDArray[np.float64]:
    """Blending matrix M of a uniform B-spline of the given order.

    The weights of the N control points at normalized time u are
    M @ [1, u, u², ..., u^{N-1}].

    Args:
        order: Spline order N (number of control points per segment).
        cumulative: If True, return the cumulative matrix whose row j is the
            sum of rows j..N-1 of the standard matrix.

    Returns:
        Blending matrix of shape (N, N).

    Example:
        >>> M = blending_matrix(4)
        >>> M @ np.array([1.0, 0.0, 0.0, 0.0])  # [1/6, 2/3, 1/6, 0]
    """
    n = order
    m = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        for j in range(n):
            total = 0
            for s in range(j, n):
                total += (-1) ** (s - j) * comb(n, s - j) * (n - s - 1) ** (n - 1 - i)
            m[j, i] = comb(n - 1, n - 1 - i) * total
    m /= factorial(n - 1)

    if cumulative:
        for j in range(n):
            m[j, :] = m[j:, :].sum(axis=0)
    return m


def basis_powers(u: NDArray[np.float64], order: int, derivative: int = 0) -> NDArray[np.float64]:
    """Rows of d^k/du^k [1, u, ..., u^{N-1}] for a batch of u.

    Args:
        u: Normalized times, shape (M,).
        order: Spline order N.
        derivative: Derivative order k (0, 1 or 2).

    Returns:
        Array of shape (M, N).
    """
    u = np.atleast_1d(np.asarray(u, dtype=np.float64))
    out = np.zeros((u.shape[0], order), dtype=np.float64)
    for i in range(derivative, order):
        coeff = factorial(i) / factorial(i - derivative)
        out[:, i] = coeff * u ** (i - derivative)
    return out


def blending_weights(
    u: NDArray[np.float64],
    matrix: NDArray[np.float64],
    dt_s: float,
    derivative: int = 0,
) -> NDArray[np.float64]:
    """Control-point weights (or their time derivatives) at normalized times u.

    Args:
        u: Normalized times, shape (M,).
        matrix: Blending matrix from blending_matrix(), shape (N, N).
        dt_s: Knot spacing in seconds, used to scale derivatives to 1/s^k.
        derivative: Derivative order (0, 1 or 2).

    Returns:
        Weights of shape (M, N).
    """
    powers = basis_powers(u, matrix.shape[0], derivative)
    weights = powers @ matrix.T
    if derivative:
        weights = weights / dt_s**derivative
    return weights


@dataclass(frozen=True)
class KnotGrid:
    """
    Uniform time grid anchoring a B-spline.

    Attributes:
        start_t_ns: Time of the start of the first segment (ns).
        dt_ns: Knot spacing (ns), strictly positive.
        order: Spline order N; every query reads N consecutive knots.
    """

    start_t_ns: int
    dt_ns: int
    order: int = 5

    def __post_init__(self) -> None:
        """Validate grid parameters."""
        if self.dt_ns <= 0:
            raise ValueError(f"dt_ns must be positive, got {self.dt_ns}")
        if self.order < 2:
            raise ValueError(f"order must be at least 2, got {self.order}")

    @property
    def dt_s(self) -> float:
        return self.dt_ns * 1e-9

    def num_segments(self, num_knots: int) -> int:
        return num_knots - self.order + 1

    def end_t_ns(self, num_knots: int) -> int:
        """Upper end of the support for a spline with num_knots control points."""
        return self.start_t_ns + self.num_segments(num_knots) * self.dt_ns

    def num_knots_for_span(self, end_t_ns: int) -> int:
        """Knot count used to cover [start_t_ns, end_t_ns] with one spare segment."""
        if end_t_ns < self.start_t_ns:
            raise ValueError("end_t_ns must not precede start_t_ns")
        return int((end_t_ns - self.start_t_ns) // self.dt_ns) + self.order

    def knot_time_ns(self, index) -> NDArray[np.float64]:
        """Time at which control point `index` has its largest weight."""
        index = np.asarray(index, dtype=np.float64)
        return self.start_t_ns + (index - (self.order - 2) / 2.0) * self.dt_ns

    def locate(
        self, t_ns, num_knots: int
    ) -> Tuple[NDArray[np.int64], NDArray[np.float64]]:
        """Find segment index and normalized offset for query times.

        Args:
            t_ns: Query time(s) in ns, integer or float, scalar or (M,).
            num_knots: Number of control points of the spline.

        Returns:
            Tuple (segment, u) of arrays with shape (M,).

        Raises:
            OutOfSupportError: If any query time lies outside the support.
        """
        t = np.atleast_1d(np.asarray(t_ns))
        n_seg = self.num_segments(num_knots)
        if n_seg < 1:
            raise OutOfSupportError(
                f"Spline with {num_knots} knots has no support (order {self.order})"
            )

        if np.issubdtype(t.dtype, np.integer):
            offset = t.astype(np.int64) - np.int64(self.start_t_ns)
            segment = offset // self.dt_ns
            u = (offset - segment * self.dt_ns) / float(self.dt_ns)
        else:
            offset = t.astype(np.float64) - float(self.start_t_ns)
            segment = np.floor(offset / self.dt_ns).astype(np.int64)
            u = (offset - segment * float(self.dt_ns)) / float(self.dt_ns)

        outside = (offset < 0) | (offset > n_seg * self.dt_ns)
        if np.any(outside):
            bad = t[outside][0]
            raise OutOfSupportError(
                f"Time {bad} ns outside support [{self.start_t_ns}, "
                f"{self.end_t_ns(num_knots)}] ns"
            )

        at_end = segment >= n_seg
        segment = np.where(at_end, n_seg - 1, segment).astype(np.int64)
        u = np.where(at_end, 1.0, u)
        return segment, u.astype(np.float64)

    def fraction(self, t_ns, segment) -> NDArray[np.float64]:
        """Normalized offset of t_ns relative to a fixed segment.

        Unlike locate(), the result may fall outside [0, 1]; the segment
        polynomial is then extrapolated.
        """
        t = np.asarray(t_ns, dtype=np.float64)
        seg_start = self.start_t_ns + np.asarray(segment, dtype=np.int64) * self.dt_ns
        return (t - seg_start.astype(np.float64)) / float(self.dt_ns)

    def window(self, segment) -> NDArray[np.int64]:
        """Indices of the `order` control points read by each segment, shape (M, N)."""
        segment = np.atleast_1d(np.asarray(segment, dtype=np.int64))
        return segment[:, None] + np.arange(self.order, dtype=np.int64)[None, :]
