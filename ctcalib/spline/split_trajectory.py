"""Rigid-body trajectory from independent rotation and translation splines.

The trajectory T_w_i(t) = (q_w_i(t), p_w_i(t)) is represented by an SO(3)
cumulative spline and an R³ spline with independent knot spacings. The
class owns nothing but the two splines; every call is dispatched to both
with the same time argument.
"""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from ctcalib.spline.knots import OutOfSupportError
from ctcalib.spline.r3_spline import R3Spline
from ctcalib.spline.so3_spline import SO3Spline


class SplitTrajectory:
    """
    Continuous-time pose of the IMU body frame in the world (target) frame.

    Args:
        dt_r3_ns: Knot spacing of the translation spline (ns).
        dt_so3_ns: Knot spacing of the rotation spline (ns).
        start_t_ns: Common start time of both splines (ns).
        order: Spline order shared by both splines (default 5).

    Example:
        >>> traj = SplitTrajectory(dt_r3_ns=50_000_000, dt_so3_ns=50_000_000)
        >>> traj.init(np.array([1.0, 0, 0, 0]), np.zeros(3), 10, 10)
        >>> traj.extend_to(2_000_000_000)
        >>> q, p = traj.pose(1_000_000_000)
    """

    def __init__(
        self,
        dt_r3_ns: int,
        dt_so3_ns: int,
        start_t_ns: int = 0,
        order: int = 5,
    ):
        self.so3 = SO3Spline(dt_so3_ns, start_t_ns, order)
        self.r3 = R3Spline(dt_r3_ns, start_t_ns, order)

    @property
    def order(self) -> int:
        return self.so3.grid.order

    def init(
        self,
        q_w_i: NDArray[np.float64],
        p_w_i: NDArray[np.float64],
        num_knots_so3: int,
        num_knots_r3: int,
    ) -> None:
        """Seed both splines with a constant pose."""
        self.so3.init(q_w_i, num_knots_so3)
        self.r3.init(p_w_i, num_knots_r3)

    def extend_to(self, t_ns: int) -> None:
        """Grow both splines until t_ns lies inside the common support."""
        self.so3.extend_to(t_ns)
        self.r3.extend_to(t_ns)

    @property
    def min_time_ns(self) -> int:
        return max(self.so3.min_time_ns, self.r3.min_time_ns)

    @property
    def max_time_ns(self) -> int:
        return min(self.so3.max_time_ns, self.r3.max_time_ns)

    def support(self) -> Tuple[int, int]:
        """Closed interval [min_time_ns, max_time_ns] where both splines are defined."""
        return self.min_time_ns, self.max_time_ns

    def contains(self, t_ns) -> NDArray[np.bool_]:
        t = np.asarray(t_ns)
        return (t >= self.min_time_ns) & (t <= self.max_time_ns)

    def check_support(self, t_ns) -> None:
        """Raise OutOfSupportError unless every query time is inside support."""
        inside = self.contains(t_ns)
        if not np.all(inside):
            bad = np.atleast_1d(np.asarray(t_ns))[~np.atleast_1d(inside)][0]
            raise OutOfSupportError(
                f"Time {bad} ns outside trajectory support "
                f"[{self.min_time_ns}, {self.max_time_ns}] ns"
            )

    def pose(self, t_ns) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Pose T_w_i(t) as (quaternion, position)."""
        self.check_support(t_ns)
        return self.so3.evaluate(t_ns), self.r3.position(t_ns)

    def orientation(self, t_ns) -> NDArray[np.float64]:
        self.check_support(t_ns)
        return self.so3.evaluate(t_ns)

    def position(self, t_ns) -> NDArray[np.float64]:
        self.check_support(t_ns)
        return self.r3.position(t_ns)

    def angular_velocity(self, t_ns) -> NDArray[np.float64]:
        """Body-frame angular velocity (rad/s)."""
        self.check_support(t_ns)
        return self.so3.angular_velocity(t_ns)

    def angular_acceleration(self, t_ns) -> NDArray[np.float64]:
        """Body-frame angular acceleration (rad/s²)."""
        self.check_support(t_ns)
        return self.so3.angular_acceleration(t_ns)

    def velocity(self, t_ns) -> NDArray[np.float64]:
        """World-frame linear velocity (m/s)."""
        self.check_support(t_ns)
        return self.r3.velocity(t_ns)

    def acceleration(self, t_ns) -> NDArray[np.float64]:
        """World-frame linear acceleration (m/s²)."""
        self.check_support(t_ns)
        return self.r3.acceleration(t_ns)

    def copy(self) -> "SplitTrajectory":
        """Deep copy of both splines."""
        other = SplitTrajectory(
            self.r3.grid.dt_ns, self.so3.grid.dt_ns, self.so3.grid.start_t_ns, self.order
        )
        other.so3.knots = self.so3.knots.copy()
        other.r3.knots = self.r3.knots.copy()
        return other
