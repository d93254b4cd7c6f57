"""Unit tests for the SO(3), R³ and split trajectory splines.

Test cases include:
- Straight-continuation seeding: freshly seeded knots reproduce the seed
- Exact reproduction of constant-rate motion
- Analytic derivatives against finite differences
- Extension and support handling
"""

import unittest

import numpy as np

from ctcalib.coords import quat_conjugate, quat_exp, quat_identity, quat_log, quat_multiply
from ctcalib.spline import OutOfSupportError, R3Spline, SO3Spline, SplitTrajectory

DT_NS = 100_000_000
START_NS = 2_000_000_000


def random_walk_knots(rng, num_knots, step=0.1):
    rotvecs = np.cumsum(rng.normal(0.0, step, size=(num_knots, 3)), axis=0)
    return quat_exp(rotvecs)


class TestSeedingLaw(unittest.TestCase):
    """New and appended knots continue the current pose."""

    def test_fresh_so3_spline_returns_seed(self) -> None:
        q0 = quat_exp(np.array([0.4, -0.3, 1.2]))
        spline = SO3Spline(DT_NS, START_NS, order=5)
        spline.init(q0, 8)
        t = np.linspace(spline.min_time_ns, spline.max_time_ns, 37).astype(np.int64)
        np.testing.assert_allclose(spline.evaluate(t), np.tile(q0, (37, 1)), atol=1e-12)
        np.testing.assert_allclose(spline.angular_velocity(t), 0.0, atol=1e-12)

    def test_fresh_r3_spline_returns_seed(self) -> None:
        p0 = np.array([0.5, -1.0, 2.0])
        spline = R3Spline(DT_NS, START_NS, order=5)
        spline.init(p0, 6)
        t = np.linspace(spline.min_time_ns, spline.max_time_ns, 11).astype(np.int64)
        np.testing.assert_allclose(spline.position(t), np.tile(p0, (11, 1)), atol=1e-12)
        np.testing.assert_allclose(spline.velocity(t), 0.0, atol=1e-12)

    def test_extension_copies_last_knot(self) -> None:
        rng = np.random.default_rng(3)
        spline = SO3Spline(DT_NS, START_NS, order=4)
        spline.set_knots(random_walk_knots(rng, 6))
        last = spline.knots[-1].copy()
        added = spline.extend_to(spline.max_time_ns + 3 * DT_NS + 1)
        self.assertEqual(added, 4)
        np.testing.assert_allclose(spline.knots[-5:], np.tile(last, (5, 1)))

    def test_extend_requires_init(self) -> None:
        with self.assertRaises(ValueError):
            R3Spline(DT_NS).extend_to(10)

    def test_extend_is_noop_inside_support(self) -> None:
        spline = R3Spline(DT_NS, START_NS)
        spline.init(np.zeros(3), 7)
        self.assertEqual(spline.extend_to(START_NS + DT_NS), 0)
        self.assertEqual(spline.num_knots, 7)

    def test_init_rejects_too_few_knots(self) -> None:
        with self.assertRaises(ValueError):
            SO3Spline(DT_NS, order=5).init(quat_identity(), 4)


class TestConstantRateMotion(unittest.TestCase):
    """Knots sampled from linear motion are reproduced exactly."""

    def test_so3_constant_angular_velocity(self) -> None:
        omega = np.array([0.3, -0.5, 1.1])
        spline = SO3Spline(DT_NS, START_NS, order=5)
        knot_t_s = (spline.grid.knot_time_ns(np.arange(10)) - START_NS) * 1e-9
        spline.set_knots(quat_exp(knot_t_s[:, None] * omega))

        t = np.linspace(spline.min_time_ns, spline.max_time_ns, 23).astype(np.int64)
        expected = quat_exp(((t - START_NS) * 1e-9)[:, None] * omega)
        q = spline.evaluate(t)
        np.testing.assert_allclose(np.abs(np.sum(q * expected, axis=1)), 1.0, atol=1e-12)
        np.testing.assert_allclose(spline.angular_velocity(t), np.tile(omega, (23, 1)), atol=1e-10)
        np.testing.assert_allclose(spline.angular_acceleration(t), 0.0, atol=1e-8)

    def test_r3_constant_velocity(self) -> None:
        velocity = np.array([1.0, -2.0, 0.5])
        spline = R3Spline(DT_NS, START_NS, order=4)
        knot_t_s = (spline.grid.knot_time_ns(np.arange(9)) - START_NS) * 1e-9
        spline.set_knots(knot_t_s[:, None] * velocity)

        t = np.array([START_NS, START_NS + 123_456_789, spline.max_time_ns])
        np.testing.assert_allclose(
            spline.position(t), ((t - START_NS) * 1e-9)[:, None] * velocity, atol=1e-12
        )
        np.testing.assert_allclose(spline.velocity(t), np.tile(velocity, (3, 1)), atol=1e-10)
        np.testing.assert_allclose(spline.acceleration(t), 0.0, atol=1e-8)


class TestDerivatives(unittest.TestCase):
    """Closed-form derivatives match central differences."""

    def setUp(self) -> None:
        rng = np.random.default_rng(7)
        self.so3 = SO3Spline(DT_NS, START_NS, order=5)
        self.so3.set_knots(random_walk_knots(rng, 12))
        self.r3 = R3Spline(DT_NS, START_NS, order=5)
        self.r3.set_knots(np.cumsum(rng.normal(0.0, 0.05, size=(12, 3)), axis=0))
        self.t = START_NS + np.array([150_000_000, 333_333_333, 512_000_000, 690_000_001])
        self.h = 100_000

    def test_angular_velocity(self) -> None:
        q_minus = self.so3.evaluate(self.t - self.h)
        q_plus = self.so3.evaluate(self.t + self.h)
        numeric = quat_log(quat_multiply(quat_conjugate(q_minus), q_plus)) / (2 * self.h * 1e-9)
        analytic = self.so3.angular_velocity(self.t)
        np.testing.assert_allclose(analytic, numeric, rtol=1e-4, atol=1e-6)

    def test_angular_acceleration(self) -> None:
        numeric = (
            self.so3.angular_velocity(self.t + self.h) - self.so3.angular_velocity(self.t - self.h)
        ) / (2 * self.h * 1e-9)
        np.testing.assert_allclose(self.so3.angular_acceleration(self.t), numeric, rtol=1e-4, atol=1e-4)

    def test_linear_velocity_and_acceleration(self) -> None:
        h_s = 2 * self.h * 1e-9
        v_numeric = (self.r3.position(self.t + self.h) - self.r3.position(self.t - self.h)) / h_s
        np.testing.assert_allclose(self.r3.velocity(self.t), v_numeric, rtol=1e-4, atol=1e-7)
        a_numeric = (self.r3.velocity(self.t + self.h) - self.r3.velocity(self.t - self.h)) / h_s
        np.testing.assert_allclose(self.r3.acceleration(self.t), a_numeric, rtol=1e-4, atol=1e-5)

    def test_continuity_across_knot_boundary(self) -> None:
        boundary = START_NS + 3 * DT_NS
        before = self.so3.evaluate(boundary - 1)
        after = self.so3.evaluate(boundary + 1)
        self.assertGreater(abs(float(np.dot(before, after))), 1.0 - 1e-12)
        np.testing.assert_allclose(
            self.so3.angular_velocity(boundary - 1), self.so3.angular_velocity(boundary + 1), atol=1e-6
        )


class TestSplitTrajectory(unittest.TestCase):
    """Joint support and dispatch of the split trajectory."""

    def setUp(self) -> None:
        self.traj = SplitTrajectory(dt_r3_ns=50_000_000, dt_so3_ns=DT_NS, start_t_ns=START_NS)
        self.traj.init(quat_identity(), np.zeros(3), 6, 6)

    def test_support_is_intersection(self) -> None:
        t_min, t_max = self.traj.support()
        self.assertEqual(t_min, START_NS)
        self.assertEqual(t_max, min(self.traj.so3.max_time_ns, self.traj.r3.max_time_ns))
        self.assertEqual(t_max, START_NS + 2 * 50_000_000)

    def test_extend_covers_both_splines(self) -> None:
        target = START_NS + 1_234_000_000
        self.traj.extend_to(target)
        self.assertGreaterEqual(self.traj.so3.max_time_ns, target)
        self.assertGreaterEqual(self.traj.r3.max_time_ns, target)
        q, p = self.traj.pose(target)
        np.testing.assert_allclose(q, quat_identity(), atol=1e-15)
        np.testing.assert_allclose(p, np.zeros(3), atol=1e-15)

    def test_query_outside_support_raises(self) -> None:
        with self.assertRaises(OutOfSupportError):
            self.traj.pose(START_NS - 1)
        with self.assertRaises(OutOfSupportError):
            self.traj.velocity(np.array([START_NS, self.traj.max_time_ns + 1]))
        self.assertFalse(bool(self.traj.contains(self.traj.max_time_ns + 1)))

    def test_copy_is_independent(self) -> None:
        other = self.traj.copy()
        other.r3.knots[:] = 1.0
        np.testing.assert_allclose(self.traj.r3.knots, 0.0)
        self.assertEqual(other.support(), self.traj.support())


if __name__ == "__main__":
    unittest.main()
