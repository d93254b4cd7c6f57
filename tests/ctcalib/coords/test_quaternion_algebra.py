"""Unit tests for quaternion algebra and rigid transforms.

Test cases include:
- Identity, product and conjugate properties
- Exponential / logarithm maps, including the small-angle branch
- Rotation of vectors against rotation matrices
- Slerp end points and midpoints
- Pose composition and inversion
"""

import unittest

import numpy as np

from ctcalib.coords import (
    compose_poses,
    euler_to_quat,
    inverse_transform_points,
    invert_pose,
    quat_angle_between,
    quat_conjugate,
    quat_exp,
    quat_identity,
    quat_log,
    quat_multiply,
    quat_normalize,
    quat_rotate,
    quat_slerp,
    quat_to_rotation_matrix,
    rotation_matrix_to_quat,
    transform_points,
)


class TestQuaternionBasics(unittest.TestCase):
    """Products, conjugates and normalization."""

    def test_identity_shape(self) -> None:
        q = quat_identity((2, 3))
        self.assertEqual(q.shape, (2, 3, 4))
        np.testing.assert_allclose(q[..., 0], 1.0)
        np.testing.assert_allclose(q[..., 1:], 0.0)

    def test_product_with_conjugate_is_identity(self) -> None:
        q = quat_exp(np.array([0.3, -0.2, 0.9]))
        np.testing.assert_allclose(quat_multiply(q, quat_conjugate(q)), quat_identity(), atol=1e-12)

    def test_product_composes_rotations(self) -> None:
        """R(p ⊗ q) = R(p) R(q)."""
        p = quat_exp(np.array([0.1, 0.5, -0.3]))
        q = quat_exp(np.array([-0.7, 0.2, 0.4]))
        np.testing.assert_allclose(
            quat_to_rotation_matrix(quat_multiply(p, q)),
            quat_to_rotation_matrix(p) @ quat_to_rotation_matrix(q),
            atol=1e-12,
        )

    def test_normalize_rejects_zero(self) -> None:
        with self.assertRaises(ValueError):
            quat_normalize(np.zeros(4))

    def test_normalize_batch(self) -> None:
        q = quat_normalize(np.array([[2.0, 0.0, 0.0, 0.0], [1.0, 1.0, 1.0, 1.0]]))
        np.testing.assert_allclose(np.linalg.norm(q, axis=1), 1.0)


class TestExpLog(unittest.TestCase):
    """Exponential and logarithm maps."""

    def test_log_inverts_exp(self) -> None:
        rng = np.random.default_rng(1)
        rotvec = rng.uniform(-1.5, 1.5, size=(50, 3))
        np.testing.assert_allclose(quat_log(quat_exp(rotvec)), rotvec, atol=1e-10)

    def test_small_angle_branch(self) -> None:
        rotvec = np.array([1e-10, -2e-10, 5e-11])
        q = quat_exp(rotvec)
        self.assertAlmostEqual(np.linalg.norm(q), 1.0, places=12)
        np.testing.assert_allclose(quat_log(q), rotvec, atol=1e-18)

    def test_log_returns_shortest_rotation(self) -> None:
        q = quat_exp(np.array([0.0, 0.0, 0.5]))
        np.testing.assert_allclose(quat_log(-q), [0.0, 0.0, 0.5], atol=1e-12)

    def test_angle_between(self) -> None:
        q0 = quat_exp(np.array([0.0, 0.2, 0.0]))
        q1 = quat_exp(np.array([0.0, 0.5, 0.0]))
        self.assertAlmostEqual(float(quat_angle_between(q0, q1)), 0.3, places=12)


class TestRotationConversions(unittest.TestCase):
    """Vector rotation and matrix conversions."""

    def test_rotate_matches_matrix(self) -> None:
        q = quat_exp(np.array([0.4, -1.1, 0.2]))
        v = np.array([[1.0, 2.0, 3.0], [-0.5, 0.1, 0.0]])
        R = quat_to_rotation_matrix(q)
        np.testing.assert_allclose(quat_rotate(q, v), v @ R.T, atol=1e-12)

    def test_matrix_round_trip_positive_scalar(self) -> None:
        q = quat_exp(np.array([2.5, 0.3, -0.4]))
        q_back = rotation_matrix_to_quat(quat_to_rotation_matrix(q))
        self.assertGreaterEqual(q_back[0], 0.0)
        self.assertLess(float(quat_angle_between(q, q_back)), 1e-10)

    def test_euler_yaw(self) -> None:
        """90° yaw maps the x axis to the y axis."""
        q = euler_to_quat(0.0, 0.0, np.pi / 2.0)
        np.testing.assert_allclose(quat_rotate(q, [1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-12)


class TestSlerp(unittest.TestCase):
    def test_end_points_and_midpoint(self) -> None:
        q0 = quat_exp(np.array([0.0, 0.0, 0.2]))
        q1 = quat_exp(np.array([0.0, 0.0, 1.0]))
        q = quat_slerp(np.stack([q0, q0, q0]), np.stack([q1, q1, q1]), np.array([0.0, 0.5, 1.0]))
        np.testing.assert_allclose(quat_log(q), [[0, 0, 0.2], [0, 0, 0.6], [0, 0, 1.0]], atol=1e-12)


class TestTransforms(unittest.TestCase):
    """Pose composition, inversion and point mapping."""

    def setUp(self) -> None:
        self.q_a_b = quat_exp(np.array([0.3, 0.1, -0.6]))
        self.p_a_b = np.array([1.0, -2.0, 0.5])

    def test_inverse_composes_to_identity(self) -> None:
        q_b_a, p_b_a = invert_pose(self.q_a_b, self.p_a_b)
        q, p = compose_poses(self.q_a_b, self.p_a_b, q_b_a, p_b_a)
        np.testing.assert_allclose(q, quat_identity(), atol=1e-12)
        np.testing.assert_allclose(p, np.zeros(3), atol=1e-12)

    def test_inverse_transform_points(self) -> None:
        points_b = np.array([[0.1, 0.2, 0.3], [1.0, 0.0, -1.0]])
        points_a = transform_points(self.q_a_b, self.p_a_b, points_b)
        np.testing.assert_allclose(
            inverse_transform_points(self.q_a_b, self.p_a_b, points_a), points_b, atol=1e-12
        )

    def test_composition_maps_points(self) -> None:
        q_b_c = quat_exp(np.array([-0.2, 0.4, 0.1]))
        p_b_c = np.array([0.0, 0.3, 0.1])
        q_a_c, p_a_c = compose_poses(self.q_a_b, self.p_a_b, q_b_c, p_b_c)
        point_c = np.array([0.5, -0.5, 2.0])
        expected = transform_points(self.q_a_b, self.p_a_b, transform_points(q_b_c, p_b_c, point_c))
        np.testing.assert_allclose(transform_points(q_a_c, p_a_c, point_c), expected, atol=1e-12)


if __name__ == "__main__":
    unittest.main()
