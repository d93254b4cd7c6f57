"""
Unit tests for the sparse factor graph and its Levenberg-Marquardt solver.

Test cases include:
- Range positioning with a single vectorised factor group
- Rotation estimation on the quaternion manifold
- Information weighting across groups
- Constant variables, diagnostics and input validation
"""

import unittest

import numpy as np

from ctcalib.coords import quat_angle_between, quat_exp, quat_identity, quat_rotate
from ctcalib.estimators import (
    QUATERNION,
    FactorGraph,
    FactorGroup,
    SolverSummary,
    Variable,
    manifold_plus,
)


def create_range_graph(anchors, true_pos, initial_guess):
    """Graph with one 2D position observed through ranges to known anchors."""
    ranges = np.linalg.norm(anchors - true_pos, axis=1)

    def residual_func(values):
        return (np.linalg.norm(values[0] - anchors, axis=1) - ranges)[:, None]

    graph = FactorGraph()
    graph.add_variable(0, initial_guess)
    graph.add_factor_group(
        FactorGroup("range", np.zeros((len(anchors), 1), dtype=int), residual_func, residual_dim=1)
    )
    return graph


def create_rotation_graph(q_true):
    """Graph estimating a rotation from vector pairs (v_world = R v_body)."""
    v_body = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 1.0, -1.0]])
    v_world = quat_rotate(q_true, v_body)

    graph = FactorGraph()
    graph.add_variable(0, quat_identity(), QUATERNION)
    graph.add_factor_group(
        FactorGroup(
            "vectors",
            np.zeros((4, 1), dtype=int),
            lambda values: quat_rotate(values[0], v_body) - v_world,
            residual_dim=3,
        )
    )
    return graph


class TestLevenbergMarquardt(unittest.TestCase):
    """Convergence of the sparse LM solver."""

    def test_range_positioning(self) -> None:
        anchors = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        graph = create_range_graph(anchors, np.array([3.0, 4.0]), np.array([8.0, 1.0]))
        summary = graph.optimize()
        self.assertTrue(summary.converged)
        np.testing.assert_allclose(graph.value(0), [3.0, 4.0], atol=1e-5)
        self.assertLess(summary.final_cost, 1e-10)

    def test_quaternion_variable(self) -> None:
        q_true = quat_exp(np.array([0.3, -0.2, 0.5]))
        graph = create_rotation_graph(q_true)
        graph.optimize()
        q = graph.value(0)
        self.assertAlmostEqual(float(np.linalg.norm(q)), 1.0, places=12)
        self.assertLess(float(quat_angle_between(q, q_true)), 1e-6)

    def test_information_weighting(self) -> None:
        """Two priors on one scalar give the information-weighted mean."""
        graph = FactorGraph()
        graph.add_variable(0, np.zeros(1))
        ids = np.zeros((1, 1), dtype=int)
        graph.add_factor_group(FactorGroup("a", ids, lambda v: v[0] - 1.0, 1, information=1.0))
        graph.add_factor_group(FactorGroup("b", ids, lambda v: v[0] - 4.0, 1, information=3.0))
        graph.optimize()
        np.testing.assert_allclose(graph.value(0), [3.25], atol=1e-6)

    def test_constant_variable_is_not_updated(self) -> None:
        graph = FactorGraph()
        graph.add_variable(0, np.zeros(2))
        graph.add_variable(1, np.array([2.0, -1.0]), constant=True)
        graph.add_factor_group(FactorGroup("diff", [[0, 1]], lambda v: v[0] - v[1], 2))
        self.assertEqual(graph.free_variable_ids(), [0])
        graph.optimize()
        np.testing.assert_allclose(graph.value(0), [2.0, -1.0], atol=1e-6)
        np.testing.assert_array_equal(graph.value(1), [2.0, -1.0])

    def test_no_free_parameters(self) -> None:
        graph = FactorGraph()
        graph.add_variable(0, np.ones(1), constant=True)
        graph.add_factor_group(FactorGroup("prior", [[0]], lambda v: v[0], 1))
        summary = graph.optimize()
        self.assertEqual(summary.termination_reason, "no_parameters")
        self.assertEqual(summary.iterations, 0)
        self.assertAlmostEqual(summary.final_cost, 0.5)

    def test_already_optimal_stops_on_gradient(self) -> None:
        graph = FactorGraph()
        graph.add_variable(0, np.array([1.0]))
        graph.add_factor_group(FactorGroup("prior", [[0]], lambda v: v[0] - 1.0, 1))
        summary = graph.optimize()
        self.assertEqual(summary.termination_reason, "gradient_tolerance")


class TestSolverDiagnostics(unittest.TestCase):
    """Cost history, callbacks and the summary record."""

    def setUp(self) -> None:
        self.graph = create_rotation_graph(quat_exp(np.array([0.6, 0.1, -0.4])))

    def test_cost_history_is_monotonic(self) -> None:
        summary = self.graph.optimize()
        history = np.array(summary.cost_history)
        self.assertEqual(history[0], summary.initial_cost)
        self.assertTrue(np.all(np.diff(history) <= 0.0))
        self.assertEqual(summary.final_cost, history[-1])
        self.assertEqual(summary.num_parameters, 3)
        self.assertEqual(summary.num_residuals, 12)

    def test_callback_receives_iterations(self) -> None:
        calls = []
        self.graph.optimize(callback=lambda it, cost, mu: calls.append((it, cost, mu)))
        self.assertGreaterEqual(len(calls), 1)
        self.assertEqual(calls[0][0], 0)
        self.assertTrue(all(mu > 0 for _, _, mu in calls))

    def test_max_iterations(self) -> None:
        summary = self.graph.optimize(max_iterations=1)
        self.assertEqual(summary.iterations, 1)

    def test_summary_report_and_dict(self) -> None:
        summary = SolverSummary(
            iterations=3, initial_cost=10.0, final_cost=0.5, converged=True,
            termination_reason="function_tolerance", num_parameters=4, num_residuals=9,
        )
        self.assertIn("function_tolerance", summary.report())
        self.assertEqual(summary.to_dict()["final_cost"], 0.5)
        self.assertNotIn("cost_history", summary.to_dict())

    def test_residuals_are_whitened(self) -> None:
        graph = FactorGraph()
        graph.add_variable(0, np.zeros(2))
        graph.add_factor_group(
            FactorGroup("w", [[0]], lambda v: v[0] - 1.0, 2, information=np.diag([4.0, 9.0]))
        )
        np.testing.assert_allclose(graph.residuals()["w"], [[-2.0, -3.0]])
        self.assertAlmostEqual(graph.compute_error(), 6.5)


class TestValidation(unittest.TestCase):
    """Rejected graph inputs."""

    def test_variable_errors(self) -> None:
        with self.assertRaises(ValueError):
            Variable(np.zeros(3), manifold="sphere")
        with self.assertRaises(ValueError):
            Variable(np.zeros(3), manifold=QUATERNION)
        graph = FactorGraph()
        graph.add_variable(0, np.zeros(1))
        with self.assertRaises(ValueError):
            graph.add_variable(0, np.zeros(1))
        with self.assertRaises(ValueError):
            graph.add_variable(-1, np.zeros(1))

    def test_group_errors(self) -> None:
        graph = FactorGraph()
        graph.add_variable(0, np.zeros(1))
        graph.add_variable(1, np.zeros(2))
        with self.assertRaises(ValueError):
            graph.add_factor_group(FactorGroup("missing", [[5]], lambda v: v[0], 1))
        with self.assertRaises(ValueError):
            graph.add_factor_group(FactorGroup("mixed", [[0], [1]], lambda v: v[0][:, :1], 1))
        with self.assertRaises(ValueError):
            FactorGroup("info", [[0]], lambda v: v[0], 1, information=np.eye(2))

    def test_manifold_plus(self) -> None:
        q = manifold_plus(np.tile(quat_identity(), (2, 1)), np.array([[0.0, 0.0, 0.5], [0.0, 0.0, 0.0]]), QUATERNION)
        np.testing.assert_allclose(np.linalg.norm(q, axis=1), 1.0)
        np.testing.assert_allclose(q[1], quat_identity())
        np.testing.assert_allclose(manifold_plus(np.ones((1, 2)), np.ones((1, 2)), "euclidean"), [[2.0, 2.0]])


if __name__ == "__main__":
    unittest.main()
