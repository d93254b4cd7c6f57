"""Unit tests for calibration metrics and figures."""

import tempfile
import unittest
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from ctcalib.calibration import CalibrationState  # noqa: E402
from ctcalib.coords import quat_exp  # noqa: E402
from ctcalib.estimators import SolverSummary  # noqa: E402
from ctcalib.eval import (  # noqa: E402
    compare_calibration,
    compute_error_stats,
    compute_rmse,
    plot_corner_residuals,
    plot_cost_history,
    plot_imu_residuals,
    residual_stats,
    rotation_error_deg,
    save_figure,
)
from ctcalib.vision import CameraIntrinsics  # noqa: E402


class TestErrorStatistics(unittest.TestCase):
    def test_rmse(self) -> None:
        errors = np.array([[3.0, 4.0], [0.0, 0.0]])
        self.assertAlmostEqual(compute_rmse(errors), np.sqrt(25.0 / 4.0))
        np.testing.assert_allclose(compute_rmse(errors, axis=1), [np.sqrt(12.5), 0.0])
        np.testing.assert_allclose(compute_rmse(errors, axis=0), [np.sqrt(4.5), np.sqrt(8.0)])

    def test_error_stats(self) -> None:
        stats = compute_error_stats(np.array([[3.0, 4.0], [0.0, 1.0]]))
        self.assertEqual(stats["count"], 2)
        self.assertAlmostEqual(stats["mean"], 3.0)
        self.assertAlmostEqual(stats["max"], 5.0)
        self.assertAlmostEqual(stats["rmse"], np.sqrt(13.0))

    def test_empty_errors(self) -> None:
        stats = compute_error_stats(np.zeros((0, 3)))
        self.assertEqual(stats["count"], 0)
        self.assertTrue(np.isnan(stats["mean"]))
        self.assertTrue(np.isnan(stats["p95"]))

    def test_residual_stats(self) -> None:
        residuals = {
            "corners": np.array([[0.3, 0.4]]),
            "gyro": np.zeros((0, 3)),
            "corners_t_ns": np.array([0]),
        }
        stats = residual_stats(residuals)
        self.assertEqual(set(stats), {"corners", "gyro"})
        self.assertAlmostEqual(stats["corners"]["mean"], 0.5)
        self.assertEqual(stats["gyro"]["count"], 0)


class TestCalibrationComparison(unittest.TestCase):
    """Errors of an estimated state against ground truth."""

    def setUp(self) -> None:
        intrinsics = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
        self.truth = CalibrationState(
            q_i_c=quat_exp(np.array([0.1, -0.2, 1.2])),
            t_i_c=[0.02, -0.01, 0.005],
            intrinsics=intrinsics,
            gravity=[0.0, 9.80665, 0.0],
            accel_bias=[0.05, -0.03, 0.02],
            time_offset_s=0.008,
        )

    def test_rotation_error_deg(self) -> None:
        q = quat_exp(np.array([0.0, 0.0, np.deg2rad(3.0)]))
        self.assertAlmostEqual(rotation_error_deg(q, np.array([1.0, 0.0, 0.0, 0.0])), 3.0, places=9)
        batch = rotation_error_deg(np.tile(q, (2, 1)), np.tile(q, (2, 1)))
        np.testing.assert_allclose(batch, [0.0, 0.0], atol=1e-9)

    def test_identical_states(self) -> None:
        errors = compare_calibration(self.truth.copy(), self.truth)
        self.assertEqual(
            set(errors),
            {"rotation_deg", "translation_m", "gravity_direction_deg", "gravity_norm_rel",
             "accel_bias", "gyro_bias", "time_offset_s"},
        )
        for name, value in errors.items():
            with self.subTest(name=name):
                self.assertAlmostEqual(value, 0.0, places=6)

    def test_perturbed_state(self) -> None:
        estimated = self.truth.copy()
        estimated.t_i_c = estimated.t_i_c + np.array([0.003, 0.0, 0.004])
        estimated.gravity = np.array([0.0, 9.80665 * 1.01, 0.0])
        estimated.time_offset_s = 0.006
        errors = compare_calibration(estimated, self.truth)
        self.assertAlmostEqual(errors["translation_m"], 0.005)
        self.assertAlmostEqual(errors["gravity_norm_rel"], 0.01)
        self.assertAlmostEqual(errors["gravity_direction_deg"], 0.0, places=5)
        self.assertAlmostEqual(errors["time_offset_s"], 0.002)


class TestPlots(unittest.TestCase):
    """Figures are created and saved without a display."""

    def tearDown(self) -> None:
        plt.close("all")

    def test_corner_residuals(self) -> None:
        rng = np.random.default_rng(0)
        fig = plot_corner_residuals(rng.normal(size=(200, 2)))
        self.assertIsInstance(fig, plt.Figure)
        self.assertEqual(len(fig.axes), 2)

    def test_imu_residuals(self) -> None:
        t_ns = np.arange(50, dtype=np.int64) * 5_000_000
        residuals = {
            "gyro": np.zeros((50, 3)),
            "gyro_t_ns": t_ns,
            "accel": np.ones((50, 3)),
            "accel_t_ns": t_ns,
        }
        fig = plot_imu_residuals(residuals)
        self.assertEqual(len(fig.axes), 2)

    def test_imu_residuals_without_accel(self) -> None:
        fig = plot_imu_residuals({"gyro": np.zeros((3, 3)), "gyro_t_ns": np.array([0, 1, 2])})
        self.assertIsInstance(fig, plt.Figure)

    def test_cost_history_and_save(self) -> None:
        summary = SolverSummary(
            iterations=3, initial_cost=100.0, final_cost=0.0, converged=True,
            termination_reason="function_tolerance", cost_history=[100.0, 1.0, 0.0],
        )
        fig = plot_cost_history(summary)
        self.assertIn("function_tolerance", fig.axes[0].get_title())
        with tempfile.TemporaryDirectory() as tmp:
            paths = save_figure(fig, Path(tmp) / "figs", "cost", formats=("png", "pdf"))
            self.assertEqual([p.name for p in paths], ["cost.png", "cost.pdf"])
            for path in paths:
                self.assertTrue(path.exists())


if __name__ == "__main__":
    unittest.main()
