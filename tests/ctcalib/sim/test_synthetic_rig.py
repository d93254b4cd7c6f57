"""Unit tests for the synthetic camera-IMU rig."""

import unittest

import numpy as np

from ctcalib.calibration import rolling_shutter_times_ns
from ctcalib.coords import compose_poses, inverse_transform_points, quat_angle_between, quat_conjugate, quat_rotate
from ctcalib.sim import (
    SyntheticRigConfig,
    build_ground_truth,
    camera_motion,
    chessboard_points,
    generate_synthetic_dataset,
    render_corners,
)
from ctcalib.vision import project_points

MS = 1_000_000


def quiet_config(**overrides) -> SyntheticRigConfig:
    """One-second noise-free recording at 10 Hz camera and 100 Hz IMU rate."""
    values = dict(
        duration_s=1.0,
        camera_rate_hz=10.0,
        imu_rate_hz=100.0,
        pixel_noise_std=0.0,
        accel_noise_std=0.0,
        gyro_noise_std=0.0,
        pose_noise_rad=0.0,
        pose_noise_m=0.0,
    )
    values.update(overrides)
    return SyntheticRigConfig(**values)


class TestRigConfiguration(unittest.TestCase):
    def test_chessboard_points(self) -> None:
        points = chessboard_points(6, 8, 0.04)
        self.assertEqual(len(points), 48)
        xyz = np.array([points[i] for i in sorted(points)])
        np.testing.assert_allclose(xyz.mean(axis=0), np.zeros(3), atol=1e-15)
        np.testing.assert_allclose(points[0], [-0.14, -0.1, 0.0])
        np.testing.assert_allclose(points[9], [-0.10, -0.06, 0.0])

    def test_invalid_config(self) -> None:
        for bad in (
            dict(duration_s=0.0),
            dict(imu_rate_hz=-100.0),
            dict(pixel_noise_std=-1.0),
            dict(rolling_shutter_readout_s=-0.01),
            dict(board_rows=1),
        ):
            with self.subTest(bad=bad):
                with self.assertRaises(ValueError):
                    SyntheticRigConfig(**bad)

    def test_camera_rests_before_motion(self) -> None:
        config = SyntheticRigConfig(static_s=0.5, distance_m=0.7)
        q, p = camera_motion(np.array([0.0, 0.25, 0.5]), config)
        np.testing.assert_allclose(q, np.tile([1.0, 0.0, 0.0, 0.0], (3, 1)), atol=1e-15)
        np.testing.assert_allclose(p, np.tile([0.0, 0.0, -0.7], (3, 1)), atol=1e-15)
        q_moving, _ = camera_motion(np.array([1.5]), config)
        self.assertGreater(quat_angle_between(q_moving[0], np.array([1.0, 0.0, 0.0, 0.0])), 0.01)


class TestGeneratedDataset(unittest.TestCase):
    """Shapes, clocks and initial guesses of a generated recording."""

    @classmethod
    def setUpClass(cls) -> None:
        cls.config = quiet_config(time_offset_s=0.01, extrinsic_init_error_deg=2.0)
        cls.dataset = generate_synthetic_dataset(cls.config, np.random.default_rng(7))

    def test_frames(self) -> None:
        recon = self.dataset.reconstruction
        frames = recon.frame_ids()
        self.assertGreater(len(frames), 0)
        self.assertLessEqual(len(frames), 11)
        self.assertEqual(sorted(recon.poses), frames)
        self.assertEqual(frames[0].frame_id, 1000 * MS)
        for frame in frames:
            data = recon.corners[frame]
            self.assertGreaterEqual(len(data), self.config.min_corners)
            self.assertTrue(set(data.track_ids.tolist()) <= set(recon.target_points))

    def test_imu_streams_on_imu_clock(self) -> None:
        accel = self.dataset.telemetry.accelerometer
        gyro = self.dataset.telemetry.gyroscope
        self.assertEqual(len(accel), 101)
        np.testing.assert_array_equal(accel.timestamps_ns, gyro.timestamps_ns)
        # t_imu = t_cam - offset
        self.assertEqual(int(accel.timestamps_ns[0]), 990 * MS)
        self.assertEqual(int(accel.timestamps_ns[-1]), 1990 * MS)
        self.assertEqual(accel.meta["sensor"], "accelerometer")

    def test_static_start(self) -> None:
        """At the first frame the rig is at rest: gyro reads the bias, accel reads gravity."""
        truth = self.dataset.truth
        gyro0 = self.dataset.telemetry.gyroscope.values[0]
        accel0 = self.dataset.telemetry.accelerometer.values[0]
        np.testing.assert_allclose(gyro0, truth.gyro_bias, atol=1e-12)

        q_w_i = self.dataset.trajectory.orientation(np.array([1000 * MS]))[0]
        expected = -quat_rotate(quat_conjugate(q_w_i), truth.gravity) + truth.accel_bias
        np.testing.assert_allclose(accel0, expected, atol=1e-9)

    def test_initial_extrinsic_error(self) -> None:
        q_i_c_init = quat_conjugate(self.dataset.q_imu_to_camera)
        angle = np.rad2deg(quat_angle_between(q_i_c_init, self.dataset.truth.q_i_c))
        self.assertAlmostEqual(float(angle), 2.0, places=6)
        self.assertEqual(self.dataset.time_offset_s, 0.01)

    def test_same_seed_same_recording(self) -> None:
        config = quiet_config(pixel_noise_std=0.5)
        a = generate_synthetic_dataset(config, np.random.default_rng(11))
        b = generate_synthetic_dataset(config, np.random.default_rng(11))
        frame = a.reconstruction.frame_ids()[0]
        np.testing.assert_array_equal(a.reconstruction.corners[frame].corners, b.reconstruction.corners[frame].corners)


class TestCornerRendering(unittest.TestCase):
    """Rendered pixels are consistent with the ground-truth trajectory."""

    def project_at(self, trajectory, truth, points, query_ns):
        q_w_i, p_w_i = trajectory.pose(query_ns)
        q_w_c, p_w_c = compose_poses(q_w_i, p_w_i, truth.q_i_c, truth.t_i_c)
        return project_points(inverse_transform_points(q_w_c, p_w_c, points), truth.intrinsics)

    def test_global_shutter(self) -> None:
        config = quiet_config()
        trajectory, truth, t0, _ = build_ground_truth(config)
        board = chessboard_points(config.board_rows, config.board_cols, config.square_size_m)
        frame_t = t0 + 700 * MS
        pixels, ids = render_corners(trajectory, truth, board, frame_t)
        self.assertGreater(len(ids), 0)

        points = np.array([board[i] for i in ids])
        expected = self.project_at(trajectory, truth, points, np.full(len(ids), frame_t, dtype=np.int64))
        np.testing.assert_allclose(pixels, expected, atol=1e-9)

    def test_rolling_shutter_fixed_point(self) -> None:
        """Each corner is projected at the capture time of its own image row."""
        config = quiet_config(rolling_shutter_readout_s=0.03)
        trajectory, truth, t0, _ = build_ground_truth(config)
        board = chessboard_points(config.board_rows, config.board_cols, config.square_size_m)
        frame_t = t0 + 700 * MS
        pixels, ids = render_corners(trajectory, truth, board, frame_t, readout_s=0.03)

        query = rolling_shutter_times_ns(frame_t, pixels[:, 1], 0.03, truth.intrinsics.height)
        self.assertGreater(int(query.max() - query.min()), 0)
        points = np.array([board[i] for i in ids])
        expected = self.project_at(trajectory, truth, points, query)
        np.testing.assert_allclose(pixels, expected, atol=1e-9)


if __name__ == "__main__":
    unittest.main()
