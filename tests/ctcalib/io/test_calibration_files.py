"""Unit tests for the JSON calibration input and output files."""

import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from ctcalib.calibration import CalibrationResult, CalibrationState, SplineWeighting
from ctcalib.estimators import SolverSummary
from ctcalib.io import (
    load_extrinsic_init,
    load_imu_bias,
    load_reconstruction,
    load_spline_weighting,
    load_telemetry,
    ns_to_seconds,
    seconds_to_ns,
    write_extrinsic_init,
    write_imu_bias,
    write_reconstruction,
    write_result,
    write_spline_weighting,
    write_telemetry,
)
from ctcalib.sensors import ImuBias, ImuSamples, Telemetry
from ctcalib.vision import CameraIntrinsics, CornerData, Reconstruction, TimeCamId


class FileTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write_raw(self, name: str, content) -> Path:
        path = self.dir / name
        with open(path, "w", encoding="utf-8") as f:
            if isinstance(content, str):
                f.write(content)
            else:
                json.dump(content, f)
        return path


class TestTimestamps(unittest.TestCase):
    """Exact decimal timestamp conversion."""

    def test_seconds_to_ns(self) -> None:
        self.assertEqual(seconds_to_ns("1.000000001"), 1_000_000_001)
        self.assertEqual(seconds_to_ns("0.1"), 100_000_000)
        self.assertEqual(seconds_to_ns("1234567.123456789"), 1_234_567_123_456_789)
        with self.assertRaises(ValueError):
            seconds_to_ns("frame_12")

    def test_ns_to_seconds(self) -> None:
        self.assertEqual(ns_to_seconds(1_500_000_000), "1.500000000")
        self.assertEqual(ns_to_seconds(-1_500_000_000), "-1.500000000")
        self.assertEqual(seconds_to_ns(ns_to_seconds(987_654_321_012)), 987_654_321_012)


class TestReconstructionFile(FileTestCase):
    """Target geometry, corners and poses."""

    def make_reconstruction(self) -> Reconstruction:
        q = np.array([0.9, 0.1, -0.2, 0.3])
        q /= np.linalg.norm(q)
        return Reconstruction(
            intrinsics=CameraIntrinsics(fx=450.0, fy=455.0, cx=300.0, cy=200.0, k1=-0.02, width=600, height=400),
            target_points={0: np.array([0.0, 0.0, 0.0]), 1: np.array([0.04, 0.0, 0.0])},
            corners={
                TimeCamId(1_000_000_000): CornerData([[10.5, 20.25], [30.0, 40.0]], [0, 1]),
                TimeCamId(1_033_333_333): CornerData([[11.0, 21.0]], [1]),
            },
            poses={TimeCamId(1_000_000_000): (q, np.array([0.1, -0.2, -0.7]))},
        )

    def test_round_trip(self) -> None:
        recon = self.make_reconstruction()
        path = write_reconstruction(recon, self.dir / "nested" / "reconstruction.json")
        loaded = load_reconstruction(path)

        self.assertEqual(loaded.intrinsics, recon.intrinsics)
        self.assertEqual(loaded.frame_ids(), recon.frame_ids())
        for frame in recon.frame_ids():
            np.testing.assert_allclose(loaded.corners[frame].corners, recon.corners[frame].corners)
            np.testing.assert_array_equal(loaded.corners[frame].track_ids, recon.corners[frame].track_ids)
        np.testing.assert_allclose(loaded.target_points[1], [0.04, 0.0, 0.0])
        self.assertEqual(list(loaded.poses), [TimeCamId(1_000_000_000)])
        np.testing.assert_allclose(loaded.poses[TimeCamId(1_000_000_000)][0], recon.poses[TimeCamId(1_000_000_000)][0])

    def test_view_without_features_or_pose(self) -> None:
        path = self.write_raw(
            "recon.json",
            {
                "intrinsics": {"fx": 500.0, "fy": 500.0, "cx": 320.0, "cy": 240.0},
                "points": {"0": [0.0, 0.0, 0.0]},
                "views": [{"name": "2.5"}],
            },
        )
        recon = load_reconstruction(path)
        self.assertEqual(len(recon.corners[TimeCamId(2_500_000_000)]), 0)
        self.assertEqual(recon.poses, {})

    def test_malformed_files(self) -> None:
        missing_points = self.write_raw(
            "a.json", {"intrinsics": {"fx": 1.0, "fy": 1.0, "cx": 0.0, "cy": 0.0}, "views": []}
        )
        bad_intrinsics = self.write_raw(
            "b.json", {"intrinsics": {"fx": 1.0, "focal": 2.0}, "points": {}, "views": []}
        )
        bad_feature = self.write_raw(
            "c.json",
            {
                "intrinsics": {"fx": 1.0, "fy": 1.0, "cx": 0.0, "cy": 0.0},
                "points": {},
                "views": [{"name": "1.0", "features": {"3": [1.0, 2.0, 3.0]}}],
            },
        )
        for path in (missing_points, bad_intrinsics, bad_feature):
            with self.subTest(path=path.name):
                with self.assertRaises(ValueError):
                    load_reconstruction(path)

    def test_missing_and_invalid_json(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_reconstruction(self.dir / "does_not_exist.json")
        with self.assertRaises(ValueError):
            load_reconstruction(self.write_raw("broken.json", "{not json"))
        with self.assertRaises(ValueError):
            load_reconstruction(self.write_raw("list.json", [1, 2, 3]))


class TestTelemetryFile(FileTestCase):
    """IMU streams with millisecond timestamps."""

    def test_round_trip(self) -> None:
        t_ns = np.array([1_000_000_000, 1_005_000_000, 1_010_000_000])
        values = np.arange(9.0).reshape(3, 3)
        telemetry = Telemetry(ImuSamples(t_ns, values), ImuSamples(t_ns, -values))
        loaded = load_telemetry(write_telemetry(telemetry, self.dir / "telemetry.json"))
        np.testing.assert_array_equal(loaded.accelerometer.timestamps_ns, t_ns)
        np.testing.assert_allclose(loaded.gyroscope.values, -values)
        self.assertEqual(loaded.gyroscope.meta["sensor"], "gyroscope")

    def test_samples_are_sorted(self) -> None:
        stream = {"timestamp_ms": [20.0, 10.0], "measurement": [[2, 2, 2], [1, 1, 1]]}
        path = self.write_raw("t.json", {"accelerometer": stream, "gyroscope": stream})
        accel = load_telemetry(path).accelerometer
        np.testing.assert_array_equal(accel.timestamps_ns, [10_000_000, 20_000_000])
        np.testing.assert_allclose(accel.values[0], [1, 1, 1])

    def test_malformed_stream(self) -> None:
        good = {"timestamp_ms": [1.0], "measurement": [[0, 0, 9.81]]}
        bad = {"timestamp_ms": [1.0, 2.0], "measurement": [[0, 0, 9.81]]}
        with self.assertRaises(ValueError):
            load_telemetry(self.write_raw("bad.json", {"accelerometer": good, "gyroscope": bad}))
        with self.assertRaises(ValueError):
            load_telemetry(self.write_raw("missing.json", {"accelerometer": good}))


class TestParameterFiles(FileTestCase):
    """Bias, extrinsic and weighting files."""

    def test_imu_bias_round_trip(self) -> None:
        bias = ImuBias(accel_bias=[0.1, -0.2, 0.3], gyro_bias=[0.01, 0.0, -0.01])
        loaded = load_imu_bias(write_imu_bias(bias, self.dir / "bias.json"))
        np.testing.assert_allclose(loaded.accel_bias, bias.accel_bias)
        np.testing.assert_allclose(loaded.gyro_bias, bias.gyro_bias)

    def test_imu_bias_wrong_size(self) -> None:
        path = self.write_raw("bias.json", {"accel_bias": [0.0, 0.0], "gyro_bias": [0.0, 0.0, 0.0]})
        with self.assertRaises(ValueError):
            load_imu_bias(path)

    def test_extrinsic_init_is_normalized(self) -> None:
        path = write_extrinsic_init(np.array([2.0, 0.0, 0.0, 0.0]), -0.004, self.dir / "init.json")
        q, offset = load_extrinsic_init(path)
        np.testing.assert_allclose(q, [1.0, 0.0, 0.0, 0.0])
        self.assertEqual(offset, -0.004)

    def test_extrinsic_init_rejects_zero_rotation(self) -> None:
        path = self.write_raw(
            "init.json", {"imu_to_camera_rotation": [0, 0, 0, 0], "time_offset_imu_to_camera_s": 0.0}
        )
        with self.assertRaises(ValueError):
            load_extrinsic_init(path)

    def test_spline_weighting(self) -> None:
        weighting = SplineWeighting(dt_so3=0.05, dt_r3=0.1, var_so3=1e6, var_r3=2500.0, var_corner=4.0)
        self.assertEqual(load_spline_weighting(write_spline_weighting(weighting, self.dir / "w.json")), weighting)

        path = self.write_raw("w2.json", {"dt_so3": 0.1, "dt_r3": 0.1, "var_so3": 1.0, "var_r3": 2.0})
        self.assertEqual(load_spline_weighting(path).var_corner, 1.0)

        path = self.write_raw("w3.json", {"dt_so3": 0.1, "dt_r3": -0.1, "var_so3": 1.0, "var_r3": 2.0})
        with self.assertRaises(ValueError):
            load_spline_weighting(path)


class TestResultFile(FileTestCase):
    def test_write_result(self) -> None:
        state = CalibrationState(
            q_i_c=[1.0, 0.0, 0.0, 0.0],
            t_i_c=[0.01, 0.02, 0.03],
            intrinsics=CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0),
            gravity=[0.0, 9.81, 0.0],
        )
        summary = SolverSummary(
            iterations=12, initial_cost=1e4, final_cost=12.5, converged=True,
            termination_reason="function_tolerance",
        )
        result = CalibrationResult(state, summary, 0.42, {"num_frames": 80, "duration_s": 4.1})
        path = write_result(result, self.dir / "out" / "result.json")
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        self.assertEqual(doc["state"]["gravity"], [0.0, 9.81, 0.0])
        self.assertEqual(doc["summary"]["iterations"], 12)
        self.assertEqual(doc["mean_reprojection_error_px"], 0.42)
        self.assertEqual(doc["counters"]["num_frames"], 80)


if __name__ == "__main__":
    unittest.main()
