"""Readers and writers for the calibration input and output files.

All files are JSON documents:
    reconstruction.json   intrinsics, target points, per-view corners and poses
    telemetry.json        accelerometer and gyroscope streams (timestamps in ms)
    imu_bias.json         bias offsets added to the raw IMU samples
    extrinsic_init.json   initial IMU-to-camera rotation and time offset
    spline_weighting.json knot spacings and residual weights

Timestamps are converted to integer nanoseconds on load. View names carry the
frame time in seconds as a decimal string and are parsed exactly.
"""

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import numpy as np

from ctcalib.calibration.types import CalibrationResult, SplineWeighting
from ctcalib.sensors.types import ImuBias, ImuSamples, Telemetry
from ctcalib.vision.types import CameraIntrinsics, CornerData, Reconstruction, TimeCamId

PathLike = Union[str, Path]


def _read_json(path: PathLike) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Required file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object at the top level")
    return data


def _write_json(data: Dict[str, Any], path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def _require(data: Dict[str, Any], key: str, path: PathLike) -> Any:
    if key not in data:
        raise ValueError(f"{path}: missing field '{key}'")
    return data[key]


def _vector(value: Any, size: int, name: str, path: PathLike) -> np.ndarray:
    try:
        out = np.asarray(value, dtype=np.float64).reshape(size)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{path}: '{name}' must be {size} numbers") from exc
    if not np.all(np.isfinite(out)):
        raise ValueError(f"{path}: '{name}' must be finite")
    return out


def seconds_to_ns(text: Union[str, float, int]) -> int:
    """Exact conversion of a decimal seconds string to integer nanoseconds."""
    try:
        return int((Decimal(str(text)) * 1_000_000_000).to_integral_value())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid timestamp '{text}'") from exc


def ns_to_seconds(t_ns: int) -> str:
    """Inverse of seconds_to_ns with nine decimals."""
    sign = "-" if t_ns < 0 else ""
    whole, frac = divmod(abs(int(t_ns)), 1_000_000_000)
    return f"{sign}{whole}.{frac:09d}"


# ----------------------------------------------------------------------
# Reconstruction
# ----------------------------------------------------------------------


def load_reconstruction(path: PathLike) -> Reconstruction:
    """
    Load the static calibration dataset.

    Views without 'rotation'/'position' have no initial pose; views
    without 'features' are kept with zero corners.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a field is missing or malformed.
    """
    data = _read_json(path)

    raw_intrinsics = _require(data, "intrinsics", path)
    try:
        intrinsics = CameraIntrinsics(**raw_intrinsics)
    except TypeError as exc:
        raise ValueError(f"{path}: malformed intrinsics ({exc})") from exc

    target_points = {
        int(track_id): _vector(xyz, 3, f"points/{track_id}", path)
        for track_id, xyz in _require(data, "points", path).items()
    }

    corners: Dict[TimeCamId, CornerData] = {}
    poses: Dict[TimeCamId, Tuple[np.ndarray, np.ndarray]] = {}
    for view in _require(data, "views", path):
        frame = TimeCamId(seconds_to_ns(_require(view, "name", path)))
        features = view.get("features", {})
        track_ids = np.array([int(k) for k in features], dtype=np.int64)
        uv = np.array([_vector(v, 2, "features", path) for v in features.values()]).reshape(-1, 2)
        corners[frame] = CornerData(uv, track_ids)

        if "rotation" in view and "position" in view:
            q = _vector(view["rotation"], 4, "rotation", path)
            norm = np.linalg.norm(q)
            if norm == 0:
                raise ValueError(f"{path}: zero rotation quaternion in view {view['name']}")
            poses[frame] = (q / norm, _vector(view["position"], 3, "position", path))

    return Reconstruction(intrinsics, target_points, corners, poses)


def write_reconstruction(reconstruction: Reconstruction, path: PathLike) -> Path:
    views = []
    for frame in reconstruction.frame_ids():
        data = reconstruction.corners[frame]
        view: Dict[str, Any] = {
            "name": ns_to_seconds(frame.frame_id),
            "features": {str(int(i)): uv.tolist() for i, uv in zip(data.track_ids, data.corners)},
        }
        if frame in reconstruction.poses:
            q, p = reconstruction.poses[frame]
            view["rotation"] = np.asarray(q).tolist()
            view["position"] = np.asarray(p).tolist()
        views.append(view)

    doc = {
        "intrinsics": reconstruction.intrinsics.to_dict(),
        "points": {str(k): np.asarray(v).tolist() for k, v in reconstruction.target_points.items()},
        "views": views,
    }
    return _write_json(doc, path)


# ----------------------------------------------------------------------
# Telemetry
# ----------------------------------------------------------------------


def _load_stream(data: Dict[str, Any], name: str, path: PathLike) -> ImuSamples:
    stream = _require(data, name, path)
    t_ms = np.asarray(_require(stream, "timestamp_ms", path), dtype=np.float64).reshape(-1)
    values = np.asarray(_require(stream, "measurement", path), dtype=np.float64)
    if values.size == 0:
        values = values.reshape(0, 3)
    if values.ndim != 2 or values.shape != (t_ms.shape[0], 3):
        raise ValueError(
            f"{path}: '{name}' needs one 3-vector per timestamp, got shape {values.shape}"
        )
    order = np.argsort(t_ms, kind="stable")
    return ImuSamples(
        np.round(t_ms[order] * 1e6).astype(np.int64), values[order], meta={"sensor": name}
    )


def load_telemetry(path: PathLike) -> Telemetry:
    """
    Load accelerometer and gyroscope streams.

    Samples are sorted by time; millisecond timestamps become integer ns.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a stream is missing or malformed.
    """
    data = _read_json(path)
    return Telemetry(
        accelerometer=_load_stream(data, "accelerometer", path),
        gyroscope=_load_stream(data, "gyroscope", path),
    )


def write_telemetry(telemetry: Telemetry, path: PathLike) -> Path:
    doc = {}
    for name, stream in (("accelerometer", telemetry.accelerometer), ("gyroscope", telemetry.gyroscope)):
        doc[name] = {
            "timestamp_ms": (stream.timestamps_ns / 1e6).tolist(),
            "measurement": stream.values.tolist(),
        }
    return _write_json(doc, path)


# ----------------------------------------------------------------------
# Small parameter files
# ----------------------------------------------------------------------


def load_imu_bias(path: PathLike) -> ImuBias:
    data = _read_json(path)
    return ImuBias(
        accel_bias=_vector(_require(data, "accel_bias", path), 3, "accel_bias", path),
        gyro_bias=_vector(_require(data, "gyro_bias", path), 3, "gyro_bias", path),
    )


def write_imu_bias(bias: ImuBias, path: PathLike) -> Path:
    return _write_json(
        {"accel_bias": bias.accel_bias.tolist(), "gyro_bias": bias.gyro_bias.tolist()}, path
    )


def load_extrinsic_init(path: PathLike) -> Tuple[np.ndarray, float]:
    """
    Load the initial IMU-to-camera rotation and time offset.

    Returns:
        Tuple (q_imu_to_camera [qw, qx, qy, qz], time_offset_s).
    """
    data = _read_json(path)
    q = _vector(_require(data, "imu_to_camera_rotation", path), 4, "imu_to_camera_rotation", path)
    if np.linalg.norm(q) == 0:
        raise ValueError(f"{path}: 'imu_to_camera_rotation' must be non-zero")
    offset = float(_require(data, "time_offset_imu_to_camera_s", path))
    if not np.isfinite(offset):
        raise ValueError(f"{path}: 'time_offset_imu_to_camera_s' must be finite")
    return q / np.linalg.norm(q), offset


def write_extrinsic_init(q_imu_to_camera: np.ndarray, time_offset_s: float, path: PathLike) -> Path:
    return _write_json(
        {
            "imu_to_camera_rotation": np.asarray(q_imu_to_camera, dtype=np.float64).tolist(),
            "time_offset_imu_to_camera_s": float(time_offset_s),
        },
        path,
    )


def load_spline_weighting(path: PathLike) -> SplineWeighting:
    data = _read_json(path)
    values = {name: _require(data, name, path) for name in ("dt_so3", "dt_r3", "var_so3", "var_r3")}
    if "var_corner" in data:
        values["var_corner"] = data["var_corner"]
    try:
        return SplineWeighting(**{k: float(v) for k, v in values.items()})
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{path}: {exc}") from exc


def write_spline_weighting(weighting: SplineWeighting, path: PathLike) -> Path:
    return _write_json(
        {
            "dt_so3": weighting.dt_so3,
            "dt_r3": weighting.dt_r3,
            "var_so3": weighting.var_so3,
            "var_r3": weighting.var_r3,
            "var_corner": weighting.var_corner,
        },
        path,
    )


def write_result(result: CalibrationResult, path: PathLike) -> Path:
    """Write a calibration result as JSON and return the path."""
    return _write_json(result.to_dict(), path)


__all__ = [
    "seconds_to_ns",
    "ns_to_seconds",
    "load_reconstruction",
    "write_reconstruction",
    "load_telemetry",
    "write_telemetry",
    "load_imu_bias",
    "write_imu_bias",
    "load_extrinsic_init",
    "write_extrinsic_init",
    "load_spline_weighting",
    "write_spline_weighting",
    "write_result",
]
