"""JSON readers and writers for calibration inputs and results."""

from ctcalib.io.readers import (
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

__all__ = [
    "load_extrinsic_init",
    "load_imu_bias",
    "load_reconstruction",
    "load_spline_weighting",
    "load_telemetry",
    "ns_to_seconds",
    "seconds_to_ns",
    "write_extrinsic_init",
    "write_imu_bias",
    "write_reconstruction",
    "write_result",
    "write_spline_weighting",
    "write_telemetry",
]
