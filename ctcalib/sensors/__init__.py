"""Inertial sensor data types and measurement models."""

from ctcalib.sensors.imu_models import (
    STANDARD_GRAVITY,
    apply_bias_offsets,
    first_sample_within,
    predict_gyro,
    predict_specific_force,
    select_time_window,
    subsample,
)
from ctcalib.sensors.types import ImuBias, ImuSamples, Telemetry

__all__ = [
    "STANDARD_GRAVITY",
    "apply_bias_offsets",
    "first_sample_within",
    "predict_gyro",
    "predict_specific_force",
    "select_time_window",
    "subsample",
    "ImuBias",
    "ImuSamples",
    "Telemetry",
]
