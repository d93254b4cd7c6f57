"""
Data structures for inertial measurements.

This module defines the sensor packets consumed by the calibration:
    - ImuSamples: One time-stamped 3-axis stream (accelerometer or gyroscope)
    - Telemetry: Accelerometer and gyroscope streams of one recording
    - ImuBias: Constant bias offsets for both sensors

Time Base Convention:
    Timestamps are integer nanoseconds on the IMU clock, stored as int64
    arrays. The camera clock is reached by adding the IMU-to-camera time
    offset.

Frame Conventions:
    - i: IMU body frame; all measurements are expressed in it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np


@dataclass(frozen=True)
class ImuSamples:
    """
    Time-series packet for one 3-axis inertial sensor.

    Attributes:
        timestamps_ns: Sample times in ns, shape (N,), non-decreasing.
        values: Measurements in the IMU frame, shape (N, 3).
                Units: m/s² (specific force) or rad/s (angular rate).
        meta: Optional metadata (e.g. 'sensor': 'accelerometer').

    Notes:
        - Samples are immutable; helper functions in imu_models return new
          packets rather than modifying arrays in place.
    """

    timestamps_ns: np.ndarray
    values: np.ndarray
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate shape consistency and ordering."""
        t = np.asarray(self.timestamps_ns, dtype=np.int64).reshape(-1)
        values = np.asarray(self.values, dtype=np.float64)
        if values.shape != (t.shape[0], 3):
            raise ValueError(
                f"ImuSamples.values must have shape ({t.shape[0]}, 3), got {values.shape}"
            )
        if t.shape[0] > 1 and np.any(np.diff(t) < 0):
            raise ValueError("ImuSamples.timestamps_ns must be non-decreasing")
        object.__setattr__(self, "timestamps_ns", t)
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return self.timestamps_ns.shape[0]


@dataclass(frozen=True)
class Telemetry:
    """Accelerometer and gyroscope streams of one recording."""

    accelerometer: ImuSamples
    gyroscope: ImuSamples


@dataclass
class ImuBias:
    """
    Constant bias offsets of an IMU.

    Attributes:
        accel_bias: Accelerometer offset (m/s²), shape (3,).
        gyro_bias: Gyroscope offset (rad/s), shape (3,).
    """

    accel_bias: np.ndarray = field(default_factory=lambda: np.zeros(3))
    gyro_bias: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.accel_bias = np.asarray(self.accel_bias, dtype=np.float64).reshape(3)
        self.gyro_bias = np.asarray(self.gyro_bias, dtype=np.float64).reshape(3)
        if not (np.all(np.isfinite(self.accel_bias)) and np.all(np.isfinite(self.gyro_bias))):
            raise ValueError("IMU biases must be finite")
