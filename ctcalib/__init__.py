"""Continuous-time camera-IMU calibration.

This package contains the building blocks for spatio-temporal calibration of
a rigidly coupled camera and IMU:
- coords: Quaternion algebra and rigid transforms
- spline: Split (SO3 + R3) uniform B-spline trajectories
- vision: Camera model, frame identifiers and corner observations
- sensors: Inertial sample containers and measurement models
- estimators: Sparse Levenberg-Marquardt factor graph
- calibration: Residuals, initialization and the joint calibration problem
- io: Reading inputs and writing results
- sim: Synthetic camera-IMU rigs
- eval: Metrics and residual plots
"""

__version__ = "0.1.0"
