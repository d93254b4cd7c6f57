"""Synthetic camera-IMU recordings with ground truth."""

from ctcalib.sim.synthetic_rig import (
    SyntheticDataset,
    SyntheticRigConfig,
    build_ground_truth,
    camera_motion,
    chessboard_points,
    generate_synthetic_dataset,
    render_corners,
)

__all__ = [
    "SyntheticDataset",
    "SyntheticRigConfig",
    "build_ground_truth",
    "camera_motion",
    "chessboard_points",
    "generate_synthetic_dataset",
    "render_corners",
]
