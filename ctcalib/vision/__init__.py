"""Camera model and frame observations."""

from ctcalib.vision.camera import (
    compute_reprojection_error,
    distort_normalized,
    in_front_of_camera,
    inside_image,
    project_points,
)
from ctcalib.vision.types import (
    INTRINSICS_PARAMETERS,
    CameraIntrinsics,
    CornerData,
    Reconstruction,
    TimeCamId,
)

__all__ = [
    "compute_reprojection_error",
    "distort_normalized",
    "in_front_of_camera",
    "inside_image",
    "project_points",
    "INTRINSICS_PARAMETERS",
    "CameraIntrinsics",
    "CornerData",
    "Reconstruction",
    "TimeCamId",
]
