"""Data structures for the camera side of the calibration.

Key types:
    - CameraIntrinsics: Pinhole + Brown-Conrady distortion parameters
    - TimeCamId: (timestamp, camera index) key of one video frame
    - CornerData: 2D corner detections of one frame with their target ids
    - Reconstruction: Target geometry, per-frame corners and initial poses

Frames:
    - a: Target ("world") frame in which the calibration board is static
    - c: Camera frame (X right, Y down, Z forward)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

# Order of the intrinsic parameter vector used by the optimizer.
INTRINSICS_PARAMETERS = ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2")


@dataclass
class CameraIntrinsics:
    """
    Camera intrinsic parameters.

    Attributes:
        fx: Focal length in x (pixels).
        fy: Focal length in y (pixels).
        cx: Principal point x-coordinate (pixels).
        cy: Principal point y-coordinate (pixels).
        k1: 1st radial distortion coefficient.
        k2: 2nd radial distortion coefficient.
        p1: 1st tangential distortion coefficient.
        p2: 2nd tangential distortion coefficient.
        width: Image width in pixels.
        height: Image height in pixels; rows are read out top to bottom
            by a rolling-shutter sensor.

    Examples:
        >>> K = CameraIntrinsics(fx=800.0, fy=800.0, cx=640.0, cy=360.0,
        ...                      width=1280, height=720)
        >>> K.to_array()  # [fx, fy, cx, cy, k1, k2, p1, p2]
    """

    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    width: int = 640
    height: int = 480

    def __post_init__(self) -> None:
        """Validate camera parameters after initialization."""
        if self.fx <= 0:
            raise ValueError(f"fx must be positive, got {self.fx}")
        if self.fy <= 0:
            raise ValueError(f"fy must be positive, got {self.fy}")
        if self.width <= 0:
            raise ValueError(f"width must be positive, got {self.width}")
        if self.height <= 0:
            raise ValueError(f"height must be positive, got {self.height}")

    def to_array(self) -> np.ndarray:
        """Parameter vector [fx, fy, cx, cy, k1, k2, p1, p2]."""
        return np.array([getattr(self, name) for name in INTRINSICS_PARAMETERS], dtype=np.float64)

    @classmethod
    def from_array(cls, params: np.ndarray, width: int, height: int) -> "CameraIntrinsics":
        """Build intrinsics from a parameter vector (see to_array)."""
        params = np.asarray(params, dtype=np.float64).reshape(len(INTRINSICS_PARAMETERS))
        values = {name: float(v) for name, v in zip(INTRINSICS_PARAMETERS, params)}
        return cls(width=int(width), height=int(height), **values)

    def to_dict(self) -> Dict[str, float]:
        out = {name: float(getattr(self, name)) for name in INTRINSICS_PARAMETERS}
        out["width"] = int(self.width)
        out["height"] = int(self.height)
        return out


@dataclass(frozen=True, order=True)
class TimeCamId:
    """
    Identifier of one camera frame.

    Attributes:
        frame_id: Frame timestamp in nanoseconds.
        cam_id: Camera index (0 for a monocular rig).
    """

    frame_id: int
    cam_id: int = 0


@dataclass(frozen=True)
class CornerData:
    """
    Corner observations of one frame.

    Attributes:
        corners: Observed pixel coordinates, shape (M, 2).
        track_ids: Target point id of every corner, shape (M,).
    """

    corners: np.ndarray
    track_ids: np.ndarray

    def __post_init__(self) -> None:
        corners = np.asarray(self.corners, dtype=np.float64).reshape(-1, 2)
        track_ids = np.asarray(self.track_ids, dtype=np.int64).reshape(-1)
        if corners.shape[0] != track_ids.shape[0]:
            raise ValueError(
                f"corners ({corners.shape[0]}) and track_ids ({track_ids.shape[0]}) "
                "must have the same length"
            )
        corners.setflags(write=False)
        track_ids.setflags(write=False)
        object.__setattr__(self, "corners", corners)
        object.__setattr__(self, "track_ids", track_ids)

    def __len__(self) -> int:
        return self.track_ids.shape[0]


@dataclass
class Reconstruction:
    """
    Static calibration dataset consumed by the calibration.

    Attributes:
        intrinsics: Initial camera model.
        target_points: Target point id -> 3D position in the target frame.
        corners: Per-frame corner observations.
        poses: Initial camera poses T_a_c per frame as (q_a_c, p_a_c);
            frames without an initial pose are absent.
    """

    intrinsics: CameraIntrinsics
    target_points: Dict[int, np.ndarray]
    corners: Dict[TimeCamId, CornerData] = field(default_factory=dict)
    poses: Dict[TimeCamId, Tuple[np.ndarray, np.ndarray]] = field(default_factory=dict)

    def frame_ids(self) -> List[TimeCamId]:
        """All frames with corners, in time order."""
        return sorted(self.corners.keys())

    def first_pose(self, frames: Optional[List[TimeCamId]] = None):
        """First frame (in time order) with an initial pose, or None."""
        for tcid in frames if frames is not None else self.frame_ids():
            if tcid in self.poses:
                return tcid
        return None

    def points_for(self, data: CornerData) -> np.ndarray:
        """Target points matching the corners of one frame, shape (M, 3).

        Raises:
            KeyError: If a corner references an unknown target point.
        """
        return np.array([self.target_points[int(i)] for i in data.track_ids], dtype=np.float64).reshape(-1, 3)
