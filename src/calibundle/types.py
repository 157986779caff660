"""
Core data structures for calibundle.

Entity definitions are frozen dataclasses with slots, loaded from configuration.
They carry initial values only. The numbers the solver adjusts live in the
parameter arena (see calibration.blocks), never in these objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import cv2
import numpy as np


INTRINSICS_SIZE = 9  # fx, fy, cx, cy, k1, k2, k3, p1, p2
POSE_SIZE = 6  # ax, ay, az, x, y, z
POINT_SIZE = 3

PatternType = Literal["chessboard", "circle_grid", "ar_tag"]


# ============================================================================
# Camera and Target Definitions
# ============================================================================


@dataclass(frozen=True, slots=True)
class Pose:
    """
    6-DOF pose: angle-axis rotation followed by a position.
    """

    angle_axis: tuple[float, float, float] = (0.0, 0.0, 0.0)
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)


@dataclass(frozen=True, slots=True)
class CameraIntrinsics:
    """
    Pinhole intrinsics with radial (k1..k3) and tangential (p1, p2) distortion.
    """

    focal_length_x: float
    focal_length_y: float
    center_x: float
    center_y: float
    distortion_k1: float = 0.0
    distortion_k2: float = 0.0
    distortion_k3: float = 0.0
    distortion_p1: float = 0.0
    distortion_p2: float = 0.0


@dataclass(frozen=True, slots=True)
class Camera:
    """
    A camera definition.

    Extrinsics map world coordinates into the camera frame.
    scene_id is only set for moving camera definitions.
    """

    name: str
    intrinsics: CameraIntrinsics
    extrinsics: Pose = Pose()
    moving: bool = False
    scene_id: int | None = None
    fix_intrinsics: bool = True  # pre-calibrated camera
    fix_extrinsics: bool = False


@dataclass(frozen=True, slots=True)
class Target:
    """
    A calibration target definition.

    The pose maps target-frame points into world coordinates. Points are
    ordered by point id as reported by the pattern detector.
    """

    name: str
    points: tuple[tuple[float, float, float], ...]
    pose: Pose = Pose()
    moving: bool = False
    scene_id: int | None = None
    target_type: str = "chessboard"
    pattern_rows: int = 0  # pattern points along y
    pattern_cols: int = 0  # pattern points along x
    circle_symmetric: bool = True
    fix_points: bool = True  # rigid, known geometry
    fix_pose: bool = False

    @property
    def num_points(self) -> int:
        return len(self.points)


@dataclass(frozen=True, slots=True)
class Roi:
    """
    Region of interest in image pixels.
    """

    x_min: int
    x_max: int
    y_min: int
    y_max: int

    @property
    def width(self) -> int:
        return self.x_max - self.x_min

    @property
    def height(self) -> int:
        return self.y_max - self.y_min


# ============================================================================
# Scene Commands and Detector Output
# ============================================================================


@dataclass(frozen=True, slots=True)
class ObservationCmd:
    """
    Instructs a camera to look for a target, optionally within an ROI.
    """

    camera: Camera
    target: Target
    roi: Roi | None = None


@dataclass(frozen=True, slots=True)
class Observation:
    """
    One detected pattern point, in full-image pixel coordinates.
    """

    target: Target
    point_id: int
    image_x: float
    image_y: float


# ============================================================================
# Solver Summary
# ============================================================================


@dataclass(frozen=True, slots=True)
class SolverSummary:
    """
    What the caller needs to know about a solve, without solver internals.
    """

    converged: bool
    iterations: int
    final_cost: float
    initial_cost: float = 0.0
    num_residuals: int = 0
    message: str = ""


# ============================================================================
# Pure functions for parameter vectors
# ============================================================================


def intrinsics_to_vector(intrinsics: CameraIntrinsics) -> np.ndarray:
    """
    Pack intrinsics into the 9-element parameter block layout.
    [fx, fy, cx, cy, k1, k2, k3, p1, p2]
    """
    return np.array(
        [
            intrinsics.focal_length_x,
            intrinsics.focal_length_y,
            intrinsics.center_x,
            intrinsics.center_y,
            intrinsics.distortion_k1,
            intrinsics.distortion_k2,
            intrinsics.distortion_k3,
            intrinsics.distortion_p1,
            intrinsics.distortion_p2,
        ],
        dtype=np.float64,
    )


def pose_to_vector(pose: Pose) -> np.ndarray:
    """
    Pack a pose into the 6-element parameter block layout.
    [ax, ay, az, x, y, z]
    """
    return np.hstack([pose.angle_axis, pose.position]).astype(np.float64)


def pose_from_vector(vector: np.ndarray) -> Pose:
    return Pose(
        angle_axis=tuple(float(v) for v in vector[0:3]),
        position=tuple(float(v) for v in vector[3:6]),
    )


def camera_matrix(intrinsics_block: np.ndarray) -> np.ndarray:
    """
    3x3 camera matrix from an intrinsics block.
    """
    fx, fy, cx, cy = intrinsics_block[0:4]
    return np.array(
        [
            [fx, 0.0, cx],
            [0.0, fy, cy],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )


def opencv_distortion(intrinsics_block: np.ndarray) -> np.ndarray:
    """
    Distortion coefficients in OpenCV order (k1, k2, p1, p2, k3).
    """
    k1, k2, k3, p1, p2 = intrinsics_block[4:9]
    return np.array([k1, k2, p1, p2, k3], dtype=np.float64)


def pose_vector_to_matrix(vector: np.ndarray) -> np.ndarray:
    """
    4x4 homogeneous transformation matrix from a 6-element pose vector.
    """
    t = np.eye(4, dtype=np.float64)
    t[0:3, 0:3] = cv2.Rodrigues(np.asarray(vector[0:3], dtype=np.float64))[0]
    t[0:3, 3] = vector[3:6]
    return t


def invert_transform(transform: np.ndarray) -> np.ndarray:
    inverse = np.eye(4, dtype=np.float64)
    rotation = transform[0:3, 0:3]
    inverse[0:3, 0:3] = rotation.T
    inverse[0:3, 3] = -rotation.T @ transform[0:3, 3]
    return inverse
