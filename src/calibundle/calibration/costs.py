"""
Reprojection cost-function variants.

Every variant measures the pixel distance between an observed pattern point
and the projection of its target-frame position through the target pose and
the camera extrinsics and intrinsics. Variants differ only in which of those
quantities are free parameter blocks and which are passed as constants.

Constants always start with the observed pixel (x, y), followed by the fixed
intrinsics (9) and/or the fixed target-frame point (3), in that order.
"""

from __future__ import annotations

from enum import Enum

import cv2
import numpy as np

from ..types import INTRINSICS_SIZE, POINT_SIZE, POSE_SIZE, camera_matrix, opencv_distortion


class CostKind(Enum):
    FULL = "full"
    INTRINSICS_FIXED = "intrinsics_fixed"
    POINT_FIXED = "point_fixed"
    INTRINSICS_POINT_FIXED = "intrinsics_point_fixed"


# Free parameter blocks per variant, in residual argument order
PARAMETER_SIZES: dict[CostKind, tuple[int, ...]] = {
    CostKind.FULL: (INTRINSICS_SIZE, POSE_SIZE, POSE_SIZE, POINT_SIZE),
    CostKind.INTRINSICS_FIXED: (POSE_SIZE, POSE_SIZE, POINT_SIZE),
    CostKind.POINT_FIXED: (INTRINSICS_SIZE, POSE_SIZE, POSE_SIZE),
    CostKind.INTRINSICS_POINT_FIXED: (POSE_SIZE, POSE_SIZE),
}

CONSTANT_SIZES: dict[CostKind, int] = {
    CostKind.FULL: 2,
    CostKind.INTRINSICS_FIXED: 2 + INTRINSICS_SIZE,
    CostKind.POINT_FIXED: 2 + POINT_SIZE,
    CostKind.INTRINSICS_POINT_FIXED: 2 + INTRINSICS_SIZE + POINT_SIZE,
}

RESIDUAL_SIZE = 2


def project_point(
    intrinsics: np.ndarray,
    extrinsics: np.ndarray,
    target_pose: np.ndarray,
    point: np.ndarray,
) -> np.ndarray:
    """
    Project a target-frame point into the image.

    Args:
        intrinsics: (9,) intrinsics block
        extrinsics: (6,) world -> camera
        target_pose: (6,) target -> world
        point: (3,) point in the target frame

    Returns:
        (2,) pixel coordinates
    """
    target_rotation = cv2.Rodrigues(np.ascontiguousarray(target_pose[0:3], dtype=np.float64))[0]
    world = target_rotation @ point + target_pose[3:6]

    projected, _ = cv2.projectPoints(
        world.reshape(1, 3),
        np.ascontiguousarray(extrinsics[0:3], dtype=np.float64),
        np.ascontiguousarray(extrinsics[3:6], dtype=np.float64),
        camera_matrix(intrinsics),
        opencv_distortion(intrinsics),
    )
    return projected[0, 0, :]


def unpack(
    kind: CostKind,
    constants: np.ndarray,
    parameters: list[np.ndarray],
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Split constants and free blocks into
    (observed, intrinsics, extrinsics, target_pose, point).
    """
    observed = constants[0:2]
    fixed = constants[2:]

    if kind is CostKind.FULL:
        intrinsics, extrinsics, pose, point = parameters
    elif kind is CostKind.INTRINSICS_FIXED:
        extrinsics, pose, point = parameters
        intrinsics = fixed[0:INTRINSICS_SIZE]
    elif kind is CostKind.POINT_FIXED:
        intrinsics, extrinsics, pose = parameters
        point = fixed[0:POINT_SIZE]
    else:
        extrinsics, pose = parameters
        intrinsics = fixed[0:INTRINSICS_SIZE]
        point = fixed[INTRINSICS_SIZE : INTRINSICS_SIZE + POINT_SIZE]

    return observed, intrinsics, extrinsics, pose, point


def reprojection_residual(
    kind: CostKind,
    constants: np.ndarray,
    parameters: list[np.ndarray],
) -> np.ndarray:
    """(projected - observed) for one data point."""
    observed, intrinsics, extrinsics, pose, point = unpack(kind, constants, parameters)
    return project_point(intrinsics, extrinsics, pose, point) - observed
