"""
Parameter storage and the camera/target registry.

ParameterArena owns every number the solver may adjust, in one contiguous
buffer. Blocks are addressed by BlockHandle offsets, so a handle stays valid
for the life of the arena even when the buffer grows.

CalibrationBlocks deduplicates cameras and targets by identity:
- static entities by name, one block set for the whole job
- moving entities by (name, scene_id), one pose block per scene, with
  intrinsics / point geometry shared from the first registered instance
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterator

import numpy as np

import calibundle.logger

from ..types import (
    Camera,
    Target,
    intrinsics_to_vector,
    pose_to_vector,
)

logger = calibundle.logger.get(__name__)


# ============================================================================
# Parameter Arena
# ============================================================================


@dataclass(frozen=True, slots=True)
class BlockHandle:
    """
    Stable address of a parameter block inside a ParameterArena.
    """

    index: int  # allocation order
    offset: int  # first element in the arena buffer
    size: int


class ParameterArena:
    """
    Contiguous float64 storage for parameter blocks.

    Views returned by view() alias the buffer and are invalidated by the next
    allocate(). Handles are not.
    """

    def __init__(self, capacity: int = 256):
        self._data = np.zeros(capacity, dtype=np.float64)
        self._used = 0
        self._handles: list[BlockHandle] = []

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, handle: object) -> bool:
        if not isinstance(handle, BlockHandle):
            return False
        return handle.index < len(self._handles) and self._handles[handle.index] == handle

    @property
    def handles(self) -> tuple[BlockHandle, ...]:
        return tuple(self._handles)

    def allocate(self, values: np.ndarray) -> BlockHandle:
        values = np.asarray(values, dtype=np.float64).ravel()
        size = values.size

        if self._used + size > self._data.size:
            capacity = max(self._data.size * 2, self._used + size)
            grown = np.zeros(capacity, dtype=np.float64)
            grown[: self._used] = self._data[: self._used]
            self._data = grown

        handle = BlockHandle(index=len(self._handles), offset=self._used, size=size)
        self._data[handle.offset : handle.offset + size] = values
        self._used += size
        self._handles.append(handle)
        return handle

    def view(self, handle: BlockHandle) -> np.ndarray:
        return self._data[handle.offset : handle.offset + handle.size]

    def read(self, handle: BlockHandle) -> np.ndarray:
        return self.view(handle).copy()

    def write(self, handle: BlockHandle, values: np.ndarray) -> None:
        self.view(handle)[:] = np.asarray(values, dtype=np.float64).ravel()

    def clear(self) -> None:
        self._data = np.zeros_like(self._data)
        self._used = 0
        self._handles = []


# ============================================================================
# Registry Entries
# ============================================================================


@dataclass(frozen=True, slots=True)
class CameraBlocks:
    camera: Camera
    intrinsics: BlockHandle
    extrinsics: BlockHandle
    scene_id: int | None = None


@dataclass(frozen=True, slots=True)
class TargetBlocks:
    target: Target
    pose: BlockHandle
    points: tuple[BlockHandle, ...]
    scene_id: int | None = None


# ============================================================================
# Registry
# ============================================================================


class CalibrationBlocks:
    """
    Registry giving every camera and target exactly one set of parameter blocks.

    add_* return False (and change nothing) when the identity is already
    registered. get_* return None when the identity is unknown.
    """

    def __init__(self):
        self.arena = ParameterArena()
        self._lock = threading.Lock()
        self._static_cameras: dict[str, CameraBlocks] = {}
        self._static_targets: dict[str, TargetBlocks] = {}
        self._moving_cameras: dict[tuple[str, int], CameraBlocks] = {}
        self._moving_targets: dict[tuple[str, int], TargetBlocks] = {}
        # shared across all scene instances of a moving entity
        self._moving_intrinsics: dict[str, BlockHandle] = {}
        self._moving_points: dict[str, tuple[BlockHandle, ...]] = {}
        self._fixed: set[BlockHandle] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_static_camera(self, camera: Camera) -> bool:
        with self._lock:
            if camera.name in self._static_cameras:
                return False
            intrinsics = self._allocate(intrinsics_to_vector(camera.intrinsics), camera.fix_intrinsics)
            extrinsics = self._allocate(pose_to_vector(camera.extrinsics), camera.fix_extrinsics)
            self._static_cameras[camera.name] = CameraBlocks(camera, intrinsics, extrinsics)
            logger.debug(f"Registered static camera {camera.name}")
            return True

    def add_moving_camera(self, camera: Camera, scene_id: int) -> bool:
        key = (camera.name, scene_id)
        with self._lock:
            if key in self._moving_cameras:
                return False
            intrinsics = self._moving_intrinsics.get(camera.name)
            if intrinsics is None:
                intrinsics = self._allocate(intrinsics_to_vector(camera.intrinsics), camera.fix_intrinsics)
                self._moving_intrinsics[camera.name] = intrinsics
            extrinsics = self._allocate(pose_to_vector(camera.extrinsics), camera.fix_extrinsics)
            self._moving_cameras[key] = CameraBlocks(camera, intrinsics, extrinsics, scene_id)
            logger.debug(f"Registered moving camera {camera.name} for scene {scene_id}")
            return True

    def add_static_target(self, target: Target) -> bool:
        with self._lock:
            if target.name in self._static_targets:
                return False
            pose = self._allocate(pose_to_vector(target.pose), target.fix_pose)
            points = self._allocate_points(target)
            self._static_targets[target.name] = TargetBlocks(target, pose, points)
            logger.debug(f"Registered static target {target.name} with {len(points)} points")
            return True

    def add_moving_target(self, target: Target, scene_id: int) -> bool:
        key = (target.name, scene_id)
        with self._lock:
            if key in self._moving_targets:
                return False
            points = self._moving_points.get(target.name)
            if points is None:
                points = self._allocate_points(target)
                self._moving_points[target.name] = points
            pose = self._allocate(pose_to_vector(target.pose), target.fix_pose)
            self._moving_targets[key] = TargetBlocks(target, pose, points, scene_id)
            logger.debug(f"Registered moving target {target.name} for scene {scene_id}")
            return True

    def clear(self) -> None:
        with self._lock:
            self._static_cameras.clear()
            self._static_targets.clear()
            self._moving_cameras.clear()
            self._moving_targets.clear()
            self._moving_intrinsics.clear()
            self._moving_points.clear()
            self._fixed.clear()
            self.arena.clear()

    def _allocate(self, values: np.ndarray, fixed: bool) -> BlockHandle:
        handle = self.arena.allocate(values)
        if fixed:
            self._fixed.add(handle)
        return handle

    def _allocate_points(self, target: Target) -> tuple[BlockHandle, ...]:
        return tuple(
            self._allocate(np.asarray(point, dtype=np.float64), target.fix_points)
            for point in target.points
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_static_camera_intrinsics_block(self, camera_name: str) -> BlockHandle | None:
        entry = self._static_cameras.get(camera_name)
        return entry.intrinsics if entry is not None else None

    def get_static_camera_extrinsics_block(self, camera_name: str) -> BlockHandle | None:
        entry = self._static_cameras.get(camera_name)
        return entry.extrinsics if entry is not None else None

    def get_moving_camera_intrinsics_block(self, camera_name: str) -> BlockHandle | None:
        # the first registered instance owns the intrinsics for every scene
        return self._moving_intrinsics.get(camera_name)

    def get_moving_camera_extrinsics_block(
        self, camera_name: str, scene_id: int
    ) -> BlockHandle | None:
        entry = self._moving_cameras.get((camera_name, scene_id))
        return entry.extrinsics if entry is not None else None

    def get_static_target_pose_block(self, target_name: str) -> BlockHandle | None:
        entry = self._static_targets.get(target_name)
        return entry.pose if entry is not None else None

    def get_static_target_point_block(self, target_name: str, point_id: int) -> BlockHandle | None:
        entry = self._static_targets.get(target_name)
        if entry is None:
            return None
        return _point_or_none(entry.points, point_id)

    def get_moving_target_pose_block(self, target_name: str, scene_id: int) -> BlockHandle | None:
        entry = self._moving_targets.get((target_name, scene_id))
        return entry.pose if entry is not None else None

    def get_moving_target_point_block(self, target_name: str, point_id: int) -> BlockHandle | None:
        # point geometry is rigid, so no scene_id is needed
        points = self._moving_points.get(target_name)
        if points is None:
            return None
        return _point_or_none(points, point_id)

    def is_fixed(self, handle: BlockHandle) -> bool:
        return handle in self._fixed

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def static_cameras(self) -> Iterator[CameraBlocks]:
        return iter(list(self._static_cameras.values()))

    def moving_cameras(self) -> Iterator[CameraBlocks]:
        return iter(list(self._moving_cameras.values()))

    def static_targets(self) -> Iterator[TargetBlocks]:
        return iter(list(self._static_targets.values()))

    def moving_targets(self) -> Iterator[TargetBlocks]:
        return iter(list(self._moving_targets.values()))

    def __len__(self) -> int:
        return (
            len(self._static_cameras)
            + len(self._static_targets)
            + len(self._moving_cameras)
            + len(self._moving_targets)
        )


def _point_or_none(points: tuple[BlockHandle, ...], point_id: int) -> BlockHandle | None:
    if 0 <= point_id < len(points):
        return points[point_id]
    return None
