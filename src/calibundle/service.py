"""
Calibration service: runs a job and publishes camera poses as frame transforms.

Transforms are 4x4 homogeneous matrices. A transform stored for
(parent, child) maps child-frame coordinates into the parent frame.
"""

from __future__ import annotations

import threading
from typing import Protocol

import numpy as np

import calibundle.logger

from .errors import TransformTimeout, TransformUnavailable
from .job import CalibrationJob, PoseTable
from .types import SolverSummary, invert_transform, pose_vector_to_matrix

logger = calibundle.logger.get(__name__)

DEFAULT_LOOKUP_TIMEOUT = 3.0  # seconds


class FrameTransformer(Protocol):
    def lookup(self, from_frame: str, to_frame: str, timeout: float) -> np.ndarray:
        """Transform of to_frame expressed in from_frame."""
        ...

    def broadcast(self, frame: str, parent_frame: str, transform: np.ndarray) -> None:
        ...


class TransformBuffer:
    """
    In-memory FrameTransformer. lookup() blocks until the transform is
    broadcast or the timeout expires.
    """

    def __init__(self):
        self._transforms: dict[tuple[str, str], np.ndarray] = {}
        self._condition = threading.Condition()

    def broadcast(self, frame: str, parent_frame: str, transform: np.ndarray) -> None:
        with self._condition:
            self._transforms[(parent_frame, frame)] = np.array(transform, dtype=np.float64)
            self._condition.notify_all()

    def lookup(self, from_frame: str, to_frame: str, timeout: float = DEFAULT_LOOKUP_TIMEOUT) -> np.ndarray:
        if from_frame == to_frame:
            return np.eye(4, dtype=np.float64)

        with self._condition:
            found = self._condition.wait_for(
                lambda: self._find(from_frame, to_frame) is not None, timeout=timeout
            )
            if not found:
                raise TransformTimeout(
                    f"No transform from {from_frame} to {to_frame} after {timeout}s"
                )
            return self._find(from_frame, to_frame)

    def _find(self, from_frame: str, to_frame: str) -> np.ndarray | None:
        direct = self._transforms.get((from_frame, to_frame))
        if direct is not None:
            return direct.copy()
        reverse = self._transforms.get((to_frame, from_frame))
        if reverse is not None:
            return invert_transform(reverse)
        return None

    def frames(self) -> list[tuple[str, str]]:
        with self._condition:
            return list(self._transforms)

    def get(self, parent_frame: str, frame: str) -> np.ndarray:
        """Non-blocking lookup of a broadcast transform."""
        with self._condition:
            transform = self._find(parent_frame, frame)
        if transform is None:
            raise TransformUnavailable(f"Transform {parent_frame} -> {frame} is not known")
        return transform


def camera_poses(extrinsics: PoseTable) -> dict[str, np.ndarray]:
    """
    Camera-to-reference transforms from world-to-camera extrinsics.

    Moving cameras are published once per scene as "<name>_scene<id>".
    """
    poses = {}
    for (name, scene_id), vector in extrinsics.items():
        frame = name if scene_id is None else f"{name}_scene{scene_id}"
        poses[frame] = invert_transform(pose_vector_to_matrix(vector))
    return poses


class CalibrationService:
    """
    Runs a calibration job on request and broadcasts the resulting camera
    poses in the job's reference frame.

    If target_frame is given, poses are computed relative to the target and
    re-expressed in the reference frame with the transform looked up from
    the transformer.
    """

    def __init__(
        self,
        job: CalibrationJob,
        transformer: FrameTransformer,
        target_frame: str | None = None,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
    ):
        self.job = job
        self.transformer = transformer
        self.target_frame = target_frame
        self.lookup_timeout = lookup_timeout
        self.calibrated = False
        self.published: dict[str, np.ndarray] = {}

    def _reference_correction(self) -> np.ndarray:
        if self.target_frame is None:
            return np.eye(4, dtype=np.float64)
        return self.transformer.lookup(
            self.job.reference_frame, self.target_frame, self.lookup_timeout
        )

    def _broadcast(self, poses: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        try:
            correction = self._reference_correction()
        except (TransformTimeout, TransformUnavailable) as e:
            logger.error(f"Couldn't place cameras in {self.job.reference_frame}: {e}")
            return {}

        published = {}
        for frame, pose in poses.items():
            transform = correction @ pose
            self.transformer.broadcast(frame, self.job.reference_frame, transform)
            published[frame] = transform
        logger.info(f"Published {len(published)} camera pose(s) in {self.job.reference_frame}")
        return published

    def publish_initial(self) -> dict[str, np.ndarray]:
        """Broadcast camera poses as configured."""
        self.published = self._broadcast(camera_poses(self.job.get_original_extrinsics()))
        return self.published

    def calibrate(self) -> SolverSummary:
        """Run the job and broadcast optimized camera poses."""
        summary = self.job.run()
        if not summary.converged:
            logger.warning(f"Calibration did not converge: {summary.message}")

        self.published = self._broadcast(camera_poses(self.job.get_extrinsics()))
        self.calibrated = bool(self.published)
        return summary
