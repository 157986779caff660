"""
Camera observers: the pattern-detector side of a calibration scene.

An observer is told which targets to look for, triggered once per scene, and
then reports the detected pattern points. Completion is signalled with an
Event so callers can block with a timeout instead of polling.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable

import cv2
import numpy as np

import calibundle.logger

from .errors import UnknownPatternType
from .types import Observation, Roi, Target

logger = calibundle.logger.get(__name__)

SUPPORTED_PATTERNS = ("chessboard", "circle_grid")
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff")

FrameSource = Callable[[], "np.ndarray | None"]


class CameraObserver(ABC):
    """
    Base class for per-camera pattern detectors.

    Subclasses implement trigger() and call _finish() with their detections.
    """

    def __init__(self):
        self._targets: list[tuple[Target, Roi | None]] = []
        self._observations: list[Observation] = []
        self._done = threading.Event()

    @property
    def targets(self) -> list[tuple[Target, Roi | None]]:
        return list(self._targets)

    def add_target(self, target: Target, roi: Roi | None = None) -> None:
        if target.target_type == "ar_tag":
            raise UnknownPatternType(
                f"AR tag target {target.name} is recognized but not supported"
            )
        if target.target_type not in SUPPORTED_PATTERNS:
            raise UnknownPatternType(
                f"target_type '{target.target_type}' of {target.name} is not a known "
                "pattern (chessboard, circle_grid or ar_tag)"
            )
        self._targets.append((target, roi))

    def clear_targets(self) -> None:
        self._targets = []

    def clear_observations(self) -> None:
        self._observations = []
        self._done.clear()

    @abstractmethod
    def trigger(self) -> None:
        """Capture one frame and start detection."""

    def is_done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until detection finishes. Returns False on timeout."""
        return self._done.wait(timeout)

    def get_observations(self) -> list[Observation]:
        return list(self._observations)

    def _finish(self, observations: Iterable[Observation]) -> None:
        self._observations = list(observations)
        self._done.set()


# ============================================================================
# OpenCV Pattern Observer
# ============================================================================


class PatternObserver(CameraObserver):
    """
    Detects chessboards and circle grids with OpenCV in frames from a source.

    A source returning None (no frame) leaves the observer not done, which the
    pipeline reports as a detection timeout.
    """

    def __init__(self, frame_source: FrameSource, name: str = ""):
        super().__init__()
        self.frame_source = frame_source
        self.name = name

    def trigger(self) -> None:
        frame = self.frame_source()
        if frame is None:
            logger.error(f"No frame available for camera {self.name}")
            return

        gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

        observations = []
        for target, roi in self._targets:
            observations.extend(detect_pattern(gray, target, roi))
        self._finish(observations)


def detect_pattern(
    gray: np.ndarray,
    target: Target,
    roi: Roi | None = None,
) -> list[Observation]:
    """
    Find a target's pattern in a grayscale image.

    Args:
        gray: Grayscale image
        target: Target describing the pattern
        roi: Optional region to search in

    Returns:
        Observations in full-image pixel coordinates, point ids in detector
        order. Empty if the pattern was not found.
    """
    offset_x, offset_y = 0, 0
    region = gray
    if roi is not None:
        rows, cols = gray.shape[0:2]
        if roi.width > cols or roi.height > rows:
            logger.error(f"ROI {roi} too big for image size {cols}x{rows}")
            return []
        if roi.width <= 0 or roi.height <= 0:
            logger.error(f"ROI {roi} is empty")
            return []
        if roi.x_min < 0 or roi.y_min < 0 or roi.x_max > cols or roi.y_max > rows:
            logger.error(f"ROI {roi} outside image of size {cols}x{rows}")
            return []
        region = np.ascontiguousarray(gray[roi.y_min : roi.y_max, roi.x_min : roi.x_max])
        offset_x, offset_y = roi.x_min, roi.y_min

    pattern_size = (target.pattern_cols, target.pattern_rows)

    if target.target_type == "chessboard":
        found, points = cv2.findChessboardCorners(
            region, pattern_size, flags=cv2.CALIB_CB_ADAPTIVE_THRESH
        )
        if found:
            criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.0001)
            points = cv2.cornerSubPix(region, points, (11, 11), (-1, -1), criteria)
    else:
        if target.circle_symmetric:
            flags = cv2.CALIB_CB_SYMMETRIC_GRID
        else:
            flags = cv2.CALIB_CB_ASYMMETRIC_GRID | cv2.CALIB_CB_CLUSTERING
        found, points = cv2.findCirclesGrid(region, pattern_size, flags=flags)

    if not found or points is None:
        logger.warning(f"Pattern {target.target_type} of {target.name} not found")
        return []

    points = points.reshape(-1, 2)
    logger.info(f"Found {len(points)} points on {target.name}")

    return [
        Observation(
            target=target,
            point_id=i,
            image_x=float(x) + offset_x,
            image_y=float(y) + offset_y,
        )
        for i, (x, y) in enumerate(points)
    ]


# ============================================================================
# Frame Sources
# ============================================================================


class ImageSequenceSource:
    """
    Frame source that returns the next image file on every call.
    """

    def __init__(self, paths: Iterable[Path]):
        self.paths = [Path(p) for p in paths]
        self._next = 0

    @classmethod
    def from_directory(cls, directory: Path) -> "ImageSequenceSource":
        paths = sorted(
            p for p in Path(directory).iterdir() if p.suffix.lower() in IMAGE_SUFFIXES
        )
        return cls(paths)

    def __call__(self) -> np.ndarray | None:
        if self._next >= len(self.paths):
            logger.error("Image sequence exhausted")
            return None

        path = self.paths[self._next]
        self._next += 1

        frame = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if frame is None:
            logger.error(f"Failed to read image {path}")
        return frame
