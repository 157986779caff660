"""
Calibration job: configuration, observation pass and optimization.

Usage:
    job = CalibrationJob("cameras.toml", "targets.toml", "job.toml")
    job.load()
    job.attach_observer("cam_left", PatternObserver(source))
    summary = job.run()
    extrinsics = job.get_extrinsics()
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Mapping

import numpy as np

import calibundle.logger

from .calibration.blocks import CalibrationBlocks
from .calibration.builder import run_optimization
from .calibration.observations import ObservationDataPointList
from .calibration.pipeline import DEFAULT_DETECTION_TIMEOUT, run_observations
from .calibration.problem import SolverOptions
from .config import (
    load_camera_definitions,
    load_job_definition,
    load_target_definitions,
)
from .errors import JobBusyError
from .observer import CameraObserver
from .scene import ObservationScene, SceneTrigger, default_triggers
from .types import Camera, SolverSummary, Target, pose_to_vector

logger = calibundle.logger.get(__name__)

PoseTable = dict[tuple[str, int | None], np.ndarray]


class CalibrationJob:
    """
    Owns the registry, scenes and observation store for one calibration.

    A job can be run repeatedly; every run starts from the configured initial
    values. run() refuses to start while another run is in progress.
    """

    def __init__(
        self,
        camera_file: Path,
        target_file: Path,
        job_file: Path,
        observers: Mapping[str, CameraObserver] | None = None,
        triggers: Mapping[str, SceneTrigger] | None = None,
    ):
        self.camera_file = Path(camera_file)
        self.target_file = Path(target_file)
        self.job_file = Path(job_file)

        self.observers: dict[str, CameraObserver] = dict(observers or {})
        self.triggers: dict[str, SceneTrigger] = default_triggers()
        if triggers:
            self.triggers.update(triggers)

        self.blocks = CalibrationBlocks()
        self.observation_data_points = ObservationDataPointList()

        self.cameras: list[Camera] = []
        self.targets: list[Target] = []
        self.scenes: list[ObservationScene] = []
        self.reference_frame: str = ""
        self.solver_options = SolverOptions()
        self.detection_timeout = DEFAULT_DETECTION_TIMEOUT

        self._run_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def load(self) -> None:
        """
        Read the three configuration files and register their entities.

        Raises ConfigIOError / ConfigParseError; the job is left unchanged
        when any file fails.
        """
        cameras = load_camera_definitions(self.camera_file)
        targets = load_target_definitions(self.target_file)
        definition = load_job_definition(self.job_file, cameras, targets, self.triggers.keys())

        self.cameras = cameras
        self.targets = targets
        self.scenes = definition.scenes
        self.reference_frame = definition.reference_frame
        self.solver_options = definition.solver_options
        self.detection_timeout = definition.detection_timeout

        self.blocks.clear()
        self.observation_data_points.clear()
        self._register_definitions()

        logger.info(
            f"Loaded job: {len(cameras)} camera(s), {len(targets)} target(s), "
            f"{len(self.scenes)} scene(s), reference frame '{self.reference_frame}'"
        )

    def _register_definitions(self) -> None:
        for camera in self.cameras:
            if camera.moving:
                self.blocks.add_moving_camera(camera, camera.scene_id)
            else:
                self.blocks.add_static_camera(camera)
        for target in self.targets:
            if target.moving:
                self.blocks.add_moving_target(target, target.scene_id)
            else:
                self.blocks.add_static_target(target)

    def attach_observer(self, camera_name: str, observer: CameraObserver) -> None:
        self.observers[camera_name] = observer

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def run_observations(self) -> int:
        """
        Full observation pass from a clean registry.

        Returns:
            Number of data points collected
        """
        self.blocks.clear()
        self.observation_data_points.clear()
        return run_observations(
            self.scenes,
            self.blocks,
            self.observers,
            self.observation_data_points,
            timeout=self.detection_timeout,
            triggers=self.triggers,
        )

    def run_optimization(self, options: SolverOptions | None = None) -> SolverSummary:
        return run_optimization(
            self.observation_data_points,
            self.blocks,
            options if options is not None else self.solver_options,
        )

    def run(self, options: SolverOptions | None = None) -> SolverSummary:
        if not self._run_lock.acquire(blocking=False):
            raise JobBusyError("A calibration run is already in progress")
        try:
            self.run_observations()
            return self.run_optimization(options)
        finally:
            self._run_lock.release()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def get_extrinsics(self) -> PoseTable:
        """Current camera extrinsics keyed by (name, scene_id or None)."""
        arena = self.blocks.arena
        table = {(e.camera.name, None): arena.read(e.extrinsics) for e in self.blocks.static_cameras()}
        table.update(
            {(e.camera.name, e.scene_id): arena.read(e.extrinsics) for e in self.blocks.moving_cameras()}
        )
        return table

    def get_target_poses(self) -> PoseTable:
        """Current target poses keyed by (name, scene_id or None)."""
        arena = self.blocks.arena
        table = {(e.target.name, None): arena.read(e.pose) for e in self.blocks.static_targets()}
        table.update(
            {(e.target.name, e.scene_id): arena.read(e.pose) for e in self.blocks.moving_targets()}
        )
        return table

    def get_original_extrinsics(self) -> PoseTable:
        """Camera extrinsics as configured, before any optimization."""
        return {
            (camera.name, camera.scene_id if camera.moving else None): pose_to_vector(camera.extrinsics)
            for camera in self.cameras
        }
