"""
Observation pipeline: scenes in, resolved data points out.

For every scene: reset the observers, configure targets, trigger capture,
wait for each camera, then resolve every detected point to the camera's and
target's parameter blocks. Registration of cameras and targets is idempotent,
so entities first seen here are added exactly once.
"""

from __future__ import annotations

from typing import Mapping

import calibundle.logger

from ..errors import DetectionTimeout, MissingObserverError, UnknownPatternType, UnresolvedParameterBlock
from ..observer import CameraObserver
from ..scene import ObservationScene, SceneTrigger, default_triggers, immediate_trigger
from ..types import Camera, Target
from .blocks import BlockHandle, CalibrationBlocks
from .observations import ObservationDataPoint, ObservationDataPointList

logger = calibundle.logger.get(__name__)

DEFAULT_DETECTION_TIMEOUT = 5.0  # seconds


def run_observations(
    scenes: list[ObservationScene],
    blocks: CalibrationBlocks,
    observers: Mapping[str, CameraObserver],
    store: ObservationDataPointList,
    timeout: float = DEFAULT_DETECTION_TIMEOUT,
    triggers: Mapping[str, SceneTrigger] | None = None,
) -> int:
    """
    Observe every scene in order and append data points to the store.

    Args:
        scenes: Scenes to process, in order
        blocks: Registry to resolve (and lazily register) entities in
        observers: camera name -> observer
        store: Observation store to append to
        timeout: Seconds to wait for each camera's detector
        triggers: trigger_type -> scene trigger

    Returns:
        Number of data points added
    """
    missing = sorted(
        {cam.name for scene in scenes for cam in scene.cameras_in_scene if cam.name not in observers}
    )
    if missing:
        raise MissingObserverError(f"No observer attached for camera(s): {', '.join(missing)}")

    if triggers is None:
        triggers = default_triggers()

    added = 0
    for scene in scenes:
        trigger = triggers.get(scene.trigger_type)
        if trigger is None:
            logger.warning(f"Unknown trigger type '{scene.trigger_type}', observing immediately")
            trigger = immediate_trigger
        trigger(scene)
        added += observe_scene(scene, blocks, observers, store, timeout)

    logger.info(f"Collected {added} observations from {len(scenes)} scene(s)")
    return added


def observe_scene(
    scene: ObservationScene,
    blocks: CalibrationBlocks,
    observers: Mapping[str, CameraObserver],
    store: ObservationDataPointList,
    timeout: float = DEFAULT_DETECTION_TIMEOUT,
) -> int:
    scene_id = scene.scene_id
    logger.info(f"Processing scene {scene_id}")

    for camera in scene.cameras_in_scene:
        observer = observers[camera.name]
        observer.clear_observations()
        observer.clear_targets()

    for command in scene.observation_commands:
        try:
            observers[command.camera.name].add_target(command.target, command.roi)
        except UnknownPatternType as e:
            logger.error(
                f"Skipping {command.target.name} for camera {command.camera.name} "
                f"in scene {scene_id}: {e}"
            )

    for camera in scene.cameras_in_scene:
        observers[camera.name].trigger()

    added = 0
    for camera in scene.cameras_in_scene:
        observer = observers[camera.name]
        try:
            wait_for_observer(observer, camera.name, scene_id, timeout)
        except DetectionTimeout as e:
            logger.warning(f"{e}, skipping camera for this scene")
            continue

        intrinsics, extrinsics = resolve_camera_blocks(blocks, camera, scene_id)

        observations = observer.get_observations()
        for observation in observations:
            pose, point = resolve_target_blocks(
                blocks, observation.target, observation.point_id, scene_id
            )
            store.add_observation_point(
                ObservationDataPoint(
                    camera_name=camera.name,
                    target_name=observation.target.name,
                    scene_id=scene_id,
                    point_id=observation.point_id,
                    camera_intrinsics=intrinsics,
                    camera_extrinsics=extrinsics,
                    target_pose=pose,
                    point_position=point,
                    image_x=observation.image_x,
                    image_y=observation.image_y,
                )
            )
        added += len(observations)
        logger.info(f"Scene {scene_id}: {len(observations)} observations from {camera.name}")

    return added


def wait_for_observer(
    observer: CameraObserver,
    camera_name: str,
    scene_id: int,
    timeout: float,
) -> None:
    if not observer.wait(timeout):
        raise DetectionTimeout(
            f"Camera {camera_name} did not finish detection within {timeout}s in scene {scene_id}"
        )


def resolve_camera_blocks(
    blocks: CalibrationBlocks,
    camera: Camera,
    scene_id: int,
) -> tuple[BlockHandle, BlockHandle]:
    """
    Register the camera if needed and return (intrinsics, extrinsics) handles.
    """
    if camera.moving:
        blocks.add_moving_camera(camera, scene_id)
        intrinsics = blocks.get_moving_camera_intrinsics_block(camera.name)
        extrinsics = blocks.get_moving_camera_extrinsics_block(camera.name, scene_id)
    else:
        blocks.add_static_camera(camera)
        intrinsics = blocks.get_static_camera_intrinsics_block(camera.name)
        extrinsics = blocks.get_static_camera_extrinsics_block(camera.name)

    if intrinsics is None or extrinsics is None:
        raise UnresolvedParameterBlock(
            f"Camera {camera.name} has no parameter blocks for scene {scene_id}"
        )
    return intrinsics, extrinsics


def resolve_target_blocks(
    blocks: CalibrationBlocks,
    target: Target,
    point_id: int,
    scene_id: int,
) -> tuple[BlockHandle, BlockHandle]:
    """
    Register the target if needed and return (pose, point) handles.
    """
    if target.moving:
        blocks.add_moving_target(target, scene_id)
        pose = blocks.get_moving_target_pose_block(target.name, scene_id)
        point = blocks.get_moving_target_point_block(target.name, point_id)
    else:
        blocks.add_static_target(target)
        pose = blocks.get_static_target_pose_block(target.name)
        point = blocks.get_static_target_point_block(target.name, point_id)

    if pose is None or point is None:
        raise UnresolvedParameterBlock(
            f"Target {target.name} point {point_id} has no parameter blocks for scene {scene_id}"
        )
    return pose, point
