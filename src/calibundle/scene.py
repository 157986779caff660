"""
Scene model: observation commands grouped into scenes, plus scene triggers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import calibundle.logger

from .types import Camera, ObservationCmd, Target

logger = calibundle.logger.get(__name__)


@dataclass(slots=True)
class ObservationScene:
    """
    One synchronized observation event.

    cameras_in_scene holds each camera once, in the order it first appears
    in the command list.
    """

    scene_id: int
    trigger_type: str = "immediate"
    observation_commands: list[ObservationCmd] = field(default_factory=list)
    cameras_in_scene: list[Camera] = field(default_factory=list)

    def add_observation(self, command: ObservationCmd) -> None:
        if all(cam.name != command.camera.name for cam in self.cameras_in_scene):
            self.cameras_in_scene.append(command.camera)
        self.observation_commands.append(command)

    @property
    def targets_in_scene(self) -> list[Target]:
        targets: list[Target] = []
        for command in self.observation_commands:
            if all(t.name != command.target.name for t in targets):
                targets.append(command.target)
        return targets


# ============================================================================
# Scene Triggers
# ============================================================================

SceneTrigger = Callable[[ObservationScene], None]


def immediate_trigger(scene: ObservationScene) -> None:
    """Start observing right away."""


def make_prompt_trigger(prompt: Callable[[str], str] = input) -> SceneTrigger:
    """
    Trigger that blocks until an operator confirms the rig is in position.
    """

    def trigger(scene: ObservationScene) -> None:
        cameras = ", ".join(cam.name for cam in scene.cameras_in_scene)
        logger.info(f"Waiting for operator before scene {scene.scene_id}")
        prompt(f"Position scene {scene.scene_id} ({cameras}) and press Enter ")

    return trigger


def default_triggers() -> dict[str, SceneTrigger]:
    return {
        "immediate": immediate_trigger,
        "prompt": make_prompt_trigger(),
    }
