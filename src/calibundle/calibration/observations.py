"""
Observation store: resolved data points ready for problem building.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .blocks import BlockHandle


@dataclass(frozen=True, slots=True)
class ObservationDataPoint:
    """
    One observed pattern point tied to the parameter blocks it constrains.

    The block fields are handles into the registry's arena, so values the
    solver writes are seen by every data point sharing a block.
    """

    camera_name: str
    target_name: str
    scene_id: int
    point_id: int
    camera_intrinsics: BlockHandle
    camera_extrinsics: BlockHandle
    target_pose: BlockHandle
    point_position: BlockHandle
    image_x: float
    image_y: float


class ObservationDataPointList:
    """Append-only, ordered collection of data points."""

    def __init__(self):
        self._items: list[ObservationDataPoint] = []

    def add_observation_point(self, data_point: ObservationDataPoint) -> None:
        self._items.append(data_point)

    def clear(self) -> None:
        self._items = []

    @property
    def items(self) -> tuple[ObservationDataPoint, ...]:
        return tuple(self._items)

    def for_camera(self, camera_name: str, scene_id: int | None = None) -> list[ObservationDataPoint]:
        return [
            dp
            for dp in self._items
            if dp.camera_name == camera_name and (scene_id is None or dp.scene_id == scene_id)
        ]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ObservationDataPoint]:
        return iter(self._items)
