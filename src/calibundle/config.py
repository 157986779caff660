"""
Configuration loading/saving.

Three TOML documents describe a calibration job:
- cameras: [[static_cameras]] and [[moving_cameras]]
- targets: [[static_targets]] and [[moving_targets]]
- job: reference_frame, [optimization], [[scenes]] with [[scenes.observations]]

Loading fails fast with ConfigIOError / ConfigParseError. Nothing is returned
from a document that did not parse completely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import numpy as np
import rtoml

import calibundle.logger

from .calibration.pipeline import DEFAULT_DETECTION_TIMEOUT
from .calibration.problem import SolverOptions
from .errors import ConfigIOError, ConfigParseError
from .scene import ObservationScene
from .types import (
    Camera,
    CameraIntrinsics,
    ObservationCmd,
    Pose,
    Roi,
    SolverSummary,
    Target,
)

logger = calibundle.logger.get(__name__)

DEFAULT_TRIGGER_TYPES = ("immediate", "prompt")


@dataclass(frozen=True)
class JobDefinition:
    """
    Parsed job document.
    """

    reference_frame: str
    scenes: list[ObservationScene] = field(default_factory=list)
    solver_options: SolverOptions = SolverOptions()
    detection_timeout: float = DEFAULT_DETECTION_TIMEOUT


def _read_toml(path: Path, kind: str) -> dict:
    path = Path(path)
    try:
        return rtoml.load(path)
    except OSError as e:
        raise ConfigIOError(f"Couldn't open {kind} file {path}: {e}") from e
    except (rtoml.TomlParsingError, UnicodeDecodeError) as e:
        raise ConfigParseError(f"Failed to parse {kind} file {path}: {e}") from e


def _parse_pose(entry: dict) -> Pose:
    return Pose(
        angle_axis=(
            float(entry["angle_axis_ax"]),
            float(entry["angle_axis_ay"]),
            float(entry["angle_axis_az"]),
        ),
        position=(
            float(entry["position_x"]),
            float(entry["position_y"]),
            float(entry["position_z"]),
        ),
    )


# ============================================================================
# Cameras
# ============================================================================


def _parse_camera(entry: dict, moving: bool) -> Camera:
    intrinsics = CameraIntrinsics(
        focal_length_x=float(entry["focal_length_x"]),
        focal_length_y=float(entry["focal_length_y"]),
        center_x=float(entry["center_x"]),
        center_y=float(entry["center_y"]),
        distortion_k1=float(entry.get("distortion_k1", 0.0)),
        distortion_k2=float(entry.get("distortion_k2", 0.0)),
        distortion_k3=float(entry.get("distortion_k3", 0.0)),
        distortion_p1=float(entry.get("distortion_p1", 0.0)),
        distortion_p2=float(entry.get("distortion_p2", 0.0)),
    )
    return Camera(
        name=str(entry["camera_name"]),
        intrinsics=intrinsics,
        extrinsics=_parse_pose(entry),
        moving=moving,
        scene_id=int(entry["scene_id"]) if moving else None,
        fix_intrinsics=bool(entry.get("fix_intrinsics", True)),
        fix_extrinsics=bool(entry.get("fix_extrinsics", False)),
    )


def load_camera_definitions(path: Path) -> list[Camera]:
    """
    Load static and moving camera definitions.

    Args:
        path: Path to the cameras TOML file

    Returns:
        Static cameras followed by moving cameras, in file order
    """
    data = _read_toml(path, "camera")
    cameras = []

    for section, moving in (("static_cameras", False), ("moving_cameras", True)):
        entries = data.get(section, [])
        for i, entry in enumerate(entries):
            try:
                cameras.append(_parse_camera(entry, moving))
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigParseError(
                    f"Failed to read {section}[{i}] from {path}: {e!r}"
                ) from e
        if entries:
            logger.info(f"Found {len(entries)} {section.replace('_', ' ')}")

    return cameras


# ============================================================================
# Targets
# ============================================================================


def grid_points(rows: int, cols: int, spacing: float) -> tuple[tuple[float, float, float], ...]:
    """
    Planar pattern points, row by row, x varying fastest.

    This is the order OpenCV reports chessboard corners and circle grid
    centers in.
    """
    return tuple(
        (col * spacing, row * spacing, 0.0) for row in range(rows) for col in range(cols)
    )


def _parse_target(entry: dict, moving: bool) -> Target:
    rows = int(entry.get("pattern_rows", 0))
    cols = int(entry.get("pattern_cols", 0))

    raw_points = entry.get("points")
    if raw_points is None:
        points = grid_points(rows, cols, float(entry["point_spacing"]))
    else:
        points = []
        for point in raw_points:
            x, y, z = point
            points.append((float(x), float(y), float(z)))
        points = tuple(points)

    num_points = int(entry.get("num_points", len(points)))
    if num_points != len(points):
        raise ValueError(f"num_points is {num_points} but {len(points)} points are listed")

    return Target(
        name=str(entry["target_name"]),
        points=points,
        pose=_parse_pose(entry),
        moving=moving,
        scene_id=int(entry["scene_id"]) if moving else None,
        target_type=str(entry.get("target_type", "chessboard")),
        pattern_rows=rows,
        pattern_cols=cols,
        circle_symmetric=bool(entry.get("circle_symmetric", True)),
        fix_points=bool(entry.get("fix_points", True)),
        fix_pose=bool(entry.get("fix_pose", False)),
    )


def load_target_definitions(path: Path) -> list[Target]:
    """
    Load static and moving target definitions.

    Args:
        path: Path to the targets TOML file

    Returns:
        Static targets followed by moving targets, in file order
    """
    data = _read_toml(path, "target")
    targets = []

    for section, moving in (("static_targets", False), ("moving_targets", True)):
        entries = data.get(section, [])
        for i, entry in enumerate(entries):
            try:
                targets.append(_parse_target(entry, moving))
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigParseError(
                    f"Failed to read {section}[{i}] from {path}: {e!r}"
                ) from e
        if entries:
            logger.info(f"Found {len(entries)} {section.replace('_', ' ')}")

    return targets


# ============================================================================
# Job
# ============================================================================


def _find_definition(definitions, name: str, scene_id: int, kind: str):
    """
    Definition named `name`, preferring the one owned by `scene_id`.
    """
    matches = [d for d in definitions if d.name == name]
    if not matches:
        raise ConfigParseError(f"Scene {scene_id} references unknown {kind} '{name}'")
    for definition in matches:
        if definition.scene_id == scene_id:
            return definition
    return matches[0]


def _parse_roi(value) -> Roi | None:
    if value is None:
        return None
    x_min, x_max, y_min, y_max = (int(v) for v in value)
    if x_min < 0 or y_min < 0:
        raise ValueError(f"ROI {list(value)} has negative bounds")
    if x_max <= x_min or y_max <= y_min:
        raise ValueError(f"Empty ROI {list(value)}")
    return Roi(x_min=x_min, x_max=x_max, y_min=y_min, y_max=y_max)


def _parse_solver_options(section: dict) -> SolverOptions:
    defaults = SolverOptions()
    return SolverOptions(
        max_iterations=int(section.get("max_iterations", defaults.max_iterations)),
        function_tolerance=float(section.get("function_tolerance", defaults.function_tolerance)),
        loss=str(section.get("loss", defaults.loss)),
        method=str(section.get("method", defaults.method)),
        verbose=int(section.get("verbose", defaults.verbose)),
    )


def load_job_definition(
    path: Path,
    cameras: list[Camera],
    targets: list[Target],
    trigger_types: Iterable[str] = DEFAULT_TRIGGER_TYPES,
) -> JobDefinition:
    """
    Load the job document and link its observations to camera/target definitions.

    Args:
        path: Path to the job TOML file
        cameras: Loaded camera definitions
        targets: Loaded target definitions
        trigger_types: Accepted scene trigger types

    Returns:
        JobDefinition with scenes in file order
    """
    data = _read_toml(path, "job")
    trigger_types = set(trigger_types)

    try:
        reference_frame = str(data["reference_frame"])
        optimization = data.get("optimization", {})
        solver_options = _parse_solver_options(optimization)
        detection_timeout = float(optimization.get("detection_timeout", DEFAULT_DETECTION_TIMEOUT))

        scenes = []
        seen_ids = set()
        for scene_data in data.get("scenes", []):
            scene_id = int(scene_data["scene_id"])
            if scene_id in seen_ids:
                raise ConfigParseError(f"Duplicate scene_id {scene_id} in {path}")
            seen_ids.add(scene_id)

            trigger_type = str(scene_data.get("trigger_type", "immediate"))
            if trigger_type not in trigger_types:
                raise ConfigParseError(
                    f"Scene {scene_id} has unknown trigger_type '{trigger_type}'"
                )

            scene = ObservationScene(scene_id=scene_id, trigger_type=trigger_type)
            for obs in scene_data.get("observations", []):
                camera = _find_definition(cameras, str(obs["camera"]), scene_id, "camera")
                target = _find_definition(targets, str(obs["target"]), scene_id, "target")
                scene.add_observation(ObservationCmd(camera, target, _parse_roi(obs.get("roi"))))

            logger.info(
                f"Scene {scene_id}: {len(scene.observation_commands)} observations, "
                f"{len(scene.cameras_in_scene)} camera(s)"
            )
            scenes.append(scene)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigParseError(f"Failed to read job file {path}: {e!r}") from e

    return JobDefinition(
        reference_frame=reference_frame,
        scenes=scenes,
        solver_options=solver_options,
        detection_timeout=detection_timeout,
    )


# ============================================================================
# Results (TOML)
# ============================================================================


def _pose_entries(poses: dict[tuple[str, int | None], np.ndarray], name_key: str) -> list[dict]:
    entries = []
    for (name, scene_id), vector in poses.items():
        entry = {
            name_key: name,
            "angle_axis": [float(v) for v in vector[0:3]],
            "position": [float(v) for v in vector[3:6]],
        }
        if scene_id is not None:
            entry["scene_id"] = scene_id
        entries.append(entry)
    return entries


def save_calibration_results(
    path: Path,
    extrinsics: dict[tuple[str, int | None], np.ndarray],
    target_poses: dict[tuple[str, int | None], np.ndarray],
    summary: SolverSummary | None = None,
) -> None:
    """
    Save optimized camera extrinsics and target poses to a TOML file.

    Args:
        path: Output file
        extrinsics: (camera_name, scene_id or None) -> 6-vector
        target_poses: (target_name, scene_id or None) -> 6-vector
        summary: Optional solver summary to record alongside
    """
    data = {
        "cameras": _pose_entries(extrinsics, "camera_name"),
        "targets": _pose_entries(target_poses, "target_name"),
    }
    if summary is not None:
        data["summary"] = {
            "converged": summary.converged,
            "iterations": summary.iterations,
            "initial_cost": summary.initial_cost,
            "final_cost": summary.final_cost,
            "num_residuals": summary.num_residuals,
        }

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        rtoml.dump(data, f)


def load_calibration_results(
    path: Path,
) -> tuple[dict[tuple[str, int | None], np.ndarray], dict[tuple[str, int | None], np.ndarray]] | None:
    """
    Load results written by save_calibration_results.

    Returns:
        (extrinsics, target_poses), or None if the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        return None

    data = _read_toml(path, "results")

    def poses(entries: list[dict], name_key: str) -> dict:
        return {
            (entry[name_key], entry.get("scene_id")): np.hstack(
                [entry["angle_axis"], entry["position"]]
            ).astype(np.float64)
            for entry in entries
        }

    return poses(data.get("cameras", []), "camera_name"), poses(data.get("targets", []), "target_name")
