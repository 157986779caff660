"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest

from calibundle.calibration.costs import project_point
from calibundle.observer import CameraObserver
from calibundle.types import (
    Camera,
    CameraIntrinsics,
    Observation,
    Pose,
    Target,
    intrinsics_to_vector,
    pose_to_vector,
)


class ScriptedObserver(CameraObserver):
    """
    Observer that reports a fixed list of (point_id, x, y) per configured target.

    finishes=False never signals completion, to exercise detection timeouts.
    """

    def __init__(self, points=None, finishes=True):
        super().__init__()
        self.points = points if points is not None else []
        self.finishes = finishes
        self.trigger_count = 0

    def trigger(self):
        self.trigger_count += 1
        if not self.finishes:
            return
        observations = [
            Observation(target=target, point_id=pid, image_x=x, image_y=y)
            for target, _ in self._targets
            for pid, x, y in self.points
        ]
        self._finish(observations)


class ProjectingObserver(CameraObserver):
    """
    Observer that synthesizes exact detections from a ground-truth rig.

    true_target_poses maps target name -> 6-vector, or a callable taking the
    trigger count (0-based) for targets that move between scenes.
    """

    def __init__(self, camera, true_extrinsics, true_target_poses):
        super().__init__()
        self.camera = camera
        self.true_extrinsics = np.asarray(true_extrinsics, dtype=np.float64)
        self.true_target_poses = true_target_poses
        self.trigger_count = 0

    def trigger(self):
        intrinsics = intrinsics_to_vector(self.camera.intrinsics)
        observations = []
        for target, _ in self._targets:
            pose = self.true_target_poses[target.name]
            if callable(pose):
                pose = pose(self.trigger_count)
            for pid, point in enumerate(target.points):
                x, y = project_point(
                    intrinsics,
                    self.true_extrinsics,
                    np.asarray(pose, dtype=np.float64),
                    np.asarray(point, dtype=np.float64),
                )
                observations.append(Observation(target, pid, float(x), float(y)))
        self.trigger_count += 1
        self._finish(observations)


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def sample_intrinsics():
    """640x480 pinhole camera, no distortion."""
    return CameraIntrinsics(
        focal_length_x=800.0,
        focal_length_y=800.0,
        center_x=320.0,
        center_y=240.0,
    )


@pytest.fixture
def sample_camera(sample_intrinsics):
    return Camera(name="cam_a", intrinsics=sample_intrinsics)


@pytest.fixture
def sample_moving_camera(sample_intrinsics):
    return Camera(name="cam_m", intrinsics=sample_intrinsics, moving=True, scene_id=0)


@pytest.fixture
def board_points():
    """4x3 planar grid, 5cm spacing."""
    return tuple(
        (col * 0.05, row * 0.05, 0.0) for row in range(3) for col in range(4)
    )


@pytest.fixture
def sample_target(board_points):
    """Static chessboard 1m in front of the world origin."""
    return Target(
        name="board",
        points=board_points,
        pose=Pose(position=(-0.075, -0.05, 1.0)),
        pattern_rows=3,
        pattern_cols=4,
    )


@pytest.fixture
def sample_moving_target(board_points):
    return Target(
        name="wand",
        points=board_points,
        pose=Pose(position=(0.0, 0.0, 1.0)),
        moving=True,
        scene_id=0,
        pattern_rows=3,
        pattern_cols=4,
    )


@pytest.fixture
def four_points():
    """Deterministic detector output: 4 points."""
    return [(0, 100.0, 100.0), (1, 200.0, 100.0), (2, 100.0, 200.0), (3, 200.0, 200.0)]


@pytest.fixture
def scripted_observer():
    return ScriptedObserver


@pytest.fixture
def projecting_observer():
    return ProjectingObserver


@pytest.fixture
def identity_pose_vector():
    return pose_to_vector(Pose())


CAMERAS_TOML = """
[[static_cameras]]
camera_name = "cam_a"
angle_axis_ax = 0.0
angle_axis_ay = 0.0
angle_axis_az = 0.0
position_x = 0.0
position_y = 0.0
position_z = 0.0
focal_length_x = 800.0
focal_length_y = 800.0
center_x = 320.0
center_y = 240.0
fix_extrinsics = true

[[static_cameras]]
camera_name = "cam_b"
angle_axis_ax = 0.0
angle_axis_ay = 0.0
angle_axis_az = 0.0
position_x = -0.08
position_y = 0.0
position_z = 0.0
focal_length_x = 800.0
focal_length_y = 800.0
center_x = 320.0
center_y = 240.0
distortion_k1 = 0.0

[[moving_cameras]]
camera_name = "cam_m"
scene_id = 1
angle_axis_ax = 0.0
angle_axis_ay = 0.0
angle_axis_az = 0.0
position_x = 0.0
position_y = 0.0
position_z = 0.0
focal_length_x = 800.0
focal_length_y = 800.0
center_x = 320.0
center_y = 240.0
"""

TARGETS_TOML = """
[[static_targets]]
target_name = "board"
target_type = "chessboard"
pattern_rows = 3
pattern_cols = 4
point_spacing = 0.05
angle_axis_ax = 0.0
angle_axis_ay = 0.0
angle_axis_az = 0.0
position_x = -0.06
position_y = -0.04
position_z = 0.97

[[moving_targets]]
target_name = "wand"
scene_id = 0
target_type = "circle_grid"
pattern_rows = 1
pattern_cols = 2
circle_symmetric = false
num_points = 2
points = [[0.0, 0.0, 0.0], [0.1, 0.0, 0.0]]
angle_axis_ax = 0.0
angle_axis_ay = 0.0
angle_axis_az = 0.0
position_x = 0.0
position_y = 0.0
position_z = 1.0
"""

JOB_TOML = """
reference_frame = "world"

[optimization]
max_iterations = 200
function_tolerance = 1e-12
detection_timeout = 0.5

[[scenes]]
scene_id = 0
trigger_type = "immediate"

[[scenes.observations]]
camera = "cam_a"
target = "board"

[[scenes.observations]]
camera = "cam_b"
target = "board"
roi = [0, 640, 0, 480]
"""


@pytest.fixture
def calibration_files(temp_dir):
    """Write cameras/targets/job documents; returns their paths."""
    paths = (temp_dir / "cameras.toml", temp_dir / "targets.toml", temp_dir / "job.toml")
    for path, text in zip(paths, (CAMERAS_TOML, TARGETS_TOML, JOB_TOML)):
        path.write_text(text)
    return paths
