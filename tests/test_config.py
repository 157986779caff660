"""
Tests for calibundle.config (TOML documents).
"""

import numpy as np
import pytest

from calibundle.config import (
    grid_points,
    load_calibration_results,
    load_camera_definitions,
    load_job_definition,
    load_target_definitions,
    save_calibration_results,
)
from calibundle.errors import ConfigIOError, ConfigParseError
from calibundle.types import SolverSummary


JOB_HEADER = 'reference_frame = "world"\n'


def write(path, text):
    path.write_text(text)
    return path


class TestCameraDefinitions:
    def test_load(self, calibration_files):
        cameras = load_camera_definitions(calibration_files[0])

        assert [c.name for c in cameras] == ["cam_a", "cam_b", "cam_m"]
        cam_a, cam_b, cam_m = cameras
        assert cam_a.fix_extrinsics is True
        assert cam_a.fix_intrinsics is True
        assert cam_b.fix_extrinsics is False
        assert cam_b.extrinsics.position == (-0.08, 0.0, 0.0)
        assert cam_b.intrinsics.focal_length_x == 800.0
        assert cam_b.intrinsics.distortion_p2 == 0.0
        assert cam_m.moving is True
        assert cam_m.scene_id == 1
        assert cam_a.scene_id is None

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigIOError):
            load_camera_definitions(temp_dir / "missing.toml")

    def test_malformed_toml(self, temp_dir):
        path = write(temp_dir / "cameras.toml", "[[static_cameras]\ncamera_name = ")
        with pytest.raises(ConfigParseError):
            load_camera_definitions(path)

    def test_missing_key(self, temp_dir):
        path = write(temp_dir / "cameras.toml", '[[static_cameras]]\ncamera_name = "cam_a"\n')
        with pytest.raises(ConfigParseError, match="static_cameras"):
            load_camera_definitions(path)

    def test_empty_document(self, temp_dir):
        assert load_camera_definitions(write(temp_dir / "cameras.toml", "")) == []


class TestTargetDefinitions:
    def test_load(self, calibration_files):
        board, wand = load_target_definitions(calibration_files[1])

        assert board.name == "board"
        assert board.num_points == 12
        assert board.points[5] == pytest.approx((0.05, 0.05, 0.0))
        assert board.pose.position == (-0.06, -0.04, 0.97)
        assert board.moving is False

        assert wand.moving is True
        assert wand.scene_id == 0
        assert wand.target_type == "circle_grid"
        assert wand.circle_symmetric is False
        assert wand.points == ((0.0, 0.0, 0.0), (0.1, 0.0, 0.0))

    def test_num_points_mismatch(self, temp_dir):
        path = write(
            temp_dir / "targets.toml",
            """
[[static_targets]]
target_name = "t"
num_points = 3
points = [[0.0, 0.0, 0.0]]
angle_axis_ax = 0.0
angle_axis_ay = 0.0
angle_axis_az = 0.0
position_x = 0.0
position_y = 0.0
position_z = 0.0
""",
        )
        with pytest.raises(ConfigParseError, match="num_points"):
            load_target_definitions(path)

    def test_grid_points_row_major(self):
        points = grid_points(rows=2, cols=3, spacing=0.1)
        assert len(points) == 6
        assert points[1] == pytest.approx((0.1, 0.0, 0.0))
        assert points[3] == pytest.approx((0.0, 0.1, 0.0))


class TestJobDefinition:
    def load(self, calibration_files, job_path=None):
        cameras = load_camera_definitions(calibration_files[0])
        targets = load_target_definitions(calibration_files[1])
        return load_job_definition(job_path or calibration_files[2], cameras, targets)

    def test_load(self, calibration_files):
        job = self.load(calibration_files)

        assert job.reference_frame == "world"
        assert job.detection_timeout == 0.5
        assert job.solver_options.max_iterations == 200
        assert job.solver_options.function_tolerance == 1e-12
        assert job.solver_options.method == "trf"

        (scene,) = job.scenes
        assert scene.scene_id == 0
        assert [c.name for c in scene.cameras_in_scene] == ["cam_a", "cam_b"]
        assert scene.observation_commands[0].roi is None
        assert scene.observation_commands[1].roi.width == 640

    def test_observations_link_definitions(self, calibration_files):
        job = self.load(calibration_files)
        cameras = load_camera_definitions(calibration_files[0])

        assert job.scenes[0].observation_commands[0].camera == cameras[0]

    def test_moving_definition_prefers_scene(self, calibration_files, temp_dir):
        path = write(
            temp_dir / "job2.toml",
            JOB_HEADER
            + """
[[scenes]]
scene_id = 1
[[scenes.observations]]
camera = "cam_m"
target = "wand"
""",
        )
        job = self.load(calibration_files, path)

        command = job.scenes[0].observation_commands[0]
        assert command.camera.scene_id == 1
        # only scene 0 defines the wand, it is reused for scene 1
        assert command.target.scene_id == 0

    def test_unknown_camera(self, calibration_files, temp_dir):
        path = write(
            temp_dir / "job2.toml",
            JOB_HEADER + '[[scenes]]\nscene_id = 0\n[[scenes.observations]]\ncamera = "nope"\ntarget = "board"\n',
        )
        with pytest.raises(ConfigParseError, match="nope"):
            self.load(calibration_files, path)

    def test_duplicate_scene_id(self, calibration_files, temp_dir):
        path = write(temp_dir / "job2.toml", JOB_HEADER + "[[scenes]]\nscene_id = 0\n[[scenes]]\nscene_id = 0\n")
        with pytest.raises(ConfigParseError, match="Duplicate"):
            self.load(calibration_files, path)

    def test_unknown_trigger_type(self, calibration_files, temp_dir):
        path = write(temp_dir / "job2.toml", JOB_HEADER + '[[scenes]]\nscene_id = 0\ntrigger_type = "pedal"\n')
        with pytest.raises(ConfigParseError, match="pedal"):
            self.load(calibration_files, path)

    def test_empty_roi(self, calibration_files, temp_dir):
        path = write(
            temp_dir / "job2.toml",
            JOB_HEADER
            + '[[scenes]]\nscene_id = 0\n[[scenes.observations]]\ncamera = "cam_a"\ntarget = "board"\nroi = [10, 10, 0, 5]\n',
        )
        with pytest.raises(ConfigParseError):
            self.load(calibration_files, path)

    def test_negative_roi(self, calibration_files, temp_dir):
        path = write(
            temp_dir / "job2.toml",
            JOB_HEADER
            + '[[scenes]]\nscene_id = 0\n[[scenes.observations]]\ncamera = "cam_a"\ntarget = "board"\nroi = [-10, 100, 0, 50]\n',
        )
        with pytest.raises(ConfigParseError, match="negative"):
            self.load(calibration_files, path)

    @pytest.mark.parametrize("option", ['method = "lm"', 'method = "newton"', 'loss = "tukey"'])
    def test_unsupported_solver_option(self, calibration_files, temp_dir, option):
        path = write(temp_dir / "job2.toml", JOB_HEADER + f"[optimization]\n{option}\n")
        with pytest.raises(ConfigParseError):
            self.load(calibration_files, path)

    def test_robust_loss_accepted(self, calibration_files, temp_dir):
        path = write(temp_dir / "job2.toml", JOB_HEADER + '[optimization]\nmethod = "dogbox"\nloss = "huber"\n')
        job = self.load(calibration_files, path)
        assert job.solver_options.method == "dogbox"
        assert job.solver_options.loss == "huber"

    def test_missing_reference_frame(self, calibration_files, temp_dir):
        path = write(temp_dir / "job2.toml", "[[scenes]]\nscene_id = 0\n")
        with pytest.raises(ConfigParseError):
            self.load(calibration_files, path)


class TestCalibrationResults:
    def test_save_and_load_roundtrip(self, temp_dir):
        extrinsics = {
            ("cam_a", None): np.zeros(6),
            ("cam_m", 1): np.array([0.1, 0.2, 0.3, 1.0, 2.0, 3.0]),
        }
        target_poses = {("board", None): np.array([0, 0, 0, 0, 0, 1.0])}
        summary = SolverSummary(converged=True, iterations=7, final_cost=1e-9, initial_cost=12.5, num_residuals=24)
        path = temp_dir / "out" / "results.toml"

        save_calibration_results(path, extrinsics, target_poses, summary)
        loaded_extrinsics, loaded_poses = load_calibration_results(path)

        assert set(loaded_extrinsics) == set(extrinsics)
        np.testing.assert_array_almost_equal(loaded_extrinsics[("cam_m", 1)], extrinsics[("cam_m", 1)])
        np.testing.assert_array_almost_equal(loaded_poses[("board", None)], target_poses[("board", None)])
        assert "converged = true" in path.read_text()

    def test_load_missing(self, temp_dir):
        assert load_calibration_results(temp_dir / "nope.toml") is None
