"""
Tests for calibundle.job (end-to-end calibration with synthetic observers).
"""

import threading

import numpy as np
import pytest

from calibundle.errors import ConfigParseError, JobBusyError, MissingObserverError
from calibundle.job import CalibrationJob
from calibundle.observer import CameraObserver


TRUE_BOARD_POSE = np.array([0.0, 0.0, 0.0, -0.075, -0.05, 1.0])
TRUE_CAM_B = np.array([0.0, 0.05, 0.0, -0.1, 0.0, 0.0])


class BlockingObserver(CameraObserver):
    """Holds trigger() until released, so a run stays in progress."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def trigger(self):
        self.started.set()
        self.release.wait(5.0)
        self._finish([])


@pytest.fixture
def loaded_job(calibration_files):
    job = CalibrationJob(*calibration_files)
    job.load()
    return job


def attach_synthetic_observers(job, projecting_observer):
    cameras = {c.name: c for c in job.cameras}
    job.attach_observer("cam_a", projecting_observer(cameras["cam_a"], np.zeros(6), {"board": TRUE_BOARD_POSE}))
    job.attach_observer("cam_b", projecting_observer(cameras["cam_b"], TRUE_CAM_B, {"board": TRUE_BOARD_POSE}))


class TestLoad:
    def test_load_registers_definitions(self, loaded_job):
        assert loaded_job.reference_frame == "world"
        assert len(loaded_job.cameras) == 3
        assert len(loaded_job.targets) == 2
        assert len(loaded_job.scenes) == 1
        assert loaded_job.detection_timeout == 0.5
        assert loaded_job.blocks.get_static_camera_extrinsics_block("cam_b") is not None
        assert loaded_job.blocks.get_moving_camera_extrinsics_block("cam_m", 1) is not None
        assert loaded_job.blocks.get_moving_target_pose_block("wand", 0) is not None

    def test_failed_load_leaves_job_unchanged(self, loaded_job):
        loaded_job.job_file.write_text("[[scenes]]\nscene_id = 0\n")

        with pytest.raises(ConfigParseError):
            loaded_job.load()

        assert loaded_job.reference_frame == "world"
        assert len(loaded_job.scenes) == 1

    def test_original_extrinsics(self, loaded_job):
        original = loaded_job.get_original_extrinsics()
        np.testing.assert_array_equal(original[("cam_b", None)], [0, 0, 0, -0.08, 0, 0])
        assert ("cam_m", 1) in original


class TestRun:
    def test_run_recovers_extrinsics(self, loaded_job, projecting_observer):
        attach_synthetic_observers(loaded_job, projecting_observer)

        summary = loaded_job.run()

        assert summary.converged
        assert summary.num_residuals == 24
        assert len(loaded_job.observation_data_points) == 24

        extrinsics = loaded_job.get_extrinsics()
        np.testing.assert_allclose(extrinsics[("cam_a", None)], np.zeros(6))
        np.testing.assert_allclose(extrinsics[("cam_b", None)], TRUE_CAM_B, atol=1e-4)
        np.testing.assert_allclose(loaded_job.get_target_poses()[("board", None)], TRUE_BOARD_POSE, atol=1e-4)

    def test_rerun_starts_from_configured_values(self, loaded_job, projecting_observer):
        attach_synthetic_observers(loaded_job, projecting_observer)
        first = loaded_job.run()

        second = loaded_job.run()

        assert second.initial_cost == pytest.approx(first.initial_cost)
        assert len(loaded_job.observation_data_points) == 24

    def test_only_observed_entities_after_run(self, loaded_job, projecting_observer):
        attach_synthetic_observers(loaded_job, projecting_observer)
        loaded_job.run()

        assert set(loaded_job.get_extrinsics()) == {("cam_a", None), ("cam_b", None)}

    def test_missing_observer(self, loaded_job, projecting_observer):
        with pytest.raises(MissingObserverError):
            loaded_job.run()
        assert not loaded_job.is_running

    def test_concurrent_run_rejected(self, loaded_job):
        blocking = BlockingObserver()
        loaded_job.attach_observer("cam_a", blocking)
        loaded_job.attach_observer("cam_b", BlockingObserver())
        loaded_job.observers["cam_b"].release.set()

        worker = threading.Thread(target=loaded_job.run)
        worker.start()
        try:
            assert blocking.started.wait(5.0)
            assert loaded_job.is_running
            with pytest.raises(JobBusyError):
                loaded_job.run()
        finally:
            blocking.release.set()
            worker.join(10.0)

        assert not loaded_job.is_running
