#!/usr/bin/env python3
"""
Calibundle CLI - multi-camera extrinsic calibration.

Usage:
    calibundle check CAMERAS TARGETS JOB
        Load a job and show its cameras, targets and scenes
    calibundle run CAMERAS TARGETS JOB IMAGE_DIR [OUTPUT]
        Detect patterns in IMAGE_DIR/<camera_name>/* (one image per scene the
        camera takes part in, sorted by file name), optimize, and optionally
        write the results to OUTPUT
    calibundle --help
        Show this help
"""

import sys
from pathlib import Path


def _check(args: list[str]) -> int:
    from calibundle.job import CalibrationJob

    if len(args) != 3:
        print("Usage: calibundle check CAMERAS TARGETS JOB")
        return 1

    job = CalibrationJob(*args)
    job.load()

    print(f"Reference frame: {job.reference_frame}")
    print(f"Cameras ({len(job.cameras)}):")
    for camera in job.cameras:
        kind = f"moving, scene {camera.scene_id}" if camera.moving else "static"
        print(f"  {camera.name} ({kind})")
    print(f"Targets ({len(job.targets)}):")
    for target in job.targets:
        kind = f"moving, scene {target.scene_id}" if target.moving else "static"
        print(f"  {target.name} ({target.target_type}, {target.num_points} points, {kind})")
    print(f"Scenes ({len(job.scenes)}):")
    for scene in job.scenes:
        pairs = ", ".join(f"{c.camera.name}->{c.target.name}" for c in scene.observation_commands)
        print(f"  {scene.scene_id} [{scene.trigger_type}]: {pairs}")
    return 0


def _run(args: list[str]) -> int:
    from calibundle.config import save_calibration_results
    from calibundle.job import CalibrationJob
    from calibundle.observer import ImageSequenceSource, PatternObserver

    if len(args) not in (4, 5):
        print("Usage: calibundle run CAMERAS TARGETS JOB IMAGE_DIR [OUTPUT]")
        return 1

    job = CalibrationJob(*args[:3])
    job.load()

    image_dir = Path(args[3])
    for name in sorted({camera.name for camera in job.cameras}):
        camera_dir = image_dir / name
        if not camera_dir.is_dir():
            print(f"No image directory for camera {name}: {camera_dir}")
            return 1
        source = ImageSequenceSource.from_directory(camera_dir)
        job.attach_observer(name, PatternObserver(source, name=name))

    summary = job.run()

    print(f"Observations: {len(job.observation_data_points)}")
    print(f"Converged: {summary.converged} after {summary.iterations} iterations")
    print(f"Cost: {summary.initial_cost:.6g} -> {summary.final_cost:.6g}")
    for (name, scene_id), vector in job.get_extrinsics().items():
        label = name if scene_id is None else f"{name} (scene {scene_id})"
        print(f"  {label}: angle_axis={vector[0:3].round(6).tolist()} position={vector[3:6].round(6).tolist()}")

    if len(args) == 5:
        save_calibration_results(Path(args[4]), job.get_extrinsics(), job.get_target_poses(), summary)
        print(f"Results written to {args[4]}")

    return 0 if summary.converged else 2


def main():
    from calibundle.errors import CalibrationError

    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print(__doc__)
        return 0

    command = sys.argv[1]
    args = sys.argv[2:]

    commands = {
        "check": _check,
        "run": _run,
    }

    if command not in commands:
        print(f"Unknown command: {command}")
        print("Run 'calibundle --help' for usage")
        return 1

    try:
        return commands[command](args)
    except CalibrationError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
