# calibundle - multi-camera, multi-target extrinsic calibration

__version__ = "0.1.0"

# Core types
from calibundle.types import (
    Camera,
    CameraIntrinsics,
    Observation,
    ObservationCmd,
    Pose,
    Roi,
    SolverSummary,
    Target,
)

# Errors
from calibundle.errors import (
    CalibrationError,
    ConfigIOError,
    ConfigParseError,
    DetectionTimeout,
    JobBusyError,
    MissingObserverError,
    TransformTimeout,
    TransformUnavailable,
    UnknownPatternType,
    UnresolvedParameterBlock,
)

# Calibration core
from calibundle.calibration import (
    BlockHandle,
    CalibrationBlocks,
    CostKind,
    LeastSquaresProblem,
    ObservationDataPoint,
    ObservationDataPointList,
    ParameterArena,
    SolverOptions,
    build_problem,
    run_observations,
    run_optimization,
)

# Scenes and observers
from calibundle.scene import ObservationScene
from calibundle.observer import (
    CameraObserver,
    ImageSequenceSource,
    PatternObserver,
)

# Configuration
from calibundle.config import (
    load_camera_definitions,
    load_target_definitions,
    load_job_definition,
    save_calibration_results,
    load_calibration_results,
)

# Job and service
from calibundle.job import CalibrationJob
from calibundle.service import (
    CalibrationService,
    TransformBuffer,
)

__all__ = [
    # Core types
    "Camera",
    "CameraIntrinsics",
    "Observation",
    "ObservationCmd",
    "Pose",
    "Roi",
    "SolverSummary",
    "Target",
    # Errors
    "CalibrationError",
    "ConfigIOError",
    "ConfigParseError",
    "DetectionTimeout",
    "JobBusyError",
    "MissingObserverError",
    "TransformTimeout",
    "TransformUnavailable",
    "UnknownPatternType",
    "UnresolvedParameterBlock",
    # Calibration core
    "BlockHandle",
    "CalibrationBlocks",
    "CostKind",
    "LeastSquaresProblem",
    "ObservationDataPoint",
    "ObservationDataPointList",
    "ParameterArena",
    "SolverOptions",
    "build_problem",
    "run_observations",
    "run_optimization",
    # Scenes and observers
    "ObservationScene",
    "CameraObserver",
    "ImageSequenceSource",
    "PatternObserver",
    # Configuration
    "load_camera_definitions",
    "load_target_definitions",
    "load_job_definition",
    "save_calibration_results",
    "load_calibration_results",
    # Job and service
    "CalibrationJob",
    "CalibrationService",
    "TransformBuffer",
]
