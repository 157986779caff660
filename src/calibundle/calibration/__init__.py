"""
Calibration core for calibundle.

Parameter registry, observation pipeline and problem building. The pipeline
runs single-threaded; the registry serializes its own writes.
"""

from .blocks import (
    BlockHandle,
    CalibrationBlocks,
    CameraBlocks,
    ParameterArena,
    TargetBlocks,
)

from .observations import (
    ObservationDataPoint,
    ObservationDataPointList,
)

from .pipeline import (
    DEFAULT_DETECTION_TIMEOUT,
    observe_scene,
    run_observations,
)

from .costs import (
    CostKind,
    project_point,
    reprojection_residual,
)

from .problem import (
    LeastSquaresProblem,
    SolverOptions,
)

from .builder import (
    build_problem,
    run_optimization,
    select_cost_kind,
)

__all__ = [
    # Registry
    "BlockHandle",
    "CalibrationBlocks",
    "CameraBlocks",
    "ParameterArena",
    "TargetBlocks",
    # Observations
    "ObservationDataPoint",
    "ObservationDataPointList",
    "DEFAULT_DETECTION_TIMEOUT",
    "observe_scene",
    "run_observations",
    # Costs
    "CostKind",
    "project_point",
    "reprojection_residual",
    # Problem
    "LeastSquaresProblem",
    "SolverOptions",
    "build_problem",
    "run_optimization",
    "select_cost_kind",
]
