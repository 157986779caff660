"""
Problem builder: observation store -> least-squares problem -> summary.

The cost variant for each data point is chosen from the fixed flags the
registry recorded when the camera and target were registered.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

import calibundle.logger

from ..errors import UnresolvedParameterBlock
from ..types import SolverSummary
from .blocks import CalibrationBlocks
from .costs import CostKind
from .observations import ObservationDataPoint
from .problem import LeastSquaresProblem, SolverOptions

logger = calibundle.logger.get(__name__)


def select_cost_kind(blocks: CalibrationBlocks, data_point: ObservationDataPoint) -> CostKind:
    intrinsics_fixed = blocks.is_fixed(data_point.camera_intrinsics)
    point_fixed = blocks.is_fixed(data_point.point_position)

    if intrinsics_fixed and point_fixed:
        return CostKind.INTRINSICS_POINT_FIXED
    if intrinsics_fixed:
        return CostKind.INTRINSICS_FIXED
    if point_fixed:
        return CostKind.POINT_FIXED
    return CostKind.FULL


def build_residual(
    blocks: CalibrationBlocks,
    data_point: ObservationDataPoint,
) -> tuple[CostKind, np.ndarray, list]:
    """
    Constants and parameter block handles for one data point.

    Returns:
        (kind, constants, parameter_blocks)
    """
    arena = blocks.arena
    for handle in (
        data_point.camera_intrinsics,
        data_point.camera_extrinsics,
        data_point.target_pose,
        data_point.point_position,
    ):
        if handle not in arena:
            raise UnresolvedParameterBlock(
                f"Observation of {data_point.target_name} point {data_point.point_id} by "
                f"{data_point.camera_name} in scene {data_point.scene_id} references {handle}, "
                "which is not registered"
            )

    kind = select_cost_kind(blocks, data_point)
    observed = [data_point.image_x, data_point.image_y]

    if kind is CostKind.FULL:
        constants = np.array(observed, dtype=np.float64)
        parameter_blocks = [
            data_point.camera_intrinsics,
            data_point.camera_extrinsics,
            data_point.target_pose,
            data_point.point_position,
        ]
    elif kind is CostKind.INTRINSICS_FIXED:
        constants = np.hstack([observed, arena.read(data_point.camera_intrinsics)])
        parameter_blocks = [
            data_point.camera_extrinsics,
            data_point.target_pose,
            data_point.point_position,
        ]
    elif kind is CostKind.POINT_FIXED:
        constants = np.hstack([observed, arena.read(data_point.point_position)])
        parameter_blocks = [
            data_point.camera_intrinsics,
            data_point.camera_extrinsics,
            data_point.target_pose,
        ]
    else:
        constants = np.hstack(
            [
                observed,
                arena.read(data_point.camera_intrinsics),
                arena.read(data_point.point_position),
            ]
        )
        parameter_blocks = [data_point.camera_extrinsics, data_point.target_pose]

    return kind, constants, parameter_blocks


def build_problem(
    data_points: Iterable[ObservationDataPoint],
    blocks: CalibrationBlocks,
) -> LeastSquaresProblem:
    problem = LeastSquaresProblem(blocks.arena)

    for data_point in data_points:
        kind, constants, parameter_blocks = build_residual(blocks, data_point)
        problem.add_residual(kind, constants, parameter_blocks)

    # extrinsics / poses registered as fixed stay in the problem as constants
    for handle in problem.parameter_blocks:
        if blocks.is_fixed(handle):
            problem.set_parameter_block_constant(handle)

    return problem


def run_optimization(
    data_points: Iterable[ObservationDataPoint],
    blocks: CalibrationBlocks,
    options: SolverOptions | None = None,
) -> SolverSummary:
    """
    Build the bundle adjustment problem from data points and solve it.

    Optimized values are written back into the registry's parameter blocks.
    """
    problem = build_problem(data_points, blocks)
    if problem.num_residual_blocks == 0:
        logger.warning("No observations collected, nothing to optimize")
    return problem.solve(options)
