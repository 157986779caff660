"""
Least-squares problem over arena parameter blocks, solved with scipy.

Residuals reference parameter blocks by handle. Handles shared between
residuals are what couple observations of the same camera or target. Raw
arena values are only touched here, when the solve gathers the free blocks
into one vector and writes the optimized values back.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

import calibundle.logger

from ..errors import UnresolvedParameterBlock
from ..types import SolverSummary
from .blocks import BlockHandle, ParameterArena
from .costs import CONSTANT_SIZES, PARAMETER_SIZES, RESIDUAL_SIZE, CostKind, reprojection_residual

logger = calibundle.logger.get(__name__)


# least_squares methods that accept a sparse Jacobian pattern
SUPPORTED_METHODS = ("trf", "dogbox")
SUPPORTED_LOSSES = ("linear", "soft_l1", "huber", "cauchy", "arctan")


@dataclass(frozen=True, slots=True)
class SolverOptions:
    max_iterations: int = 1000  # maximum function evaluations
    function_tolerance: float = 1e-8
    loss: str = "linear"
    method: str = "trf"
    verbose: int = 0

    def __post_init__(self):
        if self.method not in SUPPORTED_METHODS:
            raise ValueError(
                f"Unsupported solver method '{self.method}', expected one of {', '.join(SUPPORTED_METHODS)}"
            )
        if self.loss not in SUPPORTED_LOSSES:
            raise ValueError(
                f"Unsupported loss '{self.loss}', expected one of {', '.join(SUPPORTED_LOSSES)}"
            )
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")


@dataclass(frozen=True, slots=True)
class ResidualBlock:
    kind: CostKind
    constants: np.ndarray
    parameter_blocks: tuple[BlockHandle, ...]


class LeastSquaresProblem:
    """
    Collects reprojection residuals and solves for the free parameter blocks.
    """

    def __init__(self, arena: ParameterArena):
        self.arena = arena
        self._residuals: list[ResidualBlock] = []
        self._constant: set[BlockHandle] = set()

    def add_residual(
        self,
        kind: CostKind,
        constants: np.ndarray,
        parameter_blocks: list[BlockHandle] | tuple[BlockHandle, ...],
    ) -> None:
        constants = np.asarray(constants, dtype=np.float64).ravel()
        parameter_blocks = tuple(parameter_blocks)

        sizes = PARAMETER_SIZES[kind]
        if len(parameter_blocks) != len(sizes):
            raise ValueError(f"{kind.value} expects {len(sizes)} parameter blocks, got {len(parameter_blocks)}")
        for handle, size in zip(parameter_blocks, sizes):
            if handle not in self.arena:
                raise UnresolvedParameterBlock(f"Parameter block {handle} is not in the arena")
            if handle.size != size:
                raise ValueError(f"{kind.value} expects a block of size {size}, got {handle.size}")
        if constants.size != CONSTANT_SIZES[kind]:
            raise ValueError(f"{kind.value} expects {CONSTANT_SIZES[kind]} constants, got {constants.size}")

        self._residuals.append(ResidualBlock(kind, constants, parameter_blocks))

    def set_parameter_block_constant(self, handle: BlockHandle) -> None:
        self._constant.add(handle)

    def is_constant(self, handle: BlockHandle) -> bool:
        return handle in self._constant

    @property
    def residual_blocks(self) -> tuple[ResidualBlock, ...]:
        return tuple(self._residuals)

    @property
    def num_residual_blocks(self) -> int:
        return len(self._residuals)

    @property
    def parameter_blocks(self) -> list[BlockHandle]:
        """Unique parameter blocks in first-use order."""
        seen: dict[BlockHandle, None] = {}
        for block in self._residuals:
            for handle in block.parameter_blocks:
                seen.setdefault(handle, None)
        return list(seen)

    @property
    def free_parameter_blocks(self) -> list[BlockHandle]:
        return [h for h in self.parameter_blocks if h not in self._constant]

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _residual_function(self, columns: dict[BlockHandle, int]):
        values = {h: self.arena.read(h) for h in self.parameter_blocks}
        residuals = self._residuals

        def fun(x: np.ndarray) -> np.ndarray:
            error = np.empty(RESIDUAL_SIZE * len(residuals), dtype=np.float64)
            for i, block in enumerate(residuals):
                params = [
                    x[columns[h] : columns[h] + h.size] if h in columns else values[h]
                    for h in block.parameter_blocks
                ]
                error[RESIDUAL_SIZE * i : RESIDUAL_SIZE * (i + 1)] = reprojection_residual(
                    block.kind, block.constants, params
                )
            return error

        return fun

    def evaluate(self) -> np.ndarray:
        """Residual vector at the current arena values."""
        return self._residual_function({})(np.zeros(0))

    def _jacobian_sparsity(self, columns: dict[BlockHandle, int], n_params: int) -> lil_matrix:
        A = lil_matrix((RESIDUAL_SIZE * len(self._residuals), n_params), dtype=int)
        for i, block in enumerate(self._residuals):
            rows = slice(RESIDUAL_SIZE * i, RESIDUAL_SIZE * (i + 1))
            for handle in block.parameter_blocks:
                if handle in columns:
                    A[rows, columns[handle] : columns[handle] + handle.size] = 1
        return A

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(self, options: SolverOptions | None = None) -> SolverSummary:
        """
        Minimize the summed squared reprojection error.

        Optimized values are written back into the arena. Non-convergence is
        reported in the summary, not raised.
        """
        if options is None:
            options = SolverOptions()

        n_residuals = len(self._residuals)
        if n_residuals == 0:
            logger.warning("No residual blocks to solve")
            return SolverSummary(
                converged=False,
                iterations=0,
                final_cost=0.0,
                message="No residual blocks",
            )

        free = self.free_parameter_blocks
        columns: dict[BlockHandle, int] = {}
        n_params = 0
        for handle in free:
            columns[handle] = n_params
            n_params += handle.size

        fun = self._residual_function(columns)
        x0 = np.concatenate([self.arena.read(h) for h in free]) if free else np.zeros(0)

        initial = fun(x0)
        initial_cost = 0.5 * float(initial @ initial)

        if not free:
            return SolverSummary(
                converged=True,
                iterations=0,
                final_cost=initial_cost,
                initial_cost=initial_cost,
                num_residuals=n_residuals,
                message="All parameter blocks are constant",
            )

        logger.info(
            f"Solving {n_residuals} residuals over {len(free)} parameter blocks ({n_params} parameters)"
        )

        result = least_squares(
            fun,
            x0,
            jac_sparsity=self._jacobian_sparsity(columns, n_params),
            verbose=options.verbose,
            x_scale="jac",
            loss=options.loss,
            ftol=options.function_tolerance,
            method=options.method,
            max_nfev=options.max_iterations,
        )

        for handle, start in columns.items():
            self.arena.write(handle, result.x[start : start + handle.size])

        iterations = result.njev if result.njev is not None else result.nfev
        final_cost = 0.5 * float(result.fun @ result.fun)

        summary = SolverSummary(
            converged=bool(result.status > 0),
            iterations=int(iterations),
            final_cost=final_cost,
            initial_cost=initial_cost,
            num_residuals=n_residuals,
            message=str(result.message),
        )
        logger.info(
            f"Solve finished: converged={summary.converged}, iterations={summary.iterations}, "
            f"cost {initial_cost:.6g} -> {final_cost:.6g}"
        )
        return summary
