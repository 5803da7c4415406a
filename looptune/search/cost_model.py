"""Analytic cost estimate for loop-nest schedules.

Counts statement instances of a nest and scales them by the schedule:
vectorization and parallelism divide the work, strided innermost accesses
and untiled large nests multiply it. The estimate is deterministic, which
makes it a reproducible stand-in for measured execution time.
"""

import math

from looptune.context import TargetInfo
from looptune.ir.types import LoopNest

_NS_PER_ITERATION = 50.0
_STRIDED_PENALTY = 1.5
_TILED_BONUS = 0.8
_CACHE_ELEMENTS = 4096


def iteration_count(state: LoopNest) -> int:
    """Total statement instances of the untransformed nest."""
    return math.prod(loop.extent for loop in state.loops)


def _strided_accesses(state: LoopNest, innermost: str) -> int:
    """Accesses that use the innermost dim outside their last subscript."""
    count = 0
    for access in state.accesses:
        positions = [pos for pos, (dim, _) in enumerate(access.index) if dim == innermost]
        if any(pos != len(access.index) - 1 for pos in positions):
            count += 1
    return count


def estimate_cost(state: LoopNest, target: TargetInfo | None = None) -> float:
    """Estimate the run time of a schedule in milliseconds.

    Args:
        state: Loop nest with its schedule.
        target: Execution target; defaults to ``TargetInfo()``.

    Returns:
        Positive estimated cost.
    """
    target = target if target is not None else TargetInfo()
    work = float(iteration_count(state))
    if state.vector is not None:
        work /= state.vector[1]
    if state.parallel:
        outermost = next(dim for dim in state.order if dim in state.parallel)
        work /= min(target.num_threads, state.loop(outermost).extent)
    work *= _STRIDED_PENALTY ** _strided_accesses(state, state.order[-1])
    if iteration_count(state) > _CACHE_ELEMENTS and state.is_tiled:
        work *= _TILED_BONUS
    return work * _NS_PER_ITERATION / 1e6
