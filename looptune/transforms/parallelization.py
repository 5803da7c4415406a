"""Loop parallelization.

A parameter set is the tuple of dims marked parallel, in canonical order.
Code generation distributes the outermost loop over a marked dim across
a thread pool.
"""

import itertools

from looptune.ir.analysis import parallel_violation
from looptune.ir.types import LoopNest
from looptune.node import TransformKind
from looptune.transforms.base import Params, TransformOperator

_MODES = ("maximal", "subsets")


class ParallelizationOperator(TransformOperator):
    """Mark dependence-free dims of a nest as parallel.

    Attributes:
        mode: ``"maximal"`` proposes the single set of every safe dim,
            ``"subsets"`` proposes every non-empty subset of safe dims.
    """

    kind = TransformKind.PARALLELIZATION

    def __init__(self, mode: str = "maximal") -> None:
        """Initialize the operator.

        Args:
            mode: ``"maximal"`` or ``"subsets"``.

        Raises:
            ValueError: If ``mode`` is unknown.
        """
        if mode not in _MODES:
            raise ValueError(f"Unknown parallelization mode {mode!r}; expected one of {_MODES}")
        self.mode = mode

    def candidates(self, state: LoopNest) -> list[Params]:
        if state.parallel:
            return []
        safe = tuple(dim for dim in state.dims if parallel_violation(state, dim) is None)
        if not safe:
            return []
        if self.mode == "maximal":
            return [safe]
        subsets: list[Params] = []
        for size in range(len(safe), 0, -1):
            subsets.extend(itertools.combinations(safe, size))
        return subsets

    def violation(self, state: LoopNest, params: Params) -> str | None:
        if state.parallel:
            return "nest is already parallelized"
        if not params:
            return "no dim selected"
        if len(set(params)) != len(params):
            return f"duplicate dims in {params}"
        for dim in params:
            reason = parallel_violation(state, dim)
            if reason is not None:
                return reason
        return None

    def rewrite(self, state: LoopNest, params: Params) -> LoopNest:
        marked = set(params)
        return state._replace(parallel=tuple(dim for dim in state.dims if dim in marked))

    def __repr__(self) -> str:
        return f"ParallelizationOperator(mode={self.mode!r})"
