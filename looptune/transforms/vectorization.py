"""Loop vectorization.

A parameter set is ``(dim, width)``. The point loop over ``dim`` steps by
``width`` and every subscript on ``dim`` becomes a ``width``-long slice.
"""

from collections.abc import Sequence

from looptune.context import TargetInfo
from looptune.ir.analysis import vector_violation
from looptune.ir.types import LoopNest
from looptune.node import TransformKind
from looptune.transforms.base import Params, TransformOperator


class VectorizationOperator(TransformOperator):
    """Vectorize one unit-stride dim with a target-supported width.

    Attributes:
        target: Target whose vector widths bound the legal domain.
        widths: Widths to propose (always filtered by the target).
    """

    kind = TransformKind.VECTORIZATION

    def __init__(self, target: TargetInfo | None = None, widths: Sequence[int] | None = None) -> None:
        """Initialize the operator.

        Args:
            target: Execution target; defaults to ``TargetInfo()``.
            widths: Widths to propose; all target widths when None.
        """
        self.target = target if target is not None else TargetInfo()
        self.widths = tuple(self.target.vector_widths if widths is None else widths)

    def candidates(self, state: LoopNest) -> list[Params]:
        if state.vector is not None:
            return []
        return [(dim, width) for dim in state.dims for width in self.widths]

    def violation(self, state: LoopNest, params: Params) -> str | None:
        if len(params) != 2:
            return f"expected (dim, width), got {params}"
        dim, width = params
        return vector_violation(state, dim, width, self.target.vector_widths)

    def rewrite(self, state: LoopNest, params: Params) -> LoopNest:
        dim, width = params
        return state._replace(vector=(dim, int(width)))

    def __repr__(self) -> str:
        return f"VectorizationOperator(widths={self.widths})"
