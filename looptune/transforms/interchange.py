"""Loop interchange.

A parameter set is a new loop order, a permutation of the canonical
dims. The identity permutation is never proposed.
"""

import itertools
from collections.abc import Sequence

from looptune.ir.analysis import order_violation
from looptune.ir.types import LoopNest
from looptune.node import TransformKind
from looptune.transforms.base import Params, TransformOperator


class InterchangeOperator(TransformOperator):
    """Permute the loop order of a nest once.

    Attributes:
        candidates_override: Orders to consider instead of every permutation.
    """

    kind = TransformKind.INTERCHANGE

    def __init__(self, candidates: Sequence[Sequence[str]] | None = None) -> None:
        """Initialize the operator.

        Args:
            candidates: Restrict proposals to these orders; all permutations
                of the current order when None.
        """
        self.candidates_override = None if candidates is None else [tuple(order) for order in candidates]

    def candidates(self, state: LoopNest) -> list[Params]:
        if state.is_interchanged:
            return []
        if self.candidates_override is not None:
            orders = self.candidates_override
        else:
            orders = list(itertools.permutations(state.order))
        return [order for order in orders if order != state.order]

    def violation(self, state: LoopNest, params: Params) -> str | None:
        if state.is_interchanged:
            return "nest is already interchanged"
        if tuple(params) == state.order:
            return "identity permutation"
        return order_violation(state, tuple(params))

    def rewrite(self, state: LoopNest, params: Params) -> LoopNest:
        return state._replace(order=tuple(params))

    def __repr__(self) -> str:
        return f"InterchangeOperator(candidates={self.candidates_override})"
