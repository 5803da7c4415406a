"""Base class for loop transformation operators.

All operators follow the enumerate-then-apply contract:

1. ``enumerate_legal(node)``: inspect the node's IR state and return every
   legal parameter set, in a deterministic order (possibly empty).
2. ``apply(node, params)``: return a new IR state with the transformation
   applied. The input state is never modified.

Operators fail closed: enumeration filters through the same legality
check that ``apply`` enforces, so every enumerated parameter set applies.
Each operator transforms a nest at most once, which keeps every
parameter space finite along a history.

To add a new operator:
1. Subclass TransformOperator and set ``kind``
2. Implement ``candidates()``, ``violation()`` and ``rewrite()``
3. Register it in ``default_operators()`` if it should run by default
"""

from abc import ABC, abstractmethod
from typing import Any

from looptune.ir.analysis import validate
from looptune.ir.types import LoopNest
from looptune.node import Node, TransformationRecord, TransformKind

Params = tuple[Any, ...]


class IllegalTransformError(ValueError):
    """A parameter set is not legal for an operator and IR state."""


class TransformOperator(ABC):
    """Base class for structural loop transformations.

    Attributes:
        kind: Transformation kind recorded in node histories.
    """

    kind: TransformKind

    @abstractmethod
    def candidates(self, state: LoopNest) -> list[Params]:
        """Propose parameter sets before legality filtering.

        Args:
            state: IR state to transform.

        Returns:
            Candidate parameter sets in deterministic order.
        """

    @abstractmethod
    def violation(self, state: LoopNest, params: Params) -> str | None:
        """Explain why ``params`` is illegal for ``state``.

        Args:
            state: IR state to transform.
            params: Parameter set to check.

        Returns:
            Reason string if illegal, None if legal.
        """

    @abstractmethod
    def rewrite(self, state: LoopNest, params: Params) -> LoopNest:
        """Build the transformed state for legal ``params``."""

    def enumerate_legal(self, node: Node) -> list[Params]:
        """Return every legal parameter set for ``node``, deduplicated.

        Args:
            node: Search node whose state is inspected.

        Returns:
            Legal parameter sets in candidate order.
        """
        legal: list[Params] = []
        for params in self.candidates(node.state):
            if params not in legal and self.violation(node.state, params) is None:
                legal.append(params)
        return legal

    def apply(self, node: Node, params: Params) -> LoopNest:
        """Apply ``params`` to the node's state.

        Args:
            node: Search node to transform.
            params: Parameter set, normally one returned by ``enumerate_legal``.

        Returns:
            New, validated IR state.

        Raises:
            IllegalTransformError: If ``params`` is not legal for the node.
        """
        params = tuple(params)
        reason = self.violation(node.state, params)
        if reason is not None:
            raise IllegalTransformError(f"{self.kind.value}{params} is illegal: {reason}")
        state = self.rewrite(node.state, params)
        validate(state)
        return state

    def record(self, params: Params) -> TransformationRecord:
        """History record for an application of this operator."""
        return TransformationRecord(self.kind, tuple(params))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
