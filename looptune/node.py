"""Search-tree nodes and transformation history.

A ``Node`` is one point of the transformation search space: an immutable
IR state, the ordered history of transformations that produced it from
the root, and a score assigned exactly once by an evaluator.

Nodes do not own their parents. Ownership lives in a ``SearchTree`` arena
that hands out integer ids; ``Node.parent_id`` is only an identity used to
rebuild the path from the root. The arena also records every node ever
created in a ``networkx.DiGraph`` so pruned candidates stay visible for
diagnostics after their IR state has been released.
"""

import math
from enum import Enum
from typing import TYPE_CHECKING, Any, NamedTuple

import networkx as nx

from looptune.context import CompilationContext
from looptune.ir.analysis import validate
from looptune.ir.types import LoopNest

if TYPE_CHECKING:
    from looptune.search.evaluator import ExecutionFailure

SENTINEL_SCORE = math.inf


class RootConstructionError(ValueError):
    """The root node of a search cannot be built from the input IR."""


class TransformKind(str, Enum):
    """Kinds of structural loop transformations."""

    TILING = "tiling"
    INTERCHANGE = "interchange"
    PARALLELIZATION = "parallelization"
    VECTORIZATION = "vectorization"


class TransformationRecord(NamedTuple):
    """One applied transformation: operator kind plus its parameter set."""

    kind: TransformKind
    params: tuple[Any, ...]

    def describe(self) -> str:
        """Short human-readable form such as ``tiling(16, 16, 0)``."""
        return f"{self.kind.value}({', '.join(str(p) for p in self.params)})"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "params": list(self.params)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransformationRecord":
        return cls(TransformKind(data["kind"]), tuple(data["params"]))


def format_history(history: tuple[TransformationRecord, ...]) -> str:
    """Join a history into one line, ``<root>`` when empty."""
    return " -> ".join(record.describe() for record in history) if history else "<root>"


class Node:
    """Immutable snapshot of one point in the search tree.

    Attributes:
        node_id: Identity within the owning SearchTree.
        state: IR state of this node.
        history: Applied transformations, in application order.
        parent_id: Identity of the parent node, None for the root.
    """

    __slots__ = ("node_id", "state", "history", "parent_id", "_score", "_failure")

    def __init__(
        self,
        state: LoopNest,
        history: tuple[TransformationRecord, ...] = (),
        parent_id: int | None = None,
        node_id: int = 0,
    ) -> None:
        """Initialize an unscored node.

        Args:
            state: IR state of this node.
            history: Applied transformations, in application order.
            parent_id: Identity of the parent node, None for the root.
            node_id: Identity within the owning SearchTree.
        """
        self.node_id = node_id
        self.state = state
        self.history = tuple(history)
        self.parent_id = parent_id
        self._score: float | None = None
        self._failure: "ExecutionFailure | None" = None

    @classmethod
    def root(cls, context: CompilationContext, function_name: str) -> "Node":
        """Build the root node for ``function_name`` of the context's module.

        The function is reset to an empty schedule and validated.

        Raises:
            RootConstructionError: If the function is missing or malformed.
        """
        try:
            state = context.function(function_name).untransformed()
            validate(state)
        except (KeyError, ValueError) as e:
            raise RootConstructionError(f"Cannot build root for {function_name!r}: {e}") from e
        return cls(state)

    @property
    def depth(self) -> int:
        return len(self.history)

    @property
    def score(self) -> float | None:
        """Measured cost, SENTINEL_SCORE if unusable, None if not yet evaluated."""
        return self._score

    @property
    def failure(self) -> "ExecutionFailure | None":
        return self._failure

    @property
    def is_evaluated(self) -> bool:
        return self._score is not None

    @property
    def is_viable(self) -> bool:
        """True if the node has a real (finite) measured score."""
        return self._score is not None and math.isfinite(self._score)

    def assign_score(self, score: float, failure: "ExecutionFailure | None" = None) -> None:
        """Populate the score. May only be called once.

        Args:
            score: Measured cost, or SENTINEL_SCORE for failures.
            failure: The failure that produced a sentinel score.

        Raises:
            RuntimeError: If the node already has a score.
            ValueError: If a failure is given with a finite score.
        """
        if self._score is not None:
            raise RuntimeError(f"Node {self.node_id} is already scored ({self._score})")
        if failure is not None and math.isfinite(score):
            raise ValueError("A failed evaluation must carry the sentinel score")
        self._score = float(score)
        self._failure = failure

    def derive(self, state: LoopNest, record: TransformationRecord, node_id: int) -> "Node":
        """Create an unscored child one transformation deeper."""
        return Node(state, self.history + (record,), parent_id=self.node_id, node_id=node_id)

    def __repr__(self) -> str:
        history = format_history(self.history)
        return f"Node(id={self.node_id}, depth={self.depth}, score={self._score}, history={history})"


class SearchTree:
    """Arena owning every node of a search by integer id.

    Attributes:
        graph: Directed parent->child graph keyed by node id; node
            attributes summarize depth, history, status and score and
            survive ``release``.
    """

    def __init__(self, root: Node) -> None:
        """Initialize the arena with a root node.

        Args:
            root: Root node; it must have no history and id 0.

        Raises:
            ValueError: If ``root`` is not a depth-0 node with id 0.
        """
        if root.depth != 0 or root.node_id != 0:
            raise ValueError("The root node must have an empty history and id 0")
        self.graph = nx.DiGraph()
        self._nodes: dict[int, Node] = {}
        self._seen: set[LoopNest] = set()
        self._next_id = 0
        self._register(root)

    def _register(self, node: Node) -> None:
        self._nodes[node.node_id] = node
        self._next_id = max(self._next_id, node.node_id + 1)
        self.graph.add_node(
            node.node_id,
            depth=node.depth,
            history=format_history(node.history),
            status="pending",
            score=None,
            error=None,
        )
        if node.parent_id is not None:
            self.graph.add_edge(node.parent_id, node.node_id)
        if node.is_evaluated:
            self.record_score(node)

    @property
    def root(self) -> Node:
        return self._nodes[0]

    def admit(self, state: LoopNest) -> bool:
        """Record a state generated by this search.

        Returns:
            True if no earlier node of this tree produced ``state``.
        """
        if state in self._seen:
            return False
        self._seen.add(state)
        return True

    def add_child(self, parent: Node, state: LoopNest, record: TransformationRecord) -> Node:
        """Create and register a child of ``parent``."""
        child = parent.derive(state, record, self._next_id)
        self._register(child)
        return child

    def get(self, node_id: int) -> Node | None:
        """Look up a retained node by id (None if unknown or released)."""
        return self._nodes.get(node_id)

    def parent(self, node: Node) -> Node | None:
        return None if node.parent_id is None else self._nodes.get(node.parent_id)

    def lineage(self, node: Node) -> list[Node]:
        """Return the path from the root to ``node`` inclusive.

        Raises:
            KeyError: If an ancestor has been released.
        """
        path = nx.shortest_path(self.graph, self.root.node_id, node.node_id)
        return [self._nodes[node_id] for node_id in path]

    def record_score(self, node: Node) -> None:
        """Copy a node's evaluation outcome into the graph summary."""
        attrs = self.graph.nodes[node.node_id]
        attrs["score"] = node.score
        if node.failure is not None:
            attrs["status"] = "cancelled" if node.failure.kind.value == "cancelled" else "failed"
            attrs["error"] = node.failure.message
            attrs["failure"] = node.failure.kind.value
        else:
            attrs["status"] = "measured"

    def mark(self, node: Node, **attrs: Any) -> None:
        """Set extra summary attributes on a node."""
        self.graph.nodes[node.node_id].update(attrs)

    def release(self, live: list[Node]) -> int:
        """Drop nodes that are neither live nor an ancestor of a live node.

        Args:
            live: Nodes still referenced by the frontier or the global best.

        Returns:
            Number of nodes released.
        """
        keep: set[int] = set()
        for node in live:
            keep.add(node.node_id)
            keep |= nx.ancestors(self.graph, node.node_id)
        released = [node_id for node_id in self._nodes if node_id not in keep]
        for node_id in released:
            del self._nodes[node_id]
            self.graph.nodes[node_id]["released"] = True
        return len(released)

    def summaries(self) -> list[dict[str, Any]]:
        """Graph summaries of every node ever created, in creation order."""
        return [{"node_id": node_id, **attrs} for node_id, attrs in sorted(self.graph.nodes(data=True))]

    @property
    def num_retained(self) -> int:
        return len(self._nodes)

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def __contains__(self, node: Node) -> bool:
        return node.node_id in self._nodes
