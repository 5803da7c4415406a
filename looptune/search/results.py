"""Search outcome containers and summaries."""

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from tabulate import tabulate

from looptune.node import Node, SearchTree, format_history


class Termination(str, Enum):
    """Why a search stopped."""

    FIXED_POINT = "fixed_point"
    MAX_DEPTH = "max_depth"
    BUDGET = "budget"
    NO_VIABLE = "no_viable"


@dataclass
class GenerationStats:
    """Counters for one generation of beam search.

    Attributes:
        generation: 1-based generation number (children have this depth).
        frontier_in: Frontier size before expansion.
        children: Children materialized.
        duplicates: Legal transformations skipped as already-seen states.
        evaluated: Children evaluated.
        failed: Children with a sentinel score from evaluation.
        cancelled: Children cancelled by the evaluation budget.
        frontier_out: Frontier size after pruning.
        best_cost: Global best cost after this generation.
        elapsed_s: Wall-clock seconds spent in the generation.
    """

    generation: int
    frontier_in: int
    children: int = 0
    duplicates: int = 0
    evaluated: int = 0
    failed: int = 0
    cancelled: int = 0
    frontier_out: int = 0
    best_cost: float = math.inf
    elapsed_s: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResult:
    """Everything a search run produced.

    Attributes:
        best: Global best node (the root when nothing beat it).
        root: The root node.
        tree: Arena holding every retained node and the summary graph.
        generations: Per-generation statistics.
        evaluations: Evaluations performed, the root included.
        termination: Why the search stopped.
    """

    best: Node
    root: Node
    tree: SearchTree
    generations: list[GenerationStats] = field(default_factory=list)
    evaluations: int = 0
    termination: Termination = Termination.FIXED_POINT

    @property
    def speedup(self) -> float | None:
        """Root cost over best cost, None unless both are finite."""
        root, best = self.root.score, self.best.score
        if root is None or best is None or not (math.isfinite(root) and math.isfinite(best)) or best <= 0:
            return None
        return root / best

    def top(self, k: int = 5) -> list[dict[str, Any]]:
        """Return the ``k`` lowest-cost measured candidates ever evaluated."""
        measured = [s for s in self.tree.summaries() if s["status"] == "measured"]
        measured.sort(key=lambda s: (s["score"], s["depth"], s["node_id"]))
        return measured[:k]

    def summary(self, top_k: int = 5) -> None:
        """Print a tabulate-formatted table of the best candidates to stdout.

        Args:
            top_k: Number of candidates to show.
        """
        headers = ["node", "depth", "cost_ms", "history"]
        rows: list[list[Any]] = []
        for s in self.top(top_k):
            rows.append([s["node_id"], s["depth"], f"{s['score']:.4f}", s["history"]])
        print(tabulate(rows, headers=headers, tablefmt="simple"))
        speedup = self.speedup
        speedup_text = f"{speedup:.2f}x" if speedup is not None else "n/a"
        print(
            f"best: {format_history(self.best.history)} | generations: {len(self.generations)} | "
            f"evaluations: {self.evaluations} | stop: {self.termination.value} | speedup: {speedup_text}"
        )
