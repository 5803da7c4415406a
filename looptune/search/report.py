"""Structured JSON report for search progress and candidate results.

Manages a live-overwritten JSON file that tracks the search configuration,
per-generation progress, and every candidate the search evaluated.
"""

import json
import math
from pathlib import Path
from typing import Any

_EMPTY_REPORT: dict[str, Any] = {
    "search": {
        "function": "",
        "config": {},
        "generations": 0,
        "evaluations": 0,
        "termination": None,
        "best_node": None,
        "best_cost": None,
        "best_history": [],
    },
    "generations": [],
    "candidates": [],
}


def _json_cost(cost: float | None) -> float | None:
    """JSON has no infinity; sentinel costs are stored as null."""
    return cost if cost is not None and math.isfinite(cost) else None


class SearchReport:
    """Manages a live JSON report file for a beam search.

    Attributes:
        path: Path to the JSON report file.
    """

    def __init__(self, path: Path, function: str, config: dict[str, Any]) -> None:
        """Initialize an empty report and write it to disk.

        Args:
            path: File path for the JSON report.
            function: Name of the tuned function.
            config: Search configuration as a dict.
        """
        self.path = Path(path)
        self._data: dict[str, Any] = json.loads(json.dumps(_EMPTY_REPORT))
        self._data["search"]["function"] = function
        self._data["search"]["config"] = config
        self._candidate_index: dict[int, int] = {}
        self._write()

    def add_candidate(self, node_id: int, parent_id: int | None, depth: int, history: list[str]) -> None:
        """Append a new pending candidate entry.

        Args:
            node_id: Identity of the node in the search tree.
            parent_id: Identity of its parent, None for the root.
            depth: Transformation history length.
            history: Human-readable history records.
        """
        entry = {
            "node_id": node_id,
            "parent_id": parent_id,
            "depth": depth,
            "history": history,
            "status": "pending",
            "cost_ms": None,
            "error": None,
        }
        self._candidate_index[node_id] = len(self._data["candidates"])
        self._data["candidates"].append(entry)
        self._write()

    def update_candidate(self, node_id: int, **fields: Any) -> None:
        """Update fields on an existing candidate entry.

        Args:
            node_id: Identity of the candidate.
            **fields: Key-value pairs to update on the candidate dict.
        """
        idx = self._candidate_index.get(node_id)
        if idx is not None:
            if "cost_ms" in fields:
                fields["cost_ms"] = _json_cost(fields["cost_ms"])
            self._data["candidates"][idx].update(fields)
            self._write()

    def add_generation(self, stats: dict[str, Any]) -> None:
        """Append one generation's statistics."""
        stats = dict(stats)
        stats["best_cost"] = _json_cost(stats.get("best_cost"))
        self._data["generations"].append(stats)
        self._write()

    def update_search(
        self,
        generations: int,
        evaluations: int,
        best_node: int,
        best_cost: float | None,
        best_history: list[dict[str, Any]],
        termination: str | None = None,
    ) -> None:
        """Update the search section of the report.

        Args:
            generations: Generations completed so far.
            evaluations: Evaluations performed, the root included.
            best_node: Identity of the global best node.
            best_cost: Its cost, None or infinite when unusable.
            best_history: Its history as record dicts.
            termination: Why the search stopped, None while running.
        """
        self._data["search"].update(
            generations=generations,
            evaluations=evaluations,
            termination=termination,
            best_node=best_node,
            best_cost=_json_cost(best_cost),
            best_history=best_history,
        )
        self._write()

    def sort_candidates(self) -> None:
        """Sort candidates by cost ascending, with failures and pending at the end."""
        candidates = self._data["candidates"]
        candidates.sort(key=_candidate_sort_key)
        self._candidate_index = {c["node_id"]: i for i, c in enumerate(candidates)}
        self._write()

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    def _write(self) -> None:
        """Atomically write the report to disk."""
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2) + "\n")
        tmp_path.rename(self.path)


def _candidate_sort_key(c: dict[str, Any]) -> tuple[int, float, int]:
    """Sort key: measured candidates by cost first, then the rest by id."""
    has_cost = c.get("cost_ms") is not None and not c.get("error")
    rank = 0 if has_cost else 1
    cost = c["cost_ms"] if has_cost else 0.0
    return (rank, cost, c["node_id"])
