"""Plots of beam search progress."""

import math
from pathlib import Path

import matplotlib.pyplot as plt

from looptune.search.results import SearchResult


def plot_search(result: SearchResult, path: Path) -> None:
    """Scatter candidate costs per depth and draw the global-best curve.

    Failed and cancelled candidates are drawn as crosses along the top
    edge of the plot.

    Args:
        result: Finished search.
        path: Output image path.
    """
    summaries = result.tree.summaries()
    measured = [s for s in summaries if s["status"] == "measured"]
    unusable = [s for s in summaries if s["status"] in ("failed", "cancelled")]
    ceiling = max((s["score"] for s in measured), default=1.0) * 1.1

    fig, ax = plt.subplots(figsize=(8, 5))
    in_beam = [s for s in measured if "in_beam" in s or s["node_id"] == result.root.node_id]
    others = [s for s in measured if s not in in_beam]
    ax.scatter([s["depth"] for s in others], [s["score"] for s in others], c="tab:gray", alpha=0.5, label="pruned")
    ax.scatter([s["depth"] for s in in_beam], [s["score"] for s in in_beam], c="tab:blue", label="beam")
    if unusable:
        ax.scatter([s["depth"] for s in unusable], [ceiling] * len(unusable), c="tab:red", marker="x", label="failed")

    depths = [0] + [g.generation for g in result.generations]
    best = [result.root.score] + [g.best_cost for g in result.generations]
    finite = [(d, b) for d, b in zip(depths, best) if b is not None and math.isfinite(b)]
    if finite:
        ax.step([d for d, _ in finite], [b for _, b in finite], where="post", c="tab:green", label="global best")

    ax.set_xlabel("depth")
    ax.set_ylabel("cost (ms)")
    ax.set_title(f"Beam search: {result.root.state.name}")
    ax.set_xticks(depths)
    ax.legend()
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
