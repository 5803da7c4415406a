"""Search strategy interface and search configuration."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from typing import Any

from looptune.node import Node

TIE_BREAKS = ("shallow", "insertion")


class SearchMethod(ABC):
    """A strategy that explores transformation sequences from a root node.

    Implementations return the best node they evaluated, or the root when
    nothing beat it. The root's IR state and history are never modified;
    its score is populated once if it was not evaluated yet.
    """

    @abstractmethod
    def search(self, root: Node) -> Node:
        """Search from ``root`` and return the best node found.

        Args:
            root: Depth-0 node wrapping the untransformed function.

        Returns:
            The lowest-scored node observed, the root at minimum.
        """


@dataclass
class SearchConfig:
    """Tuning knobs for a search run.

    Attributes:
        beam_size: Number of children kept per generation.
        max_depth: Maximum transformation history length, None for no limit.
        evaluation_budget: Maximum number of evaluations including the root,
            None for no limit.
        per_candidate_timeout: Wall-clock seconds one candidate may take to
            compile and run every repetition.
        repetitions: Timed runs per candidate; the median is the cost.
        warmup: Untimed runs before timing.
        workers: Evaluation processes, None for one.
        tie_break: Pruning order among equal scores, ``"shallow"`` (shorter
            history, then insertion order) or ``"insertion"``.
        deduplicate: Skip children whose IR state was already generated.
        release_pruned: Drop pruned nodes that no live node descends from.
        expand_workers: Threads used to enumerate legal transformations.
        report_path: JSON report file, None to disable.
        progress: Show a progress bar while evaluating.
    """

    beam_size: int = 4
    max_depth: int | None = 4
    evaluation_budget: int | None = None
    per_candidate_timeout: float = 10.0
    repetitions: int = 5
    warmup: int = 1
    workers: int | None = None
    tie_break: str = "shallow"
    deduplicate: bool = True
    release_pruned: bool = True
    expand_workers: int = 1
    report_path: str | None = None
    progress: bool = False

    def __post_init__(self) -> None:
        """Validate the configuration.

        Raises:
            ValueError: If any field is out of range.
        """
        if self.beam_size < 1:
            raise ValueError(f"beam_size must be a positive integer, got {self.beam_size}")
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")
        if self.evaluation_budget is not None and self.evaluation_budget < 1:
            raise ValueError(f"evaluation_budget must be >= 1, got {self.evaluation_budget}")
        if self.per_candidate_timeout <= 0:
            raise ValueError(f"per_candidate_timeout must be positive, got {self.per_candidate_timeout}")
        if self.repetitions < 1:
            raise ValueError(f"repetitions must be >= 1, got {self.repetitions}")
        if self.warmup < 0:
            raise ValueError(f"warmup must be >= 0, got {self.warmup}")
        if self.workers is not None and self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.expand_workers < 1:
            raise ValueError(f"expand_workers must be >= 1, got {self.expand_workers}")
        if self.tie_break not in TIE_BREAKS:
            raise ValueError(f"tie_break must be one of {TIE_BREAKS}, got {self.tie_break!r}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchConfig":
        """Build a config from a dict, rejecting unknown keys.

        Raises:
            ValueError: If ``data`` has keys that are not config fields.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown SearchConfig fields: {unknown}")
        return cls(**data)
