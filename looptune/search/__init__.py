"""Search strategies and candidate evaluation for looptune.

``BeamSearch`` explores transformation sequences generation by generation;
evaluators score the candidates it proposes.
"""

from looptune.search.base import SearchConfig, SearchMethod
from looptune.search.beam import BeamSearch
from looptune.search.cost_model import estimate_cost
from looptune.search.evaluator import (
    CostModelEvaluator,
    Evaluation,
    Evaluator,
    ExecutionEvaluator,
    ExecutionFailure,
    FailureKind,
    Measurement,
    reduce_timings,
)
from looptune.search.report import SearchReport
from looptune.search.results import GenerationStats, SearchResult, Termination

__all__ = [
    "BeamSearch",
    "CostModelEvaluator",
    "Evaluation",
    "Evaluator",
    "ExecutionEvaluator",
    "ExecutionFailure",
    "FailureKind",
    "GenerationStats",
    "Measurement",
    "SearchConfig",
    "SearchMethod",
    "SearchReport",
    "SearchResult",
    "Termination",
    "estimate_cost",
    "reduce_timings",
]
