"""Looptune - execution-driven beam search over loop-nest schedules.

Pipeline: kernel source -> LoopNest IR -> beam search over transformations
(tiling, interchange, parallelization, vectorization) -> tuned schedule

Subpackages:
    ir: Loop-nest IR, parsing, dependence analysis and code generation
    transforms: Transformation operators that propose legal successors
    search: Search strategies, evaluators, reports and results
    utils: Source helpers and logging
"""

from looptune.api import TuningResult, tune
from looptune.context import CompilationContext, TargetInfo
from looptune.node import SENTINEL_SCORE, Node, RootConstructionError, SearchTree, TransformationRecord, TransformKind
from looptune.schedule import ScheduleError, apply_schedule, format_schedule, load_schedule, save_schedule
from looptune.search import (
    BeamSearch,
    CostModelEvaluator,
    ExecutionEvaluator,
    ExecutionFailure,
    FailureKind,
    Measurement,
    SearchConfig,
    SearchMethod,
    SearchResult,
)
from looptune.transforms import (
    InterchangeOperator,
    ParallelizationOperator,
    TilingOperator,
    TransformOperator,
    VectorizationOperator,
    default_operators,
)

__all__ = [
    "BeamSearch",
    "CompilationContext",
    "CostModelEvaluator",
    "ExecutionEvaluator",
    "ExecutionFailure",
    "FailureKind",
    "InterchangeOperator",
    "Measurement",
    "Node",
    "ParallelizationOperator",
    "RootConstructionError",
    "SENTINEL_SCORE",
    "ScheduleError",
    "SearchConfig",
    "SearchMethod",
    "SearchResult",
    "SearchTree",
    "TargetInfo",
    "TilingOperator",
    "TransformKind",
    "TransformOperator",
    "TransformationRecord",
    "TuningResult",
    "VectorizationOperator",
    "apply_schedule",
    "default_operators",
    "format_schedule",
    "load_schedule",
    "save_schedule",
    "tune",
]
