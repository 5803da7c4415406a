"""Transformation operators for looptune.

Operators are the only way search proposes successor states. Each one
enumerates the legal parameter sets for a node and applies one of them,
returning a new immutable IR state:

- ``TilingOperator``: one tile size per loop dim.
- ``InterchangeOperator``: a permutation of the loop order.
- ``ParallelizationOperator``: the set of dims run in parallel.
- ``VectorizationOperator``: a unit-stride dim plus a vector width.
"""

from looptune.context import TargetInfo
from looptune.transforms.base import IllegalTransformError, Params, TransformOperator
from looptune.transforms.interchange import InterchangeOperator
from looptune.transforms.parallelization import ParallelizationOperator
from looptune.transforms.tiling import TilingOperator
from looptune.transforms.vectorization import VectorizationOperator


def default_operators(target: TargetInfo | None = None) -> list[TransformOperator]:
    """Build the standard operator set, in expansion order."""
    return [TilingOperator(), InterchangeOperator(), ParallelizationOperator(), VectorizationOperator(target)]


__all__ = [
    "IllegalTransformError",
    "InterchangeOperator",
    "ParallelizationOperator",
    "Params",
    "TilingOperator",
    "TransformOperator",
    "VectorizationOperator",
    "default_operators",
]
