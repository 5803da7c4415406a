"""Rectangular loop tiling.

A parameter set holds one tile size per canonical loop dim, ``0`` leaving
the dim untiled. Tiled dims get a tile loop in an outer band and a point
loop of ``size`` iterations in the inner band.
"""

import itertools
from collections.abc import Sequence

from looptune.ir.analysis import tiling_violation
from looptune.ir.types import LoopNest
from looptune.node import TransformKind
from looptune.transforms.base import Params, TransformOperator


class TilingOperator(TransformOperator):
    """Tile every dim of the nest with sizes drawn from a candidate set.

    Attributes:
        sizes: Candidate tile sizes.
        combinations: If False, propose one uniform tile vector per size
            (dims that cannot take the size stay untiled). If True, propose
            the Cartesian product of per-dim choices.
    """

    kind = TransformKind.TILING

    def __init__(self, sizes: Sequence[int] = (16, 32), combinations: bool = False) -> None:
        """Initialize the operator.

        Args:
            sizes: Candidate tile sizes.
            combinations: Propose per-dim combinations instead of uniform vectors.

        Raises:
            ValueError: If ``sizes`` is empty or has non-positive entries.
        """
        if not sizes or any(size <= 0 for size in sizes):
            raise ValueError(f"Tile sizes must be positive, got {sizes}")
        self.sizes = tuple(sizes)
        self.combinations = combinations

    def _dim_choices(self, state: LoopNest, dim: str) -> list[int]:
        """Sizes that evenly split ``dim`` and respect its vector width."""
        extent = state.loop(dim).extent
        width = state.vector[1] if state.vector is not None and state.vector[0] == dim else 1
        return [s for s in self.sizes if s < extent and extent % s == 0 and s % width == 0]

    def candidates(self, state: LoopNest) -> list[Params]:
        if state.is_tiled:
            return []
        choices = [self._dim_choices(state, dim) for dim in state.dims]
        if self.combinations:
            product = itertools.product(*[[0] + c for c in choices])
            return [tiles for tiles in product if any(tiles)]
        uniform = [tuple(size if size in c else 0 for c in choices) for size in self.sizes]
        return [tiles for tiles in uniform if any(tiles)]

    def violation(self, state: LoopNest, params: Params) -> str | None:
        return tiling_violation(state, tuple(params))

    def rewrite(self, state: LoopNest, params: Params) -> LoopNest:
        return state._replace(tiles=tuple(params))

    def __repr__(self) -> str:
        return f"TilingOperator(sizes={self.sizes}, combinations={self.combinations})"
