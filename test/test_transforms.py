"""Tests for the transformation operators.

Covers the enumerate/apply contract of every operator: deterministic
enumeration, fail-closed application, immutability of the input state and
the once-per-nest rule that keeps parameter spaces finite.

Run with: pytest test/test_transforms.py -v
"""

import pytest
from conftest import (
    MATMUL_SOURCE,
    PREFIX_SOURCE,
    ROWSUM_SOURCE,
    SCENARIO_PERMUTATIONS,
    STENCIL_SOURCE,
    WAVEFRONT_SOURCE,
    make_nest,
    scenario_operators,
)

from looptune.context import TargetInfo
from looptune.ir import LoopNest, validate
from looptune.node import Node, TransformationRecord, TransformKind
from looptune.transforms import (
    IllegalTransformError,
    InterchangeOperator,
    ParallelizationOperator,
    TilingOperator,
    TransformOperator,
    VectorizationOperator,
    default_operators,
)

_ALL_SOURCES = [MATMUL_SOURCE, STENCIL_SOURCE, PREFIX_SOURCE, WAVEFRONT_SOURCE, ROWSUM_SOURCE]


def _exhaustive_operators() -> list[TransformOperator]:
    return [
        TilingOperator(sizes=(3, 4, 5, 8, 16), combinations=True),
        InterchangeOperator(),
        ParallelizationOperator(mode="subsets"),
        VectorizationOperator(),
    ]


class TestTiling:
    """Tests for TilingOperator."""

    def test_uniform_sizes(self, matmul_nest: LoopNest) -> None:
        """Uniform mode proposes one tile vector per size."""
        assert TilingOperator(sizes=(16, 32)).enumerate_legal(Node(matmul_nest)) == [(16, 16, 16), (32, 32, 32)]

    def test_uniform_skips_undividable_dims(self) -> None:
        """Dims a size cannot split stay untiled in the uniform vector."""
        nest = make_nest(ROWSUM_SOURCE)
        assert TilingOperator(sizes=(32,)).enumerate_legal(Node(nest)) == [(0, 32)]

    def test_combinations_filtered_by_dependences(self) -> None:
        """Wavefront tiles only along i."""
        op = TilingOperator(sizes=(3, 5), combinations=True)
        assert op.enumerate_legal(Node(make_nest(WAVEFRONT_SOURCE))) == [(3, 0), (5, 0)]

    def test_combinations_count(self, matmul_nest: LoopNest) -> None:
        """Per-dim choices of {0, 16, 32} give 26 non-empty vectors."""
        legal = TilingOperator(sizes=(16, 32), combinations=True).enumerate_legal(Node(matmul_nest))
        assert len(legal) == 26
        assert len(set(legal)) == 26

    def test_respects_vector_width(self, matmul_nest: LoopNest) -> None:
        """A vectorized dim only takes tiles that are multiples of the width."""
        nest = matmul_nest._replace(vector=("j", 16))
        assert TilingOperator(sizes=(8,)).enumerate_legal(Node(nest)) == [(8, 0, 8)]

    def test_apply(self, matmul_nest: LoopNest) -> None:
        """apply sets the tile vector and leaves the input untouched."""
        node = Node(matmul_nest)
        state = TilingOperator().apply(node, (16, 0, 32))
        assert state.tiles == (16, 0, 32)
        assert node.state.tiles == (0, 0, 0)

    def test_invalid_sizes(self) -> None:
        """Tile sizes must be positive."""
        with pytest.raises(ValueError):
            TilingOperator(sizes=())
        with pytest.raises(ValueError):
            TilingOperator(sizes=(16, 0))


class TestInterchange:
    """Tests for InterchangeOperator."""

    def test_all_permutations(self, matmul_nest: LoopNest) -> None:
        """Every non-identity permutation of matmul is legal."""
        legal = InterchangeOperator().enumerate_legal(Node(matmul_nest))
        assert len(legal) == 5
        assert matmul_nest.order not in legal

    def test_restricted_candidates(self, matmul_nest: LoopNest) -> None:
        """Explicit candidates restrict the proposals."""
        op = InterchangeOperator(candidates=SCENARIO_PERMUTATIONS)
        assert op.enumerate_legal(Node(matmul_nest)) == SCENARIO_PERMUTATIONS

    def test_dependence_filtered(self) -> None:
        """Wavefront cannot be interchanged; prefix can."""
        assert InterchangeOperator().enumerate_legal(Node(make_nest(WAVEFRONT_SOURCE))) == []
        assert InterchangeOperator().enumerate_legal(Node(make_nest(PREFIX_SOURCE))) == [("j", "i")]

    def test_illegal_apply_raises(self) -> None:
        """Applying a dependence-violating order raises IllegalTransformError."""
        with pytest.raises(IllegalTransformError, match="interchange"):
            InterchangeOperator().apply(Node(make_nest(WAVEFRONT_SOURCE)), ("j", "i"))

    def test_identity_rejected(self, matmul_nest: LoopNest) -> None:
        """The identity permutation is not a transformation."""
        with pytest.raises(IllegalTransformError):
            InterchangeOperator().apply(Node(matmul_nest), matmul_nest.order)


class TestParallelization:
    """Tests for ParallelizationOperator."""

    def test_maximal(self, matmul_nest: LoopNest) -> None:
        """Maximal mode proposes the single set of every safe dim."""
        assert ParallelizationOperator().enumerate_legal(Node(matmul_nest)) == [("i", "j")]

    def test_subsets(self, matmul_nest: LoopNest) -> None:
        """Subset mode proposes every non-empty subset, largest first."""
        legal = ParallelizationOperator(mode="subsets").enumerate_legal(Node(matmul_nest))
        assert legal == [("i", "j"), ("i",), ("j",)]

    def test_carried_dims_excluded(self) -> None:
        """Dims carrying dependences are never proposed."""
        assert ParallelizationOperator().enumerate_legal(Node(make_nest(PREFIX_SOURCE))) == [("j",)]
        assert ParallelizationOperator().enumerate_legal(Node(make_nest(WAVEFRONT_SOURCE))) == []

    def test_apply_canonical_order(self, matmul_nest: LoopNest) -> None:
        """Marked dims are stored in canonical order."""
        assert ParallelizationOperator().apply(Node(matmul_nest), ("j", "i")).parallel == ("i", "j")

    def test_reduction_dim_rejected(self, matmul_nest: LoopNest) -> None:
        """Parallelizing the reduction dim is illegal."""
        with pytest.raises(IllegalTransformError, match="reduction"):
            ParallelizationOperator().apply(Node(matmul_nest), ("k",))

    def test_unknown_mode(self) -> None:
        """Unknown modes are rejected at construction."""
        with pytest.raises(ValueError):
            ParallelizationOperator(mode="greedy")


class TestVectorization:
    """Tests for VectorizationOperator."""

    def test_single_width(self, matmul_nest: LoopNest) -> None:
        """Only the unit-stride dim of matmul is proposed."""
        assert VectorizationOperator(widths=(8,)).enumerate_legal(Node(matmul_nest)) == [("j", 8)]

    def test_target_widths(self, matmul_nest: LoopNest) -> None:
        """Without explicit widths the target's widths are used."""
        op = VectorizationOperator(TargetInfo(vector_widths=(4, 16)))
        assert op.enumerate_legal(Node(matmul_nest)) == [("j", 4), ("j", 16)]

    def test_unsupported_width_filtered(self, matmul_nest: LoopNest) -> None:
        """Proposed widths outside the target's support are never legal."""
        op = VectorizationOperator(TargetInfo(vector_widths=(4,)), widths=(4, 32))
        assert op.enumerate_legal(Node(matmul_nest)) == [("j", 4)]

    def test_width_limited_by_tile(self, matmul_nest: LoopNest) -> None:
        """Widths must divide the tile of a tiled dim."""
        nest = matmul_nest._replace(tiles=(0, 8, 0))
        assert VectorizationOperator().enumerate_legal(Node(nest)) == [("j", 4), ("j", 8)]

    def test_reduction_dim(self) -> None:
        """The unit-stride reduction dim of a row sum is vectorizable."""
        legal = VectorizationOperator().enumerate_legal(Node(make_nest(ROWSUM_SOURCE)))
        assert legal == [("k", 4), ("k", 8), ("k", 16)]

    def test_malformed_params(self, matmul_nest: LoopNest) -> None:
        """Parameter sets must be (dim, width)."""
        with pytest.raises(IllegalTransformError):
            VectorizationOperator().apply(Node(matmul_nest), ("j",))


class TestContract:
    """Properties shared by all operators."""

    def test_scenario_enumeration(self, matmul_nest: LoopNest) -> None:
        """The scenario operators offer 2 + 2 + 1 + 1 options for matmul."""
        counts = [len(op.enumerate_legal(Node(matmul_nest))) for op in scenario_operators()]
        assert counts == [2, 2, 1, 1]

    @pytest.mark.parametrize("source", _ALL_SOURCES)
    def test_fail_closed_two_levels(self, source: str) -> None:
        """Everything enumerated applies and validates, also one step deeper."""
        ops = _exhaustive_operators()
        root = Node(make_nest(source))
        for op in ops:
            for params in op.enumerate_legal(root):
                child = root.derive(op.apply(root, params), op.record(params), 1)
                validate(child.state)
                for inner in ops:
                    for inner_params in inner.enumerate_legal(child):
                        validate(inner.apply(child, inner_params))

    @pytest.mark.parametrize("source", _ALL_SOURCES)
    def test_once_per_nest(self, source: str) -> None:
        """After an operator applies, it has nothing left to propose."""
        root = Node(make_nest(source))
        for op in _exhaustive_operators():
            for params in op.enumerate_legal(root):
                child = root.derive(op.apply(root, params), op.record(params), 1)
                assert op.enumerate_legal(child) == []

    def test_enumeration_is_deterministic(self, matmul_nest: LoopNest) -> None:
        """Two enumerations return the same parameter sets in the same order."""
        for op in default_operators():
            assert op.enumerate_legal(Node(matmul_nest)) == op.enumerate_legal(Node(matmul_nest))

    def test_record(self) -> None:
        """Operators record their kind and parameters."""
        record = InterchangeOperator().record(["k", "i", "j"])
        assert record == TransformationRecord(TransformKind.INTERCHANGE, ("k", "i", "j"))
        assert record.describe() == "interchange(k, i, j)"

    def test_default_operators_order(self) -> None:
        """The default operator set covers every kind once."""
        kinds = [op.kind for op in default_operators()]
        assert kinds == [
            TransformKind.TILING,
            TransformKind.INTERCHANGE,
            TransformKind.PARALLELIZATION,
            TransformKind.VECTORIZATION,
        ]

    def test_exhaustive_paths_are_finite(self, matmul_nest: LoopNest) -> None:
        """Every path applies at most one transformation per kind."""
        ops = [
            TilingOperator(sizes=(32,)),
            InterchangeOperator(candidates=[("k", "i", "j")]),
            ParallelizationOperator(),
        ]
        frontier = [Node(matmul_nest)]
        depth = 0
        while frontier:
            depth += 1
            frontier = [
                node.derive(op.apply(node, params), op.record(params), 0)
                for node in frontier
                for op in ops
                for params in op.enumerate_legal(node)
            ]
            assert depth <= len(ops) + 1
        assert depth == len(ops) + 1
