"""Tests for rendering LoopNest schedules to executable NumPy source.

Every transformed kernel must compute the same result as the
untransformed one.

Run with: pytest test/test_codegen.py -v
"""

import numpy as np
import pytest
from conftest import (
    ROWSUM_SOURCE,
    SMALL_MATMUL_SOURCE,
    STENCIL_SOURCE,
    make_nest,
    make_random_array,
    normalize_source,
    run_kernel,
)

from looptune.ir import LoopNest, render, tensor_shapes


def _inputs(nest: LoopNest) -> dict[str, np.ndarray]:
    return {name: make_random_array(shape, seed=i) for i, (name, shape) in enumerate(tensor_shapes(nest).items())}


def _assert_equivalent(nest: LoopNest, threads: int = 0) -> None:
    """Run the scheduled and untransformed kernels and compare the output."""
    tensors = _inputs(nest)
    target = nest.body.target.tensor
    expected = run_kernel(render(nest.untransformed()), nest.name, tensors)[target]
    actual = run_kernel(render(nest), nest.name, tensors, threads=threads)[target]
    np.testing.assert_allclose(actual, expected, rtol=1e-9, atol=1e-9)


class TestRenderText:
    """Tests for the shape of generated source."""

    def test_untransformed_matmul(self, small_matmul_nest: LoopNest) -> None:
        """The untransformed kernel mirrors the input nest plus the pool argument."""
        expected = """
        import numpy as np
        def matmul(A, B, C, _pool):
            for i in range(0, 16):
                for j in range(0, 16):
                    for k in range(0, 16):
                        C[i, j] += A[i, k] * B[k, j]
        """
        assert normalize_source(render(small_matmul_nest)) == normalize_source(expected)

    def test_tiled_interchanged(self, small_matmul_nest: LoopNest) -> None:
        """Tile loops form an outer band in the scheduled order."""
        nest = small_matmul_nest._replace(order=("k", "i", "j"), tiles=(4, 0, 8))
        expected = """
        import numpy as np
        def matmul(A, B, C, _pool):
            for k_t in range(0, 16, 8):
                for i_t in range(0, 16, 4):
                    for k in range(k_t, k_t + 8):
                        for i in range(i_t, i_t + 4):
                            for j in range(0, 16):
                                C[i, j] += A[i, k] * B[k, j]
        """
        assert normalize_source(render(nest)) == normalize_source(expected)

    def test_vectorized_slices(self, small_matmul_nest: LoopNest) -> None:
        """The vectorized dim steps by its width and is sliced in every access."""
        source = render(small_matmul_nest._replace(vector=("j", 8)))
        assert "for j in range(0, 16, 8):" in source
        assert "C[i, j:j + 8] += A[i, k] * B[k, j:j + 8]" in source

    def test_vectorized_reduction_sums(self) -> None:
        """Vectorizing a reduction dim wraps the right-hand side in np.sum."""
        source = render(make_nest(ROWSUM_SOURCE)._replace(vector=("k", 16)))
        assert "s[i] += np.sum(A[i, k:k + 16])" in source

    def test_parallel_worker(self, small_matmul_nest: LoopNest) -> None:
        """The outermost parallel loop becomes a worker mapped over the pool."""
        source = render(small_matmul_nest._replace(parallel=("i", "j")))
        lines = [line.strip() for line in source.splitlines()]
        assert "def _parallel_i(i):" in lines
        assert "list(_pool.map(_parallel_i, range(0, 16)))" in lines
        assert "for j in range(0, 16):" in lines

    def test_offsets_rendered(self) -> None:
        """Subscript offsets keep their sign."""
        source = render(make_nest(STENCIL_SOURCE))
        assert "A[i - 1, j]" in source
        assert "A[i, j + 1]" in source
        assert "* 0.25" in source


class TestRenderSemantics:
    """Tests that scheduled kernels compute the untransformed result."""

    @pytest.mark.parametrize(
        "schedule",
        [
            {"order": ("k", "j", "i")},
            {"tiles": (4, 8, 4)},
            {"vector": ("j", 4)},
            {"order": ("j", "k", "i"), "tiles": (0, 8, 4), "vector": ("j", 4)},
        ],
    )
    def test_matmul_schedules(self, small_matmul_nest: LoopNest, schedule: dict) -> None:
        """Interchange, tiling and vectorization preserve matmul."""
        _assert_equivalent(small_matmul_nest._replace(**schedule))

    def test_parallel_matmul(self, small_matmul_nest: LoopNest) -> None:
        """Parallel loops run on a thread pool and preserve the result."""
        nest = small_matmul_nest._replace(order=("k", "i", "j"), tiles=(8, 0, 0), parallel=("i", "j"))
        _assert_equivalent(nest, threads=4)

    def test_vectorized_reduction(self) -> None:
        """The np.sum reduction matches the scalar loop."""
        _assert_equivalent(make_nest(ROWSUM_SOURCE)._replace(vector=("k", 8), tiles=(0, 32)))

    def test_stencil_schedules(self) -> None:
        """Stencil with offsets survives tiling and vectorization."""
        nest = make_nest(STENCIL_SOURCE)._replace(tiles=(4, 8), vector=("j", 4), parallel=("i",))
        _assert_equivalent(nest, threads=2)
