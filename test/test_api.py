"""End-to-end tests for the tune() entry point.

Run with: pytest test/test_api.py -v
"""

import numpy as np
import pytest
from conftest import (
    MATMUL_SOURCE,
    SMALL_MATMUL_SOURCE,
    TWO_KERNELS_SOURCE,
    cost_model_evaluator,
    make_nest,
    make_random_array,
    run_kernel,
    scenario_operators,
)

from looptune import RootConstructionError, SearchConfig, tune
from looptune.ir import parse_module, render, tensor_shapes
from looptune.search import Termination


def _rowsum_kernel(A, s):
    for i in range(32):
        for k in range(64):
            s[i] += A[i, k]


def _tune_with_cost_model(program, **kwargs):
    return tune(
        program,
        config=SearchConfig(beam_size=2),
        operators=kwargs.pop("operators", scenario_operators()),
        evaluator=cost_model_evaluator(),
        **kwargs,
    )


class TestTune:
    """Tests for tune() with the analytic cost model."""

    def test_commits_best_schedule(self) -> None:
        """The best state is committed into the returned module."""
        result = _tune_with_cost_model(MATMUL_SOURCE)
        assert result.function == result.search.best.state
        assert result.module.get("matmul") == result.function
        assert result.search.best.score < result.search.root.score
        assert result.source.startswith("import numpy as np")
        assert "def matmul(A, B, C, _pool):" in result.source

    def test_other_functions_untouched(self) -> None:
        """Tuning one function leaves the rest of the module as it was."""
        original = parse_module(TWO_KERNELS_SOURCE)
        result = _tune_with_cost_model(TWO_KERNELS_SOURCE, function_name="rowsum", operators=None)
        assert result.module.names == ("matmul", "rowsum")
        assert result.module.get("matmul") == original.get("matmul")
        assert result.function.name == "rowsum"

    def test_accepts_nest_and_callable(self) -> None:
        from_nest = _tune_with_cost_model(make_nest(MATMUL_SOURCE))
        assert from_nest.function.name == "matmul"
        from_callable = _tune_with_cost_model(_rowsum_kernel, operators=None)
        assert from_callable.function.name == "_rowsum_kernel"
        assert from_callable.module.names == ("_rowsum_kernel",)

    def test_unknown_function(self) -> None:
        with pytest.raises(RootConstructionError, match="missing"):
            _tune_with_cost_model(MATMUL_SOURCE, function_name="missing")

    def test_tuned_source_matches_reference(self) -> None:
        """The committed schedule computes what the untransformed kernel computes."""
        result = _tune_with_cost_model(MATMUL_SOURCE)
        untransformed = result.function.untransformed()
        tensors = {
            name: make_random_array(shape, seed)
            for seed, (name, shape) in enumerate(tensor_shapes(untransformed).items())
        }
        expected = run_kernel(render(untransformed), "matmul", tensors)["C"]
        actual = run_kernel(result.source, "matmul", tensors, threads=2)["C"]
        np.testing.assert_allclose(actual, expected, rtol=1e-10, atol=1e-10)


class TestTuneMeasured:
    """tune() with the default execution evaluator."""

    def test_small_matmul(self) -> None:
        """Every default transformation of a small matmul runs correctly."""
        config = SearchConfig(beam_size=2, max_depth=1, repetitions=1, warmup=0, per_candidate_timeout=30.0)
        result = tune(SMALL_MATMUL_SOURCE, config=config)
        search = result.search
        assert search.termination == Termination.MAX_DEPTH
        assert search.generations[0].children == 9
        assert search.generations[0].failed == 0
        assert search.best.score <= search.root.score
        assert result.module.get("matmul") == search.best.state
