"""Shared test utilities and fixtures for pytest."""

from collections.abc import Callable

import numpy as np
import pytest

from looptune.context import CompilationContext, TargetInfo
from looptune.ir import LoopNest, Module, parse_function, parse_module
from looptune.node import Node
from looptune.search.cost_model import estimate_cost
from looptune.search.evaluator import (
    CostModelEvaluator,
    Evaluation,
    Evaluator,
    ExecutionFailure,
    FailureKind,
    Measurement,
)
from looptune.transforms import InterchangeOperator, ParallelizationOperator, TilingOperator, VectorizationOperator
from looptune.utils.source import exec_source_to_func

MATMUL_SOURCE = """
def matmul(A, B, C):
    for i in range(64):
        for j in range(64):
            for k in range(64):
                C[i, j] += A[i, k] * B[k, j]
"""

SMALL_MATMUL_SOURCE = """
def matmul(A, B, C):
    for i in range(16):
        for j in range(16):
            for k in range(16):
                C[i, j] += A[i, k] * B[k, j]
"""

STENCIL_SOURCE = """
def stencil(A, B):
    for i in range(1, 17):
        for j in range(1, 17):
            B[i, j] = (A[i - 1, j] + A[i + 1, j] + A[i, j - 1] + A[i, j + 1]) * 0.25
"""

PREFIX_SOURCE = """
def prefix(X):
    for i in range(1, 32):
        for j in range(16):
            X[i, j] = X[i - 1, j] + X[i, j]
"""

WAVEFRONT_SOURCE = """
def wavefront(X):
    for i in range(1, 16):
        for j in range(1, 16):
            X[i, j] = X[i - 1, j + 1] + X[i, j - 1]
"""

ROWSUM_SOURCE = """
def rowsum(A, s):
    for i in range(32):
        for k in range(64):
            s[i] += A[i, k]
"""

TWO_KERNELS_SOURCE = MATMUL_SOURCE + ROWSUM_SOURCE

SCENARIO_PERMUTATIONS = [("i", "k", "j"), ("k", "i", "j")]


def make_nest(source: str = MATMUL_SOURCE) -> LoopNest:
    """Parse the first kernel of ``source``."""
    return parse_function(source)


def make_context(source: str = MATMUL_SOURCE, target: TargetInfo | None = None) -> CompilationContext:
    """Build a compilation context around the kernels of ``source``."""
    return CompilationContext(parse_module(source), target)


def make_root(source: str = MATMUL_SOURCE) -> tuple[CompilationContext, Node]:
    """Build a context and the root node of its first kernel."""
    context = make_context(source)
    return context, Node.root(context, context.module.functions[0].name)


def scenario_operators() -> list:
    """Operators with 2 tilings, 2 permutations, 1 parallel set and 1 vectorization for matmul."""
    return [
        TilingOperator(sizes=(16, 32)),
        InterchangeOperator(candidates=SCENARIO_PERMUTATIONS),
        ParallelizationOperator(mode="maximal"),
        VectorizationOperator(widths=(8,)),
    ]


def cost_model_evaluator() -> CostModelEvaluator:
    """Deterministic evaluator backed by the analytic cost model."""
    return CostModelEvaluator(estimate_cost)


class FailTransformedEvaluator(Evaluator):
    """Measures the root at a fixed cost and fails every transformed state."""

    def __init__(self, root_cost: float = 10.0, kind: FailureKind = FailureKind.COMPILE) -> None:
        self.root_cost = root_cost
        self.kind = kind
        self.calls = 0

    def evaluate(self, node: Node) -> Evaluation:
        self.calls += 1
        if node.depth == 0:
            return Measurement(self.root_cost, (self.root_cost,))
        return ExecutionFailure(self.kind, "candidate failed to build")


class CountingEvaluator(Evaluator):
    """Wraps a cost function and records every node it scores."""

    def __init__(self, cost_fn: Callable[[LoopNest], float] = estimate_cost) -> None:
        self.cost_fn = cost_fn
        self.seen: list[Node] = []

    def evaluate(self, node: Node) -> Evaluation:
        self.seen.append(node)
        cost = self.cost_fn(node.state)
        return Measurement(cost, (cost,))


class RaisingEvaluator(Evaluator):
    """Raises for transformed states; ``evaluate_all`` must turn that into failures."""

    def evaluate(self, node: Node) -> Evaluation:
        if node.depth > 0:
            raise RuntimeError("backend exploded")
        return Measurement(1.0, (1.0,))


def run_kernel(source: str, name: str, tensors: dict[str, np.ndarray], threads: int = 0) -> dict[str, np.ndarray]:
    """Execute generated kernel source on copies of ``tensors``.

    Args:
        source: Rendered kernel module source.
        name: Kernel function name.
        tensors: Input tensors in parameter order.
        threads: Thread pool size for parallel loops, 0 for none.

    Returns:
        The tensors after the call.
    """
    from concurrent.futures import ThreadPoolExecutor

    kernel = exec_source_to_func(source, name)
    args = {key: value.copy() for key, value in tensors.items()}
    if threads:
        with ThreadPoolExecutor(max_workers=threads) as pool:
            kernel(*args.values(), pool)
    else:
        kernel(*args.values(), None)
    return args


def make_random_array(shape: tuple[int, ...], seed: int) -> np.ndarray:
    """Generate a deterministic random float64 array in [-1, 1]."""
    rng = np.random.default_rng(seed)
    return rng.uniform(-1.0, 1.0, size=shape)


@pytest.fixture
def matmul_nest() -> LoopNest:
    """The 64x64x64 matmul kernel, untransformed."""
    return make_nest(MATMUL_SOURCE)


@pytest.fixture
def small_matmul_nest() -> LoopNest:
    """A 16x16x16 matmul, small enough to execute in tests."""
    return make_nest(SMALL_MATMUL_SOURCE)


@pytest.fixture
def two_kernel_module() -> Module:
    """Module with a matmul and a row sum."""
    return parse_module(TWO_KERNELS_SOURCE)


def normalize_source(source: str) -> str:
    """Normalize source code for comparison.

    Strips leading/trailing whitespace from each line, removes blank lines,
    and joins with single newlines.

    Args:
        source: Source code string.

    Returns:
        Normalized source string.
    """
    lines = [line.strip() for line in source.strip().splitlines()]
    return "\n".join(line for line in lines if line)
