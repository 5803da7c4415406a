"""Fitness evaluation for search nodes.

An evaluator turns a node into either a ``Measurement`` (a cost, lower is
better) or an ``ExecutionFailure``. Failures are values, never raised past
the generation boundary: the search maps them to the sentinel score.

``ExecutionEvaluator`` measures real execution time. Each candidate is
rendered to Python/NumPy source, compiled and run in a worker process
(``warmup`` untimed runs, then ``repetitions`` timed runs reduced with the
median). The output of the first run is compared against the untransformed
kernel's output, so an incorrect schedule cannot win on speed.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, wait
from concurrent.futures.process import BrokenProcessPool
from enum import Enum
from typing import NamedTuple

import numpy as np
from tqdm import tqdm

from looptune.context import TargetInfo
from looptune.ir.analysis import tensor_shapes
from looptune.ir.codegen import render
from looptune.ir.types import LoopNest
from looptune.node import Node
from looptune.search.compile import EvaluationPool, RunOutcome, RunRequest
from looptune.utils.source import capture_error

logger = logging.getLogger(__name__)

_GRACE_S = 10.0


class FailureKind(str, Enum):
    """Why a candidate has no usable measurement."""

    COMPILE = "compile"
    RUNTIME = "runtime"
    TIMEOUT = "timeout"
    INCORRECT = "incorrect"
    CANCELLED = "cancelled"


class ExecutionFailure(NamedTuple):
    """A candidate that could not be measured.

    Attributes:
        kind: Failure category.
        message: Error text, usually a full traceback.
    """

    kind: FailureKind
    message: str

    @property
    def summary(self) -> str:
        """Last non-empty line of the message."""
        lines = [line for line in self.message.strip().splitlines() if line.strip()]
        return lines[-1].strip() if lines else self.kind.value


class Measurement(NamedTuple):
    """A successful evaluation.

    Attributes:
        cost: Reduced cost in milliseconds.
        timings: Raw per-repetition timings the cost was reduced from.
    """

    cost: float
    timings: tuple[float, ...] = ()


Evaluation = Measurement | ExecutionFailure


def reduce_timings(timings: Sequence[float]) -> float:
    """Reduce repeated timings to one cost with the median.

    Raises:
        ValueError: If ``timings`` is empty.
    """
    if not timings:
        raise ValueError("Cannot reduce an empty list of timings")
    return float(np.median(np.asarray(timings, dtype=np.float64)))


class Evaluator(ABC):
    """Scores search nodes. Never mutates a node's state or the context."""

    @abstractmethod
    def evaluate(self, node: Node) -> Evaluation:
        """Evaluate a single node."""

    def evaluate_all(self, nodes: Sequence[Node]) -> list[Evaluation]:
        """Evaluate a batch of nodes, converting exceptions into failures.

        Args:
            nodes: Nodes of one generation.

        Returns:
            One evaluation per node, in input order.
        """
        results: list[Evaluation] = []
        for node in nodes:
            try:
                results.append(self.evaluate(node))
            except Exception as e:
                results.append(ExecutionFailure(FailureKind.RUNTIME, capture_error(e)))
        return results

    def close(self) -> None:
        """Release evaluator resources."""

    def __enter__(self) -> "Evaluator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class CostModelEvaluator(Evaluator):
    """Scores nodes with a deterministic cost function of their state."""

    def __init__(self, cost_fn: Callable[[LoopNest], float]) -> None:
        """Initialize with a cost function.

        Args:
            cost_fn: Maps an IR state to a non-negative cost.
        """
        self.cost_fn = cost_fn

    def evaluate(self, node: Node) -> Evaluation:
        cost = float(self.cost_fn(node.state))
        if not math.isfinite(cost) or cost < 0:
            return ExecutionFailure(FailureKind.RUNTIME, f"Cost model returned {cost}")
        return Measurement(cost, (cost,))


class ExecutionEvaluator(Evaluator):
    """Measures candidates by compiling and running them in worker processes.

    Attributes:
        target: Execution target (thread count for parallel loops).
        timeout: Seconds one candidate may take in its worker.
        repetitions: Timed runs per candidate.
        warmup: Untimed runs before timing.
        workers: Number of worker processes.
        progress: Show a tqdm progress bar per batch.
        rtol: Relative tolerance of the correctness check.
        atol: Absolute tolerance of the correctness check.
        seed: Seed for generated inputs.
    """

    def __init__(
        self,
        target: TargetInfo | None = None,
        timeout: float = 10.0,
        repetitions: int = 5,
        warmup: int = 1,
        workers: int = 1,
        progress: bool = False,
        rtol: float = 1e-4,
        atol: float = 1e-4,
        seed: int = 0,
    ) -> None:
        """Initialize the evaluator. The worker pool starts on first use.

        Raises:
            ValueError: If a count or the timeout is out of range.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if repetitions < 1 or warmup < 0 or workers < 1:
            raise ValueError(
                f"Invalid counts: repetitions={repetitions}, warmup={warmup}, workers={workers}"
            )
        self.target = target if target is not None else TargetInfo()
        self.timeout = timeout
        self.repetitions = repetitions
        self.warmup = warmup
        self.workers = workers
        self.progress = progress
        self.rtol = rtol
        self.atol = atol
        self.seed = seed
        self._pool: EvaluationPool | None = None
        self._references: dict[LoopNest, np.ndarray | None] = {}

    def _request(self, state: LoopNest) -> RunRequest:
        return RunRequest(
            source=render(state),
            func_name=state.name,
            shapes=tensor_shapes(state),
            output_name=state.body.target.tensor,
            num_threads=self.target.num_threads if state.parallel else 0,
            warmup=self.warmup,
            repetitions=self.repetitions,
            timeout=self.timeout,
            seed=self.seed,
        )

    def _get_pool(self) -> EvaluationPool:
        if self._pool is None:
            self._pool = EvaluationPool(self.workers)
        return self._pool

    def evaluate(self, node: Node) -> Evaluation:
        return self.evaluate_all([node])[0]

    def evaluate_all(self, nodes: Sequence[Node]) -> list[Evaluation]:
        """Run a batch of candidates and wait for all of them.

        Args:
            nodes: Nodes of one generation.

        Returns:
            One evaluation per node, in input order.
        """
        if not nodes:
            return []
        states = [node.state for node in nodes]
        outcomes = self._run_all(states, show_progress=True)
        for state, outcome in zip(states, outcomes):
            if state == state.untransformed() and state not in self._references:
                self._references[state] = outcome.output
        missing = list(dict.fromkeys(s.untransformed() for s in states if s.untransformed() not in self._references))
        if missing:
            for state, outcome in zip(missing, self._run_all(missing, show_progress=False)):
                self._references[state] = outcome.output
                if outcome.error:
                    logger.warning("Reference run of %s failed; correctness is not checked", state.name)
        results: list[Evaluation] = []
        for state, outcome in zip(states, outcomes):
            try:
                results.append(self._to_evaluation(state, outcome))
            except Exception as e:
                results.append(ExecutionFailure(FailureKind.RUNTIME, capture_error(e)))
        return results

    def _to_evaluation(self, state: LoopNest, outcome: RunOutcome) -> Evaluation:
        if outcome.error:
            return ExecutionFailure(FailureKind(outcome.error_kind), outcome.error)
        reference = self._references.get(state.untransformed())
        if reference is not None and not np.allclose(outcome.output, reference, rtol=self.rtol, atol=self.atol):
            max_err = float(np.max(np.abs(outcome.output - reference)))
            return ExecutionFailure(FailureKind.INCORRECT, f"Output differs from reference (max abs error {max_err:g})")
        return Measurement(reduce_timings(outcome.timings_ms), outcome.timings_ms)

    def _run_all(self, states: list[LoopNest], show_progress: bool) -> list[RunOutcome]:
        """Run states with at most ``workers`` in flight, enforcing deadlines.

        A candidate still running after its deadline holds a worker that
        cannot be interrupted, so the pool is restarted and the other
        in-flight candidates are resubmitted.
        """
        pool = self._get_pool()
        outcomes: list[RunOutcome | None] = [None] * len(states)
        pending = deque(range(len(states)))
        inflight: dict[Future, tuple[int, float]] = {}
        limit = self.timeout + _GRACE_S
        pbar = tqdm(
            total=len(states),
            desc=f"Evaluating {len(states)} candidates on {pool.workers} workers",
            unit="candidates",
            disable=not (self.progress and show_progress),
        )
        while pending or inflight:
            while pending and len(inflight) < pool.workers:
                index = pending.popleft()
                try:
                    request = self._request(states[index])
                except Exception as e:
                    outcomes[index] = RunOutcome((), None, "compile", capture_error(e))
                    pbar.update(1)
                    continue
                inflight[pool.submit(request)] = (index, time.monotonic() + limit)
            if not inflight:
                continue
            nearest = min(deadline for _, deadline in inflight.values())
            done, _ = wait(list(inflight), timeout=max(nearest - time.monotonic(), 0.0), return_when=FIRST_COMPLETED)
            broken = False
            for future in done:
                index, _ = inflight.pop(future)
                try:
                    outcomes[index] = future.result()
                except BrokenProcessPool as e:
                    broken = True
                    outcomes[index] = RunOutcome((), None, "runtime", f"Worker process crashed: {e}")
                pbar.update(1)
            now = time.monotonic()
            expired = [future for future, (_, deadline) in inflight.items() if deadline <= now]
            for future in expired:
                index, _ = inflight.pop(future)
                message = f"Candidate did not finish within {limit:.1f}s; its worker was terminated"
                outcomes[index] = RunOutcome((), None, "timeout", message)
                pbar.update(1)
            if broken or expired:
                for index in sorted((index for index, _ in inflight.values()), reverse=True):
                    pending.appendleft(index)
                inflight.clear()
                pool.restart()
        pbar.close()
        return outcomes

    def close(self) -> None:
        """Shut down the worker pool."""
        if self._pool is not None:
            self._pool.shutdown()
            self._pool = None
