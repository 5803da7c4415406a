"""Compile and time generated kernel variants in worker processes."""

import logging
import signal
import time
from concurrent.futures import Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, NamedTuple

import numpy as np

from looptune.utils.source import capture_error, exec_source_to_func

logger = logging.getLogger(__name__)


class RunRequest(NamedTuple):
    """Everything a worker needs to compile and time one variant.

    Attributes:
        source: Generated kernel source.
        func_name: Kernel function name in ``source``.
        shapes: Tensor shapes in parameter order.
        output_name: Tensor written by the kernel.
        num_threads: Threads for parallel loops, 0 if nothing is parallel.
        warmup: Untimed runs after the correctness run.
        repetitions: Timed runs.
        timeout: Seconds allowed for the whole request.
        seed: Seed for input generation.
    """

    source: str
    func_name: str
    shapes: dict[str, tuple[int, ...]]
    output_name: str
    num_threads: int
    warmup: int
    repetitions: int
    timeout: float
    seed: int


class RunOutcome(NamedTuple):
    """Result of running a single kernel variant.

    Empty ``error`` indicates success. On failure ``error_kind`` is
    ``"compile"``, ``"runtime"`` or ``"timeout"``.
    """

    timings_ms: tuple[float, ...]
    output: np.ndarray | None
    error_kind: str
    error: str


def _init_worker() -> None:
    """Leave Ctrl-C handling to the parent process."""
    signal.signal(signal.SIGINT, signal.SIG_IGN)


def _timeout_handler(signum: int, frame: Any) -> None:
    """Signal handler that raises TimeoutError for a running candidate."""
    raise TimeoutError("Candidate exceeded its time limit")


def make_inputs(shapes: dict[str, tuple[int, ...]], seed: int) -> dict[str, np.ndarray]:
    """Generate deterministic float64 input tensors."""
    rng = np.random.default_rng(seed)
    return {name: rng.random(shape) for name, shape in shapes.items()}


def run_candidate(request: RunRequest) -> RunOutcome:
    """Top-level picklable worker: compile, check-run, warm up and time a kernel.

    The first call runs on fresh inputs and its output is returned for the
    correctness check. Must run on the main thread of its process, since
    the time limit is enforced with ``SIGALRM``.

    Args:
        request: Variant to run.

    Returns:
        Timings in milliseconds plus the checked output, or the error.
    """
    timings: list[float] = []
    stage = "compile"
    pool = ThreadPoolExecutor(max_workers=request.num_threads) if request.num_threads else None
    signal.signal(signal.SIGALRM, _timeout_handler)
    signal.setitimer(signal.ITIMER_REAL, request.timeout)
    try:
        kernel = exec_source_to_func(request.source, request.func_name)
        stage = "runtime"
        tensors = make_inputs(request.shapes, request.seed)
        args = list(tensors.values())
        kernel(*args, pool)
        output = tensors[request.output_name].copy()
        for _ in range(request.warmup):
            kernel(*args, pool)
        for _ in range(request.repetitions):
            start = time.perf_counter()
            kernel(*args, pool)
            timings.append((time.perf_counter() - start) * 1000.0)
    except TimeoutError as e:
        return RunOutcome((), None, "timeout", capture_error(e))
    except Exception as e:
        return RunOutcome((), None, stage, capture_error(e))
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        if pool is not None:
            pool.shutdown(wait=False, cancel_futures=True)
    return RunOutcome(tuple(timings), output, "", "")


class EvaluationPool:
    """Process pool that runs candidates in isolation from the search.

    Attributes:
        workers: Number of worker processes.
    """

    def __init__(self, workers: int) -> None:
        """Start the process pool.

        Args:
            workers: Number of worker processes.
        """
        self.workers = workers
        self._executor: ProcessPoolExecutor | None = None
        self._start()

    def _start(self) -> None:
        self._executor = ProcessPoolExecutor(max_workers=self.workers, initializer=_init_worker)
        logger.info("Evaluation pool: %d workers", self.workers)

    def submit(self, request: RunRequest) -> Future:
        """Submit a candidate for background execution."""
        if self._executor is None:
            raise RuntimeError("EvaluationPool is shut down")
        return self._executor.submit(run_candidate, request)

    def restart(self) -> None:
        """Kill every worker and start a fresh pool."""
        logger.warning("Restarting evaluation pool")
        self.shutdown(kill=True)
        self._start()

    def shutdown(self, kill: bool = False) -> None:
        """Shut down the process pool.

        Args:
            kill: Terminate workers instead of waiting for running tasks.
        """
        if self._executor is None:
            return
        if kill:
            # ProcessPoolExecutor has no public terminate; fall back to a plain shutdown if _processes goes away.
            processes = getattr(self._executor, "_processes", None) or {}
            for process in list(processes.values()):
                process.terminate()
        self._executor.shutdown(wait=not kill, cancel_futures=True)
        self._executor = None
