"""Tune a loop-nest kernel with beam search.

Parses a Python kernel file, searches over tiling, interchange,
parallelization and vectorization, then writes the tuned schedule, the
tuned kernel source, a JSON report and a search plot to the output
directory.

Run with:
    python examples/tune_kernel.py --output-dir /tmp/looptune_matmul
    python examples/tune_kernel.py --kernel my_kernels.py --function conv1d --beam-size 3
"""

import argparse
import logging
from pathlib import Path

from looptune import SearchConfig, TargetInfo, format_schedule, save_schedule, tune
from looptune.search import CostModelEvaluator, estimate_cost
from looptune.utils import setup_logging
from looptune.visualize import plot_search

logger = logging.getLogger(__name__)

MATMUL = """
def matmul(A, B, C):
    for i in range(64):
        for j in range(64):
            for k in range(64):
                C[i, j] += A[i, k] * B[k, j]
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Execution-driven beam search over loop-nest schedules")
    parser.add_argument("--kernel", type=str, default=None, help="Python file with kernel functions (default: matmul)")
    parser.add_argument("--function", type=str, default=None, help="Function to tune (default: first function)")
    parser.add_argument("--output-dir", type=str, required=True, help="Directory for the report and tuned kernel")
    parser.add_argument("--beam-size", type=int, default=4)
    parser.add_argument("--max-depth", type=int, default=4)
    parser.add_argument("--budget", type=int, default=None, help="Maximum evaluations, root included")
    parser.add_argument("--timeout", type=float, default=10.0, help="Seconds per candidate")
    parser.add_argument("--repetitions", type=int, default=5)
    parser.add_argument("--workers", type=int, default=1, help="Evaluation worker processes")
    parser.add_argument("--threads", type=int, default=4, help="Threads for parallel loops")
    parser.add_argument("--cost-model", action="store_true", help="Score with the analytic model instead of running")
    args = parser.parse_args()

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    setup_logging(str(output_dir / "debug.log"))

    source = Path(args.kernel).read_text() if args.kernel else MATMUL
    target = TargetInfo(num_threads=args.threads)
    config = SearchConfig(
        beam_size=args.beam_size,
        max_depth=args.max_depth,
        evaluation_budget=args.budget,
        per_candidate_timeout=args.timeout,
        repetitions=args.repetitions,
        workers=args.workers,
        report_path=str(output_dir / "report.json"),
        progress=True,
    )
    evaluator = CostModelEvaluator(lambda state: estimate_cost(state, target)) if args.cost_model else None
    result = tune(source, args.function, config=config, evaluator=evaluator, target=target)

    result.search.summary()
    best = result.search.best
    cost = best.score if best.is_viable else None
    print(format_schedule(result.function.name, best.history))
    save_schedule(output_dir / "schedule.json", result.function.name, best.history, cost)
    (output_dir / f"{result.function.name}_tuned.py").write_text(result.source)
    plot_search(result.search, output_dir / "search.png")
    logger.info("Outputs written to %s", output_dir)


if __name__ == "__main__":
    main()
