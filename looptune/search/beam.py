"""Beam search over transformation sequences.

Each generation expands every frontier node with every operator, scores
all children at once (a barrier), remembers the best node ever seen, and
keeps the ``beam_size`` lowest-cost children as the next frontier.
Children that fail evaluation stay in the search tree with the sentinel
score but never enter the frontier.
"""

import dataclasses
import logging
import math
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from looptune.context import CompilationContext
from looptune.node import SENTINEL_SCORE, Node, SearchTree, format_history
from looptune.search.base import SearchConfig, SearchMethod
from looptune.search.evaluator import Evaluation, Evaluator, ExecutionEvaluator, ExecutionFailure, FailureKind
from looptune.search.report import SearchReport
from looptune.search.results import GenerationStats, SearchResult, Termination
from looptune.transforms import Params, TransformOperator, default_operators

logger = logging.getLogger(__name__)


class BeamSearch(SearchMethod):
    """Width-bounded breadth-first search scored by an evaluator.

    Attributes:
        beam_size: Children kept per generation.
        context: Shared compilation context; every derivation runs under
            its single-writer lock.
        function_name: Function of the context's module being tuned.
        operators: Transformation operators, consulted in order.
        evaluator: Scores candidates.
        config: Remaining search settings.
    """

    def __init__(
        self,
        beam_size: int,
        context: CompilationContext,
        function_name: str,
        operators: Sequence[TransformOperator] | None = None,
        evaluator: Evaluator | None = None,
        config: SearchConfig | None = None,
    ) -> None:
        """Initialize the search.

        Args:
            beam_size: Positive frontier width; overrides ``config.beam_size``.
            context: Shared compilation context.
            function_name: Function to tune.
            operators: Operators to use; ``default_operators`` when None.
            evaluator: Evaluator to use; an ``ExecutionEvaluator`` built from
                ``config`` when None, owned and closed by the search.
            config: Search settings; defaults to ``SearchConfig()``.

        Raises:
            ValueError: If ``beam_size`` or the config is invalid.
        """
        self.config = dataclasses.replace(config if config is not None else SearchConfig(), beam_size=beam_size)
        self.beam_size = beam_size
        self.context = context
        self.function_name = function_name
        self.operators = list(operators) if operators is not None else default_operators(context.target)
        self._owns_evaluator = evaluator is None
        if evaluator is None:
            evaluator = ExecutionEvaluator(
                target=context.target,
                timeout=self.config.per_candidate_timeout,
                repetitions=self.config.repetitions,
                warmup=self.config.warmup,
                workers=self.config.workers or 1,
                progress=self.config.progress,
            )
        self.evaluator = evaluator

    def search(self, root: Node) -> Node:
        return self.run(root).best

    def run(self, root: Node) -> SearchResult:
        """Search from ``root`` and return the full result.

        Args:
            root: Depth-0 node with id 0 for the tuned function.

        Returns:
            SearchResult with the global best node and diagnostics.

        Raises:
            ValueError: If ``root`` is not a root node of ``function_name``.
        """
        if root.state.name != self.function_name:
            raise ValueError(f"Root tunes {root.state.name!r}, expected {self.function_name!r}")
        try:
            return self._run(root)
        finally:
            if self._owns_evaluator:
                self.evaluator.close()

    def _run(self, root: Node) -> SearchResult:
        cfg = self.config
        tree = SearchTree(root)
        report = SearchReport(Path(cfg.report_path), self.function_name, cfg.to_dict()) if cfg.report_path else None
        budget = cfg.evaluation_budget if cfg.evaluation_budget is not None else math.inf
        tree.admit(self.context.intern(root.state)[0])
        if report is not None:
            report.add_candidate(root.node_id, None, 0, [])

        evaluations = 0
        if not root.is_evaluated:
            self._score(tree, [root], self.evaluator.evaluate_all([root]), report)
            evaluations = 1
        elif report is not None:
            self._report_score(report, root)
        logger.info("Root %s: cost %s", self.function_name, _format_cost(root.score))

        result = SearchResult(best=root, root=root, tree=tree)
        frontier = [root]
        generation = 0
        while True:
            if cfg.max_depth is not None and generation >= cfg.max_depth:
                result.termination = Termination.MAX_DEPTH
                break
            if evaluations >= budget:
                result.termination = Termination.BUDGET
                break
            generation += 1
            start = time.perf_counter()
            stats = GenerationStats(generation=generation, frontier_in=len(frontier))
            children = self._expand(tree, frontier, stats, report)
            if not children:
                result.termination = Termination.FIXED_POINT
                break

            remaining = budget - evaluations
            to_evaluate = children if len(children) <= remaining else children[: int(remaining)]
            cancelled = children[len(to_evaluate) :]
            self._score(tree, to_evaluate, self.evaluator.evaluate_all(to_evaluate), report)
            evaluations += len(to_evaluate)
            for child in cancelled:
                failure = ExecutionFailure(FailureKind.CANCELLED, "Evaluation budget exhausted")
                self._score(tree, [child], [failure], report)
            stats.evaluated = len(to_evaluate)
            stats.cancelled = len(cancelled)
            stats.failed = sum(1 for child in to_evaluate if not child.is_viable)

            for child in children:
                if child.is_viable and child.score < result.best.score:
                    result.best = child

            frontier = self._prune(children)
            for node in frontier:
                tree.mark(node, in_beam=generation)
            stats.frontier_out = len(frontier)
            stats.best_cost = result.best.score
            stats.elapsed_s = time.perf_counter() - start
            result.generations.append(stats)
            logger.info(
                "Generation %d: %d children (%d failed, %d cancelled, %d duplicates), beam %d, best %s",
                generation,
                stats.children,
                stats.failed,
                stats.cancelled,
                stats.duplicates,
                len(frontier),
                _format_cost(result.best.score),
            )
            if report is not None:
                report.add_generation(stats.to_dict())
                best = result.best
                report.update_search(generation, evaluations, best.node_id, best.score, _records(best))
            if cfg.release_pruned:
                tree.release(frontier + [result.best])
            if cancelled:
                result.termination = Termination.BUDGET
                break
            if not frontier:
                result.termination = Termination.NO_VIABLE
                break

        result.evaluations = evaluations
        logger.info(
            "Search complete after %d generations and %d evaluations (%s): best %s via %s",
            len(result.generations),
            evaluations,
            result.termination.value,
            _format_cost(result.best.score),
            format_history(result.best.history),
        )
        if report is not None:
            report.update_search(
                len(result.generations),
                evaluations,
                result.best.node_id,
                result.best.score,
                _records(result.best),
                termination=result.termination.value,
            )
            report.sort_candidates()
            logger.info("Report: %s", report.path)
        return result

    def _legal_moves(self, node: Node) -> list[tuple[TransformOperator, Params]]:
        """Enumerate ``(operator, params)`` pairs for a node. Read-only."""
        return [(op, params) for op in self.operators for params in op.enumerate_legal(node)]

    def _expand(
        self, tree: SearchTree, frontier: list[Node], stats: GenerationStats, report: SearchReport | None
    ) -> list[Node]:
        """Materialize every legal child of the frontier in deterministic order.

        Enumeration may run on several threads; deriving and interning the
        new states is serialized through the context lock.
        """
        if self.config.expand_workers > 1 and len(frontier) > 1:
            with ThreadPoolExecutor(max_workers=self.config.expand_workers) as executor:
                moves_per_node = list(executor.map(self._legal_moves, frontier))
        else:
            moves_per_node = [self._legal_moves(node) for node in frontier]

        children: list[Node] = []
        for node, moves in zip(frontier, moves_per_node):
            for op, params in moves:
                with self.context.exclusive():
                    state = op.apply(node, params)
                    state, _ = self.context.intern(state)
                is_new = tree.admit(state)
                if self.config.deduplicate and not is_new:
                    stats.duplicates += 1
                    continue
                child = tree.add_child(node, state, op.record(params))
                children.append(child)
                if report is not None:
                    history = [record.describe() for record in child.history]
                    report.add_candidate(child.node_id, node.node_id, child.depth, history)
        stats.children = len(children)
        return children

    def _score(
        self, tree: SearchTree, nodes: Sequence[Node], evaluations: Sequence[Evaluation], report: SearchReport | None
    ) -> None:
        """Assign evaluation outcomes to nodes, mapping failures to the sentinel."""
        for node, evaluation in zip(nodes, evaluations):
            if isinstance(evaluation, ExecutionFailure):
                node.assign_score(SENTINEL_SCORE, evaluation)
                if evaluation.kind is not FailureKind.CANCELLED:
                    logger.debug(
                        "Candidate %d (%s) failed [%s]: %s",
                        node.node_id,
                        format_history(node.history),
                        evaluation.kind.value,
                        evaluation.summary,
                    )
            else:
                node.assign_score(evaluation.cost)
            tree.record_score(node)
            if report is not None:
                self._report_score(report, node)

    @staticmethod
    def _report_score(report: SearchReport, node: Node) -> None:
        if node.failure is not None:
            status = "cancelled" if node.failure.kind is FailureKind.CANCELLED else "failed"
            report.update_candidate(node.node_id, status=status, cost_ms=None, error=node.failure.message)
        else:
            report.update_candidate(node.node_id, status="measured", cost_ms=node.score)

    def _prune(self, children: list[Node]) -> list[Node]:
        """Keep the ``beam_size`` best viable children of this generation."""
        ranked = [(index, child) for index, child in enumerate(children) if child.is_viable]
        if self.config.tie_break == "shallow":
            ranked.sort(key=lambda item: (item[1].score, item[1].depth, item[0]))
        else:
            ranked.sort(key=lambda item: (item[1].score, item[0]))
        return [child for _, child in ranked[: self.beam_size]]


def _records(node: Node) -> list[dict]:
    return [record.to_dict() for record in node.history]


def _format_cost(cost: float | None) -> str:
    if cost is None:
        return "n/a"
    return f"{cost:.4f} ms" if math.isfinite(cost) else "unusable"
