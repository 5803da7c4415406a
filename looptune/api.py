"""One-call tuning entry point."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from looptune.context import CompilationContext, TargetInfo
from looptune.ir.codegen import render
from looptune.ir.parse import callable_to_nest, parse_module
from looptune.ir.types import LoopNest, Module
from looptune.node import Node
from looptune.search.base import SearchConfig
from looptune.search.beam import BeamSearch
from looptune.search.evaluator import Evaluator
from looptune.search.results import SearchResult
from looptune.transforms import TransformOperator

logger = logging.getLogger(__name__)


@dataclass
class TuningResult:
    """Outcome of ``tune``.

    Attributes:
        search: Full search result.
        module: Module with the tuned function committed.
        function: The tuned function's IR state.
    """

    search: SearchResult
    module: Module
    function: LoopNest

    @property
    def source(self) -> str:
        """Executable source of the tuned function."""
        return render(self.function)


def _as_module(program: Module | LoopNest | str | Callable) -> Module:
    if isinstance(program, Module):
        return program
    if isinstance(program, LoopNest):
        return Module((program,))
    if isinstance(program, str):
        return parse_module(program)
    return Module((callable_to_nest(program),))


def tune(
    program: Module | LoopNest | str | Callable,
    function_name: str | None = None,
    config: SearchConfig | None = None,
    operators: Sequence[TransformOperator] | None = None,
    evaluator: Evaluator | None = None,
    target: TargetInfo | None = None,
) -> TuningResult:
    """Tune one function of a program with beam search.

    Args:
        program: Module, single LoopNest, kernel source, or kernel function.
        function_name: Function to tune; the first function when None.
        config: Search settings; defaults to ``SearchConfig()``.
        operators: Transformation operators; the defaults when None.
        evaluator: Evaluator; an ``ExecutionEvaluator`` when None.
        target: Execution target; defaults to ``TargetInfo()``.

    Returns:
        TuningResult with the committed module.

    Raises:
        RootConstructionError: If the function is unknown or malformed.
        ValueError: If the program cannot be parsed.
    """
    config = config if config is not None else SearchConfig()
    module = _as_module(program)
    name = function_name if function_name is not None else module.functions[0].name
    with CompilationContext(module, target) as context:
        root = Node.root(context, name)
        searcher = BeamSearch(config.beam_size, context, name, operators, evaluator, config)
        result = searcher.run(root)
        committed = context.commit(result.best.state)
    return TuningResult(search=result, module=committed, function=result.best.state)
