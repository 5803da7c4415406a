"""Shared compilation context for a tuning run.

The context owns the enclosing module and the target description, and is
the single mutation-sensitive resource of a search.

Concurrency discipline:

- IR states are immutable tuples, so read-only queries (legality checks,
  enumeration, code generation) run concurrently without locking.
- Deriving a new state (an operator ``apply``) and every write into the
  context (``intern``, ``commit``) must happen inside ``exclusive()``,
  which holds a reentrant lock. There is a single writer at a time.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import NamedTuple

from looptune.ir.types import LoopNest, Module

logger = logging.getLogger(__name__)


class TargetInfo(NamedTuple):
    """Execution target description.

    Attributes:
        vector_widths: Vector widths the target supports.
        num_threads: Threads used to run parallel loops.
    """

    vector_widths: tuple[int, ...] = (4, 8, 16)
    num_threads: int = 4


class CompilationContext:
    """Process-scoped state shared by every IR-touching call of a search.

    Attributes:
        target: Execution target description.
    """

    def __init__(self, module: Module, target: TargetInfo | None = None) -> None:
        """Initialize the context.

        Args:
            module: Enclosing program holding the function to tune.
            target: Execution target; defaults to ``TargetInfo()``.
        """
        self.target = target if target is not None else TargetInfo()
        self._module = module
        self._lock = threading.RLock()
        self._interned: dict[LoopNest, LoopNest] = {}
        self._closed = False

    @property
    def module(self) -> Module:
        return self._module

    @property
    def closed(self) -> bool:
        return self._closed

    def function(self, name: str) -> LoopNest:
        """Look up a function of the enclosing module.

        Raises:
            KeyError: If the module has no function called ``name``.
        """
        return self._module.get(name)

    @contextmanager
    def exclusive(self) -> Iterator["CompilationContext"]:
        """Hold the single-writer lock for the duration of the block.

        Raises:
            RuntimeError: If the context has been closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("CompilationContext is closed")
            yield self

    def intern(self, state: LoopNest) -> tuple[LoopNest, bool]:
        """Register a derived state, deduplicating structurally equal ones.

        Args:
            state: Newly derived IR state.

        Returns:
            Tuple of (canonical state, whether it was seen for the first time).
        """
        with self.exclusive():
            canonical = self._interned.get(state)
            if canonical is not None:
                return canonical, False
            self._interned[state] = state
            return state, True

    @property
    def num_interned(self) -> int:
        return len(self._interned)

    def commit(self, state: LoopNest) -> Module:
        """Replace the same-named function of the module with ``state``.

        Args:
            state: Tuned function to hand back to the enclosing program.

        Returns:
            The updated module.
        """
        with self.exclusive():
            self._module = self._module.replace(state)
            logger.debug("Committed tuned schedule for %s", state.name)
            return self._module

    def close(self) -> None:
        """Release interned states; further derivations raise."""
        with self._lock:
            self._interned.clear()
            self._closed = True

    def __enter__(self) -> "CompilationContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
