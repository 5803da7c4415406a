"""Source code helpers for looptune.

Extracts source from kernel callables, compiles generated kernel source
back into callables, and formats worker exceptions.
"""

import inspect
import textwrap
import traceback
from collections.abc import Callable

import numpy as np


def get_source(func: Callable) -> str:
    """Get source code for a function (dynamic or static).

    Args:
        func: A callable, either statically defined or generated
              (with a ``__source__`` attribute).

    Returns:
        Dedented source code string for the function.
    """
    source = getattr(func, "__source__", None)
    if source is None:
        source = textwrap.dedent(inspect.getsource(func))
    return source


def exec_source_to_func(source: str, func_name: str) -> Callable[..., None]:
    """Compile and execute kernel source and return the named function.

    Args:
        source: Python source code string containing a function definition.
        func_name: Name of the function to extract from the executed namespace.

    Returns:
        Callable from the executed source with ``__source__`` attached.

    Raises:
        SyntaxError: If the source does not compile.
        ValueError: If the named function is not found in the executed source.
    """
    code = compile(source, f"<looptune:{func_name}>", "exec")
    namespace: dict[str, object] = {"np": np}
    exec(code, namespace)
    func = namespace.get(func_name)
    if func is None:
        raise ValueError(f"Function '{func_name}' not found in executed source")
    func.__source__ = source
    return func


def capture_error(exc: BaseException) -> str:
    """Capture the full traceback from an exception as a string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
