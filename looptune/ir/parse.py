"""Parse Python kernel functions into LoopNest IR.

Accepted kernels are plain Python functions whose body is a perfect
``for dim in range(...)`` nest around one subscript statement::

    def matmul(A, B, C):
        for i in range(64):
            for j in range(64):
                for k in range(64):
                    C[i, j] += A[i, k] * B[k, j]

Subscripts are a loop dim, a loop dim plus or minus an integer constant,
or an integer constant. The right-hand side may combine subscripts and
numeric literals with ``+ - * /`` and unary minus.
"""

import ast
from collections.abc import Callable

from looptune.ir.analysis import validate
from looptune.ir.types import Access, BinOp, Const, Expr, Loop, LoopNest, Module, Statement
from looptune.utils.source import get_source

_BINOPS: dict[type, str] = {ast.Add: "+", ast.Sub: "-", ast.Mult: "*", ast.Div: "/"}


def _int_constant(node: ast.expr) -> int:
    """Extract an integer literal, allowing a leading minus sign.

    Raises:
        ValueError: If the node is not an integer literal.
    """
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        return -_int_constant(node.operand)
    if isinstance(node, ast.Constant) and isinstance(node.value, int) and not isinstance(node.value, bool):
        return node.value
    raise ValueError(f"Expected an integer constant, got {ast.unparse(node)!r}")


def _parse_range(node: ast.expr) -> tuple[int, int]:
    """Parse ``range(stop)`` or ``range(start, stop)`` with constant bounds."""
    if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id == "range"):
        raise ValueError(f"Loop iterator must be range(...), got {ast.unparse(node)!r}")
    if node.keywords or not 1 <= len(node.args) <= 2:
        raise ValueError(f"Only range(stop) and range(start, stop) are supported, got {ast.unparse(node)!r}")
    bounds = [_int_constant(arg) for arg in node.args]
    return (0, bounds[0]) if len(bounds) == 1 else (bounds[0], bounds[1])


def _parse_subscript_entry(node: ast.expr, dims: set[str]) -> tuple[str | None, int]:
    """Parse one subscript position into ``(dim, offset)``."""
    if isinstance(node, ast.Name):
        if node.id not in dims:
            raise ValueError(f"Subscript {node.id!r} is not a loop variable")
        return (node.id, 0)
    if isinstance(node, ast.BinOp) and isinstance(node.op, (ast.Add, ast.Sub)) and isinstance(node.left, ast.Name):
        dim, _ = _parse_subscript_entry(node.left, dims)
        offset = _int_constant(node.right)
        return (dim, offset if isinstance(node.op, ast.Add) else -offset)
    return (None, _int_constant(node))


def _parse_access(node: ast.expr, dims: set[str]) -> Access:
    """Parse ``name[...]`` into an Access."""
    if not (isinstance(node, ast.Subscript) and isinstance(node.value, ast.Name)):
        raise ValueError(f"Expected a subscripted tensor, got {ast.unparse(node)!r}")
    elts = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]
    index = tuple(_parse_subscript_entry(elt, dims) for elt in elts)
    return Access(node.value.id, index)


def _parse_expr(node: ast.expr, dims: set[str]) -> Expr:
    """Parse a right-hand-side expression tree."""
    if isinstance(node, ast.Subscript):
        return _parse_access(node, dims)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return Const(float(node.value))
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        operand = _parse_expr(node.operand, dims)
        if isinstance(operand, Const):
            return Const(-operand.value)
        return BinOp("*", Const(-1.0), operand)
    if isinstance(node, ast.BinOp) and type(node.op) in _BINOPS:
        return BinOp(_BINOPS[type(node.op)], _parse_expr(node.left, dims), _parse_expr(node.right, dims))
    raise ValueError(f"Unsupported expression {ast.unparse(node)!r}")


def _parse_statement(node: ast.stmt, dims: set[str]) -> Statement:
    """Parse the innermost ``=`` or ``+=`` statement."""
    if isinstance(node, ast.AugAssign) and isinstance(node.op, ast.Add):
        return Statement(_parse_access(node.target, dims), "+=", _parse_expr(node.value, dims))
    if isinstance(node, ast.Assign) and len(node.targets) == 1:
        return Statement(_parse_access(node.targets[0], dims), "=", _parse_expr(node.value, dims))
    raise ValueError(f"Innermost statement must be '=' or '+=', got {ast.unparse(node)!r}")


def _strip_docstring(body: list[ast.stmt]) -> list[ast.stmt]:
    if body and isinstance(body[0], ast.Expr) and isinstance(body[0].value, ast.Constant):
        return body[1:]
    return body


def _function_to_nest(func_def: ast.FunctionDef) -> LoopNest:
    """Convert a parsed function definition to a LoopNest.

    Raises:
        ValueError: If the function is not a perfect loop nest.
    """
    args = func_def.args
    if args.vararg or args.kwarg or args.kwonlyargs or args.defaults:
        raise ValueError(f"Kernel {func_def.name!r} must take plain positional tensor parameters")
    params = tuple(arg.arg for arg in args.posonlyargs + args.args)
    loops: list[Loop] = []
    body = _strip_docstring(func_def.body)
    while True:
        if len(body) != 1:
            raise ValueError(f"Kernel {func_def.name!r} is not a perfect loop nest")
        node = body[0]
        if not isinstance(node, ast.For):
            break
        if not isinstance(node.target, ast.Name) or node.orelse:
            raise ValueError(f"Unsupported loop header in {func_def.name!r}: {ast.unparse(node.target)!r}")
        lower, upper = _parse_range(node.iter)
        loops.append(Loop(node.target.id, lower, upper))
        body = node.body
    statement = _parse_statement(body[0], {loop.dim for loop in loops})
    nest = LoopNest.create(func_def.name, params, tuple(loops), statement)
    validate(nest)
    return nest


def parse_module(source: str) -> Module:
    """Parse every top-level function of ``source`` into a Module.

    Args:
        source: Python source code.

    Returns:
        Module with one LoopNest per function, in definition order.

    Raises:
        ValueError: If any function is not a supported kernel.
    """
    tree = ast.parse(source)
    functions = tuple(_function_to_nest(node) for node in tree.body if isinstance(node, ast.FunctionDef))
    if not functions:
        raise ValueError("Source defines no kernel functions")
    return Module(functions)


def parse_function(source: str, name: str | None = None) -> LoopNest:
    """Parse a single kernel function from source.

    Args:
        source: Python source code.
        name: Function to parse; defaults to the first function.

    Returns:
        The parsed LoopNest.
    """
    module = parse_module(source)
    return module.functions[0] if name is None else module.get(name)


def callable_to_nest(func: Callable) -> LoopNest:
    """Parse a Python kernel function object into a LoopNest."""
    return parse_function(get_source(func), func.__name__)
