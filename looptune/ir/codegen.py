"""Lower a LoopNest to executable Python/NumPy source.

Loop structure of the generated kernel:

1. Tile band: one ``{dim}_t`` loop per tiled dim, in ``order``.
2. Point band: one loop per dim, in ``order``. Tiled dims iterate inside
   their tile, the vectorized dim steps by its width.

The vectorized dim's subscripts become ``dim:dim + width`` slices. When it
is a reduction dim of a ``+=`` statement the right-hand side is wrapped in
``np.sum``. The outermost loop over a parallel dim is emitted as a nested
worker function and mapped over the ``_pool`` thread pool argument.
"""

from looptune.ir.types import Access, BinOp, Const, Expr, LoopNest

_INDENT = "    "


class _LoopSpec:
    """One emitted ``for`` loop."""

    def __init__(self, var: str, dim: str, start: str, stop: str, step: int) -> None:
        self.var = var
        self.dim = dim
        self.start = start
        self.stop = stop
        self.step = step

    def range_expr(self) -> str:
        """Render the ``range(...)`` call for this loop."""
        args = [self.start, self.stop]
        if self.step != 1:
            args.append(str(self.step))
        return f"range({', '.join(args)})"


def _loop_specs(nest: LoopNest) -> list[_LoopSpec]:
    """Compute the emitted loops from outermost to innermost."""
    vec_dim, width = nest.vector if nest.vector is not None else (None, 1)
    specs: list[_LoopSpec] = []
    for dim in nest.order:
        tile = nest.tile_of(dim)
        if tile:
            loop = nest.loop(dim)
            specs.append(_LoopSpec(f"{dim}_t", dim, str(loop.lower), str(loop.upper), tile))
    for dim in nest.order:
        loop = nest.loop(dim)
        tile = nest.tile_of(dim)
        step = width if dim == vec_dim else 1
        if tile:
            specs.append(_LoopSpec(dim, dim, f"{dim}_t", f"{dim}_t + {tile}", step))
        else:
            specs.append(_LoopSpec(dim, dim, str(loop.lower), str(loop.upper), step))
    return specs


def _render_subscript(dim: str | None, offset: int, vector: tuple[str, int] | None) -> str:
    """Render a single subscript position."""
    if dim is None:
        return str(offset)
    base = dim
    if offset > 0:
        base = f"{dim} + {offset}"
    elif offset < 0:
        base = f"{dim} - {-offset}"
    if vector is not None and vector[0] == dim:
        return f"{base}:{base} + {vector[1]}"
    return base


def render_access(access: Access, vector: tuple[str, int] | None = None) -> str:
    """Render a tensor access, slicing the vectorized dim if any.

    Args:
        access: Access to render.
        vector: ``(dim, width)`` of the vectorized dim, or None.

    Returns:
        Source text such as ``A[i, k:k + 8]``.
    """
    subscripts = ", ".join(_render_subscript(dim, offset, vector) for dim, offset in access.index)
    return f"{access.tensor}[{subscripts}]"


def render_expr(expr: Expr, vector: tuple[str, int] | None = None) -> str:
    """Render an expression tree with full parenthesization of nested ops.

    Args:
        expr: Expression tree.
        vector: ``(dim, width)`` of the vectorized dim, or None.

    Returns:
        Python source text of the expression.
    """
    if isinstance(expr, Access):
        return render_access(expr, vector)
    if isinstance(expr, Const):
        return repr(float(expr.value))
    lhs = render_expr(expr.lhs, vector)
    rhs = render_expr(expr.rhs, vector)
    if isinstance(expr.lhs, BinOp):
        lhs = f"({lhs})"
    if isinstance(expr.rhs, BinOp):
        rhs = f"({rhs})"
    return f"{lhs} {expr.op} {rhs}"


def render_statement(nest: LoopNest) -> str:
    """Render the innermost statement of a nest."""
    body = nest.body
    target = render_access(body.target, nest.vector)
    value = render_expr(body.expr, nest.vector)
    if nest.vector is not None and nest.vector[0] not in body.target.dims():
        value = f"np.sum({value})"
    return f"{target} {body.op} {value}"


def render(nest: LoopNest) -> str:
    """Render a complete kernel module for a nest.

    The kernel takes every tensor parameter followed by ``_pool``, a
    ``concurrent.futures`` executor used for parallel loops (``None`` is
    fine when nothing is parallel).

    Args:
        nest: Loop nest to lower.

    Returns:
        Python source code defining ``nest.name``.
    """
    signature = ", ".join(nest.params + ("_pool",))
    lines = ["import numpy as np", "", "", f"def {nest.name}({signature}):"]
    depth = 1
    parallel_emitted = False
    pending_map: list[tuple[int, str, str]] = []
    for spec in _loop_specs(nest):
        pad = _INDENT * depth
        if not parallel_emitted and spec.dim in nest.parallel:
            worker = f"_parallel_{spec.var}"
            lines.append(f"{pad}def {worker}({spec.var}):")
            pending_map.append((depth, worker, spec.range_expr()))
            parallel_emitted = True
        else:
            lines.append(f"{pad}for {spec.var} in {spec.range_expr()}:")
        depth += 1
    lines.append(f"{_INDENT * depth}{render_statement(nest)}")
    for map_depth, worker, range_expr in pending_map:
        lines.append(f"{_INDENT * map_depth}list(_pool.map({worker}, {range_expr}))")
    return "\n".join(lines) + "\n"
