"""Structural validation and legality queries for loop nests.

Dependences are derived from uniform subscripts only: two accesses of the
same tensor whose subscripts use the same dim in every position have a
constant distance; anything else is treated conservatively as a
dependence of unknown distance in every dim. A ``None`` component in a
distance vector means "any distance".

All queries are pure functions of the (immutable) nest, so they are safe
to call concurrently from several threads.
"""

import functools
import keyword
from typing import NamedTuple

from looptune.ir.types import BINARY_OPS, STATEMENT_OPS, Access, BinOp, Const, Expr, LoopNest

_RESERVED_NAMES = frozenset({"np", "_pool", "range", "list"})


class Dependence(NamedTuple):
    """A loop-carried dependence between two accesses of one tensor.

    Attributes:
        tensor: Tensor carrying the dependence.
        distance: Per canonical dim distance, ``None`` for unknown.
        reduction: True for the accumulation dependence of a ``+=``
            statement, which reassociation makes reorderable.
    """

    tensor: str
    distance: tuple[int | None, ...]
    reduction: bool

    @property
    def self_ordering(self) -> bool:
        """True when every known component is zero and at most one is unknown.

        Such a dependence only relates iterations that differ in a single
        dim, and every loop order and tiling keeps those in sequence.
        """
        unknown = sum(1 for c in self.distance if c is None)
        return unknown <= 1 and all(c is None or c == 0 for c in self.distance)


def _is_identifier(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


def tensor_shapes(nest: LoopNest) -> dict[str, tuple[int, ...]]:
    """Infer the minimal shape of every tensor from the iteration space.

    Args:
        nest: Loop nest to analyze.

    Returns:
        Map from tensor name to shape, in parameter order.

    Raises:
        ValueError: If a subscript can go negative or ranks disagree.
    """
    bounds = {loop.dim: loop for loop in nest.loops}
    shapes: dict[str, list[int]] = {}
    for access in nest.accesses:
        sizes = shapes.setdefault(access.tensor, [0] * len(access.index))
        if len(sizes) != len(access.index):
            raise ValueError(f"Tensor {access.tensor!r} is accessed with inconsistent ranks")
        for pos, (dim, offset) in enumerate(access.index):
            if dim is None:
                low, high = offset, offset + 1
            else:
                if dim not in bounds:
                    raise ValueError(f"Subscript uses unknown loop dim {dim!r}")
                low, high = bounds[dim].lower + offset, bounds[dim].upper + offset
            if low < 0:
                raise ValueError(f"Subscript {pos} of {access.tensor!r} reaches negative index {low}")
            sizes[pos] = max(sizes[pos], high)
    return {name: tuple(shapes[name]) for name in nest.params if name in shapes}


def _validate_expr(expr: Expr) -> None:
    """Check operators and leaf types of an expression tree."""
    if isinstance(expr, BinOp):
        if expr.op not in BINARY_OPS:
            raise ValueError(f"Unsupported binary operator {expr.op!r}")
        _validate_expr(expr.lhs)
        _validate_expr(expr.rhs)
    elif not isinstance(expr, (Access, Const)):
        raise ValueError(f"Unsupported expression node {type(expr).__name__}")


def _validate_schedule(nest: LoopNest) -> None:
    """Check the schedule fields against the loop bounds."""
    if sorted(nest.order) != sorted(nest.dims):
        raise ValueError(f"Loop order {nest.order} is not a permutation of {nest.dims}")
    if len(nest.tiles) != len(nest.loops):
        raise ValueError(f"Expected {len(nest.loops)} tile sizes, got {len(nest.tiles)}")
    for loop, tile in zip(nest.loops, nest.tiles):
        if tile < 0 or (tile and loop.extent % tile):
            raise ValueError(f"Tile size {tile} does not divide extent {loop.extent} of {loop.dim!r}")
    if len(set(nest.parallel)) != len(nest.parallel) or not set(nest.parallel) <= set(nest.dims):
        raise ValueError(f"Parallel dims {nest.parallel} are not distinct loop dims")
    if nest.vector is not None:
        dim, width = nest.vector
        if dim not in nest.dims:
            raise ValueError(f"Vectorized dim {dim!r} is not a loop dim")
        if width <= 0 or nest.inner_extent(dim) % width:
            raise ValueError(f"Vector width {width} does not divide inner extent of {dim!r}")


def validate(nest: LoopNest) -> None:
    """Check that a nest is structurally valid.

    Args:
        nest: Loop nest to check.

    Raises:
        ValueError: Describing the first violated constraint.
    """
    if not _is_identifier(nest.name):
        raise ValueError(f"Invalid function name {nest.name!r}")
    if not nest.loops:
        raise ValueError(f"Function {nest.name!r} has no loops")
    names = list(nest.params) + list(nest.dims) + [f"{dim}_t" for dim in nest.dims]
    for name in names:
        if not _is_identifier(name) or name in _RESERVED_NAMES:
            raise ValueError(f"Invalid or reserved name {name!r}")
    if len(set(names)) != len(names):
        raise ValueError(f"Parameter and loop names collide in {nest.name!r}: {names}")
    for loop in nest.loops:
        if loop.upper <= loop.lower:
            raise ValueError(f"Loop {loop.dim!r} has empty range [{loop.lower}, {loop.upper})")
    if nest.body.op not in STATEMENT_OPS:
        raise ValueError(f"Unsupported statement operator {nest.body.op!r}")
    _validate_expr(nest.body.expr)
    for access in nest.accesses:
        if access.tensor not in nest.params:
            raise ValueError(f"Tensor {access.tensor!r} is not a parameter of {nest.name!r}")
    shapes = tensor_shapes(nest)
    unused = [p for p in nest.params if p not in shapes]
    if unused:
        raise ValueError(f"Parameters {unused} are never accessed")
    _validate_schedule(nest)


def _pair_distance(dims: tuple[str, ...], write: Access, other: Access) -> tuple[int | None, ...] | None:
    """Distance between a write and another access of the same tensor.

    Returns:
        Oriented distance vector, or ``None`` when the accesses never
        touch the same element in two different iterations.
    """
    unknown = (None,) * len(dims)
    if len(write.index) != len(other.index):
        return unknown
    deltas: dict[str, int] = {}
    for (wdim, woff), (odim, ooff) in zip(write.index, other.index):
        if wdim is None and odim is None:
            if woff != ooff:
                return None
            continue
        if wdim != odim:
            return unknown
        delta = woff - ooff
        if deltas.setdefault(wdim, delta) != delta:
            return None
    vector = tuple(deltas.get(dim) for dim in dims)
    known = [c for c in vector if c is not None]
    if len(known) == len(vector) and not any(known):
        return None
    first = next((c for c in known if c != 0), 0)
    if first < 0:
        vector = tuple(None if c is None else -c for c in vector)
    return vector


@functools.lru_cache(maxsize=4096)
def dependences(nest: LoopNest) -> tuple[Dependence, ...]:
    """Derive the loop-carried dependences of a nest.

    The target is paired with itself (output/accumulation dependence over
    the dims it does not use) and with every read of the same tensor.

    Args:
        nest: Loop nest to analyze.

    Returns:
        Tuple of dependences; empty for fully parallel nests.
    """
    target = nest.body.target
    result: list[Dependence] = []
    target_dims = set(target.dims())
    if any(dim not in target_dims for dim in nest.dims):
        distance = tuple(0 if dim in target_dims else None for dim in nest.dims)
        result.append(Dependence(target.tensor, distance, reduction=nest.body.op == "+="))
    for read in nest.accesses[1:]:
        if read.tensor != target.tensor:
            continue
        distance = _pair_distance(nest.dims, target, read)
        if distance is not None:
            result.append(Dependence(target.tensor, distance, reduction=False))
    return tuple(result)


def _ordering_dependences(nest: LoopNest) -> list[Dependence]:
    """Dependences that constrain loop order and tiling."""
    return [d for d in dependences(nest) if not d.reduction and not d.self_ordering]


def _lex_positive(components: list[int | None]) -> bool:
    for c in components:
        if c is None or c < 0:
            return False
        if c > 0:
            return True
    return True


def order_violation(nest: LoopNest, order: tuple[str, ...]) -> str | None:
    """Check whether executing the nest in ``order`` preserves dependences.

    Returns:
        A reason string if illegal, ``None`` if legal.
    """
    if sorted(order) != sorted(nest.dims):
        return f"{order} is not a permutation of {nest.dims}"
    positions = [nest.dims.index(dim) for dim in order]
    for dep in _ordering_dependences(nest):
        if not _lex_positive([dep.distance[p] for p in positions]):
            return f"order {order} reverses dependence {dep.distance} on {dep.tensor!r}"
    return None


def tiling_violation(nest: LoopNest, tiles: tuple[int, ...]) -> str | None:
    """Check a tile-size vector (one entry per canonical dim, 0 = untiled).

    Returns:
        A reason string if illegal, ``None`` if legal.
    """
    if nest.is_tiled:
        return "nest is already tiled"
    if len(tiles) != len(nest.loops):
        return f"expected {len(nest.loops)} tile sizes, got {len(tiles)}"
    if not any(tiles):
        return "no dim is tiled"
    for loop, tile in zip(nest.loops, tiles):
        if not tile:
            continue
        if tile < 0 or tile >= loop.extent or loop.extent % tile:
            return f"tile {tile} does not evenly split extent {loop.extent} of {loop.dim!r}"
        if nest.vector is not None and nest.vector[0] == loop.dim and tile % nest.vector[1]:
            return f"tile {tile} is not a multiple of vector width {nest.vector[1]}"
    for dep in _ordering_dependences(nest):
        for pos, tile in enumerate(tiles):
            component = dep.distance[pos]
            if tile and (component is None or component < 0):
                return f"dependence {dep.distance} on {dep.tensor!r} is not tileable along {nest.dims[pos]!r}"
    return None


def parallel_violation(nest: LoopNest, dim: str) -> str | None:
    """Check whether iterations of ``dim`` are independent.

    Returns:
        A reason string if illegal, ``None`` if legal.
    """
    if dim not in nest.dims:
        return f"{dim!r} is not a loop dim"
    pos = nest.dims.index(dim)
    for dep in dependences(nest):
        if dep.distance[pos] != 0:
            kind = "reduction" if dep.reduction else "dependence"
            return f"{kind} on {dep.tensor!r} is carried by {dim!r}"
    return None


def unit_stride_dims(nest: LoopNest) -> tuple[str, ...]:
    """Dims that only ever index the last (contiguous) subscript position."""
    result = []
    for dim in nest.dims:
        used = [a for a in nest.accesses if dim in a.dims()]
        if used and all(a.index[-1][0] == dim and dim not in a.dims()[:-1] for a in used):
            result.append(dim)
    return tuple(result)


def vector_violation(nest: LoopNest, dim: str, width: int, supported: tuple[int, ...]) -> str | None:
    """Check a ``(dim, width)`` vectorization against the nest and target.

    Args:
        nest: Loop nest to check.
        dim: Candidate dim.
        width: Candidate vector width.
        supported: Vector widths the target supports.

    Returns:
        A reason string if illegal, ``None`` if legal.
    """
    if nest.vector is not None:
        return "nest is already vectorized"
    if dim not in nest.dims:
        return f"{dim!r} is not a loop dim"
    if width not in supported:
        return f"width {width} not supported by target {supported}"
    if width > nest.inner_extent(dim) or nest.inner_extent(dim) % width:
        return f"width {width} does not divide inner extent {nest.inner_extent(dim)} of {dim!r}"
    if dim not in unit_stride_dims(nest):
        return f"{dim!r} has non-unit-stride accesses"
    pos = nest.dims.index(dim)
    for dep in dependences(nest):
        if not dep.reduction and dep.distance[pos] != 0:
            return f"dependence {dep.distance} on {dep.tensor!r} is carried by {dim!r}"
    return None
