"""Immutable loop-nest IR types.

A kernel is a perfect loop nest around a single subscript statement.
Every type here is a ``NamedTuple`` so states are hashable (used as
dedup keys during search) and can only be rewritten through ``_replace``,
which always produces a new object.

Schedule state lives directly on the nest:

- ``order``: current loop order, a permutation of the canonical dims.
- ``tiles``: one tile size per canonical dim, ``0`` meaning untiled.
- ``parallel``: dims marked for parallel execution (canonical order).
- ``vector``: ``(dim, width)`` of the vectorized dim, or ``None``.
"""

from typing import NamedTuple, Union

Index = tuple[tuple[str | None, int], ...]


class Loop(NamedTuple):
    """A counted loop ``for dim in range(lower, upper)``."""

    dim: str
    lower: int
    upper: int

    @property
    def extent(self) -> int:
        """Number of iterations of the loop."""
        return self.upper - self.lower


class Access(NamedTuple):
    """A subscripted tensor reference such as ``A[i, k - 1]``.

    Attributes:
        tensor: Tensor (parameter) name.
        index: One ``(dim, offset)`` pair per subscript position. A ``None``
            dim denotes a constant subscript equal to ``offset``.
    """

    tensor: str
    index: Index

    def dims(self) -> tuple[str, ...]:
        """Return the loop dims used by this access, in subscript order."""
        return tuple(dim for dim, _ in self.index if dim is not None)


class Const(NamedTuple):
    """A numeric literal in a statement expression."""

    value: float


class BinOp(NamedTuple):
    """A binary arithmetic expression node."""

    op: str
    lhs: "Expr"
    rhs: "Expr"


Expr = Union[Access, Const, BinOp]

BINARY_OPS = ("+", "-", "*", "/")
STATEMENT_OPS = ("=", "+=")


class Statement(NamedTuple):
    """The innermost statement ``target op expr``."""

    target: Access
    op: str
    expr: Expr


def expr_accesses(expr: Expr) -> tuple[Access, ...]:
    """Collect all tensor reads of an expression in left-to-right order.

    Args:
        expr: Expression tree.

    Returns:
        Tuple of accesses.
    """
    if isinstance(expr, Access):
        return (expr,)
    if isinstance(expr, BinOp):
        return expr_accesses(expr.lhs) + expr_accesses(expr.rhs)
    return ()


class LoopNest(NamedTuple):
    """Immutable IR state of one kernel function.

    Attributes:
        name: Function name.
        params: Tensor parameter names in signature order.
        loops: Loops in canonical (as-written) order.
        body: The innermost statement.
        order: Current loop order, a permutation of the canonical dims.
        tiles: Tile size per canonical dim, ``0`` for untiled dims.
        parallel: Dims marked parallel, in canonical order.
        vector: ``(dim, width)`` of the vectorized dim, or ``None``.
    """

    name: str
    params: tuple[str, ...]
    loops: tuple[Loop, ...]
    body: Statement
    order: tuple[str, ...]
    tiles: tuple[int, ...]
    parallel: tuple[str, ...]
    vector: tuple[str, int] | None

    @classmethod
    def create(cls, name: str, params: tuple[str, ...], loops: tuple[Loop, ...], body: Statement) -> "LoopNest":
        """Build an untransformed nest with the canonical loop order."""
        return cls(
            name=name,
            params=params,
            loops=loops,
            body=body,
            order=tuple(loop.dim for loop in loops),
            tiles=(0,) * len(loops),
            parallel=(),
            vector=None,
        )

    @property
    def dims(self) -> tuple[str, ...]:
        """Canonical dim names."""
        return tuple(loop.dim for loop in self.loops)

    def loop(self, dim: str) -> Loop:
        """Return the loop for ``dim``.

        Raises:
            KeyError: If ``dim`` is not a loop of this nest.
        """
        for loop in self.loops:
            if loop.dim == dim:
                return loop
        raise KeyError(f"Unknown loop dim {dim!r} in {self.name!r}")

    def tile_of(self, dim: str) -> int:
        """Tile size of ``dim`` (``0`` if untiled)."""
        return self.tiles[self.dims.index(dim)]

    def inner_extent(self, dim: str) -> int:
        """Iteration count of the innermost loop over ``dim`` (tile size if tiled)."""
        tile = self.tile_of(dim)
        return tile if tile else self.loop(dim).extent

    @property
    def is_tiled(self) -> bool:
        return any(self.tiles)

    @property
    def is_interchanged(self) -> bool:
        return self.order != self.dims

    @property
    def accesses(self) -> tuple[Access, ...]:
        """Target access followed by every read."""
        return (self.body.target,) + expr_accesses(self.body.expr)

    def untransformed(self) -> "LoopNest":
        """Return the same kernel with an empty schedule."""
        return LoopNest.create(self.name, self.params, self.loops, self.body)


class Module(NamedTuple):
    """The enclosing program: an ordered collection of kernel functions."""

    functions: tuple[LoopNest, ...]

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.functions)

    def get(self, name: str) -> LoopNest:
        """Look up a function by name.

        Raises:
            KeyError: If no function has that name.
        """
        for function in self.functions:
            if function.name == name:
                return function
        raise KeyError(f"Function {name!r} not found; available: {list(self.names)}")

    def replace(self, function: LoopNest) -> "Module":
        """Return a new module with the same-named function replaced."""
        self.get(function.name)
        return Module(tuple(function if f.name == function.name else f for f in self.functions))
