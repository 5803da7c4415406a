"""Loop-nest IR for looptune.

Subpackages:
    types: Immutable IR tuples (LoopNest, Loop, Access, Statement, Module)
    parse: Python kernel source -> LoopNest
    analysis: Validation, dependences and legality queries
    codegen: LoopNest -> executable Python/NumPy source
"""

from looptune.ir.analysis import Dependence, dependences, tensor_shapes, validate
from looptune.ir.codegen import render
from looptune.ir.parse import callable_to_nest, parse_function, parse_module
from looptune.ir.types import Access, BinOp, Const, Loop, LoopNest, Module, Statement

__all__ = [
    "Access",
    "BinOp",
    "Const",
    "Dependence",
    "Loop",
    "LoopNest",
    "Module",
    "Statement",
    "callable_to_nest",
    "dependences",
    "parse_function",
    "parse_module",
    "render",
    "tensor_shapes",
    "validate",
]
