"""
Query AST.

A query is an ordered list of steps applied to a table; steps carry
expressions built from column references, literals and operators.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union


@dataclass(frozen=True)
class Column:
    name: str


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Compare:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class BoolOp:
    op: str  # "and" | "or"
    values: Tuple["Expr", ...]


@dataclass(frozen=True)
class UnaryOp:
    op: str  # "not" | "neg"
    operand: "Expr"


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Tuple["Expr", ...]


Expr = Union[Column, Literal, BinaryOp, Compare, BoolOp, UnaryOp, FunctionCall]


@dataclass(frozen=True)
class Aggregate:
    func: str
    column: Optional[str] = None


@dataclass(frozen=True)
class Filter:
    predicate: Expr


@dataclass(frozen=True)
class GroupBy:
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class Rollup:
    aggregates: Tuple[Tuple[str, Aggregate], ...]


@dataclass(frozen=True)
class Derive:
    columns: Tuple[Tuple[str, Expr], ...]


@dataclass(frozen=True)
class Select:
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class OrderBy:
    keys: Tuple[Tuple[str, bool], ...]  # (column, descending)


@dataclass(frozen=True)
class Slice:
    start: int
    stop: Optional[int]


Step = Union[Filter, GroupBy, Rollup, Derive, Select, OrderBy, Slice]


@dataclass(frozen=True)
class Query:
    steps: Tuple[Step, ...]
