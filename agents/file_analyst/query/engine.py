"""
Interpreter for the query AST over a pandas DataFrame.
"""

from __future__ import annotations

import operator
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from . import nodes
from .errors import QueryExecutionError, UnknownColumnError

_ARITHMETIC: Dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "%": operator.mod,
    "**": operator.pow,
    "//": operator.floordiv,
}
_COMPARISON: Dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}
_NUMERIC_AGGREGATES = {"sum", "mean", "average", "median", "stdev", "stdevp", "variance", "variancep"}


def _require_columns(frame: pd.DataFrame, columns) -> None:
    for column in columns:
        if column not in frame.columns:
            raise UnknownColumnError(column, [str(c) for c in frame.columns])


def _numeric(series: pd.Series, column: str, func: str) -> pd.Series:
    if pd.api.types.is_numeric_dtype(series):
        return series
    converted = pd.to_numeric(series, errors="coerce")
    if converted.isna().all() and series.notna().any():
        raise QueryExecutionError(
            f"op.{func}('{column}') needs numbers but column '{column}' holds text",
            hint="Filter or pick a numeric column; inspect the file to check its values",
        )
    return converted


def _reduce(frame: pd.DataFrame, aggregate: nodes.Aggregate) -> Any:
    func = aggregate.func
    if aggregate.column is None:
        return int(len(frame))

    series = frame[aggregate.column]
    if func in _NUMERIC_AGGREGATES:
        series = _numeric(series, aggregate.column, func)

    if func == "count":
        return int(series.notna().sum())
    if func == "distinct":
        return int(series.nunique(dropna=True))
    if func == "sum":
        return series.sum()
    if func in ("mean", "average"):
        return series.mean()
    if func == "median":
        return series.median()
    if func == "min":
        return series.min()
    if func == "max":
        return series.max()
    if func == "stdev":
        return series.std(ddof=1)
    if func == "stdevp":
        return series.std(ddof=0)
    if func == "variance":
        return series.var(ddof=1)
    if func == "variancep":
        return series.var(ddof=0)
    raise QueryExecutionError(f"Unknown aggregate 'op.{func}'")


def _string_function(name: str, value: Any, method: Callable[[pd.Series], Any]) -> Any:
    if isinstance(value, pd.Series):
        return method(value.astype(str).str)
    return method(pd.Series([str(value)]).str).iloc[0]


class _Evaluator:
    """Evaluates row expressions column-wise against one frame."""

    def __init__(self, frame: pd.DataFrame):
        self.frame = frame

    def __call__(self, expr: nodes.Expr) -> Any:
        if isinstance(expr, nodes.Column):
            _require_columns(self.frame, [expr.name])
            return self.frame[expr.name]
        if isinstance(expr, nodes.Literal):
            return expr.value
        if isinstance(expr, nodes.BinaryOp):
            return self._apply(_ARITHMETIC[expr.op], expr.op, self(expr.left), self(expr.right))
        if isinstance(expr, nodes.Compare):
            return self._compare(expr)
        if isinstance(expr, nodes.BoolOp):
            values = [self._as_bool(self(v)) for v in expr.values]
            combine = operator.and_ if expr.op == "and" else operator.or_
            result = values[0]
            for value in values[1:]:
                result = combine(result, value)
            return result
        if isinstance(expr, nodes.UnaryOp):
            value = self(expr.operand)
            if expr.op == "not":
                value = self._as_bool(value)
                return ~value if isinstance(value, pd.Series) else not value
            return self._apply(operator.neg, "-", value)
        if isinstance(expr, nodes.FunctionCall):
            return self._function(expr)
        raise QueryExecutionError(f"Unsupported expression {type(expr).__name__}")

    @staticmethod
    def _apply(func: Callable, symbol: str, *operands: Any) -> Any:
        try:
            return func(*operands)
        except (TypeError, ValueError) as e:
            raise QueryExecutionError(
                f"Cannot apply '{symbol}' to these values: {e}",
                hint="Arithmetic needs numeric columns; compare text with == or op.includes()",
            ) from e

    @staticmethod
    def _as_bool(value: Any) -> Any:
        if isinstance(value, pd.Series):
            return value.fillna(False).astype(bool)
        return bool(value)

    def _compare(self, expr: nodes.Compare) -> Any:
        left, right = self(expr.left), self(expr.right)
        if expr.op in ("in", "not in"):
            if not isinstance(right, tuple):
                raise QueryExecutionError("'in' needs a list of values, e.g. d.City in ['Lima', 'Quito']")
            result = left.isin(right) if isinstance(left, pd.Series) else left in right
            if expr.op == "not in":
                return ~result if isinstance(result, pd.Series) else not result
            return result
        return self._apply(_COMPARISON[expr.op], expr.op, left, right)

    def _function(self, expr: nodes.FunctionCall) -> Any:
        args = [self(a) for a in expr.args]
        name = expr.name
        arity = {"lower": 1, "upper": 1, "abs": 1, "length": 1, "round": (1, 2),
                 "includes": 2, "startswith": 2, "endswith": 2}[name]
        allowed = arity if isinstance(arity, tuple) else (arity,)
        if len(args) not in allowed:
            raise QueryExecutionError(f"op.{name}() takes {' or '.join(map(str, allowed))} argument(s)")

        if name == "lower":
            return _string_function(name, args[0], lambda s: s.lower())
        if name == "upper":
            return _string_function(name, args[0], lambda s: s.upper())
        if name == "length":
            return _string_function(name, args[0], lambda s: s.len())
        if name == "includes":
            return _string_function(name, args[0], lambda s: s.contains(str(args[1]), regex=False))
        if name == "startswith":
            return _string_function(name, args[0], lambda s: s.startswith(str(args[1])))
        if name == "endswith":
            return _string_function(name, args[0], lambda s: s.endswith(str(args[1])))
        if name == "abs":
            return self._apply(abs, "abs", args[0])
        digits = int(args[1]) if len(args) == 2 else 0
        return self._apply(lambda v: np.round(v, digits), "round", args[0])


def _rollup(frame: pd.DataFrame, groups: Optional[Tuple[str, ...]], step: nodes.Rollup) -> pd.DataFrame:
    _require_columns(frame, [agg.column for _, agg in step.aggregates if agg.column])
    if not groups:
        return pd.DataFrame([{name: _reduce(frame, agg) for name, agg in step.aggregates}])

    rows: List[Dict[str, Any]] = []
    for keys, group in frame.groupby(list(groups), sort=True, dropna=False):
        if not isinstance(keys, tuple):
            keys = (keys,)
        row = dict(zip(groups, keys))
        row.update({name: _reduce(group, agg) for name, agg in step.aggregates})
        rows.append(row)
    return pd.DataFrame(rows, columns=[*groups, *(name for name, _ in step.aggregates)])


def execute(query: nodes.Query, table: pd.DataFrame) -> pd.DataFrame:
    """
    Apply every step of the query to the table, in order.

    Raises:
        UnknownColumnError: If a step names a column the table lacks
        QueryExecutionError: If a step cannot be applied
    """
    frame = table.reset_index(drop=True)
    groups: Optional[Tuple[str, ...]] = None

    for step in query.steps:
        if isinstance(step, nodes.Filter):
            mask = _Evaluator(frame)(step.predicate)
            if isinstance(mask, pd.Series):
                frame = frame[_Evaluator._as_bool(mask)].reset_index(drop=True)
            elif not mask:
                frame = frame.iloc[0:0]
        elif isinstance(step, nodes.GroupBy):
            _require_columns(frame, step.columns)
            groups = step.columns
        elif isinstance(step, nodes.Rollup):
            frame = _rollup(frame, groups, step)
            groups = None
        elif isinstance(step, nodes.Derive):
            for name, expr in step.columns:
                frame = frame.assign(**{name: _Evaluator(frame)(expr)})
        elif isinstance(step, nodes.Select):
            _require_columns(frame, step.columns)
            frame = frame[list(step.columns)]
        elif isinstance(step, nodes.OrderBy):
            columns = [column for column, _ in step.keys]
            _require_columns(frame, columns)
            frame = frame.sort_values(
                by=columns,
                ascending=[not descending for _, descending in step.keys],
                kind="stable",
            ).reset_index(drop=True)
        elif isinstance(step, nodes.Slice):
            frame = frame.iloc[step.start:step.stop].reset_index(drop=True)

    if groups:
        raise QueryExecutionError(
            f"groupby({', '.join(repr(g) for g in groups)}) must be followed by rollup() or count()",
            hint="CORRECT order: table.groupby('Column').rollup(metric=op.mean('Value'))",
        )
    return frame


def render(frame: pd.DataFrame, max_rows: int = 100) -> str:
    """Render a result table as aligned plain text."""
    if frame.empty:
        return f"(no rows) columns: {', '.join(str(c) for c in frame.columns)}"
    text = frame.head(max_rows).to_string(index=False)
    if len(frame) > max_rows:
        text += f"\n... {len(frame) - max_rows} more rows"
    return text
