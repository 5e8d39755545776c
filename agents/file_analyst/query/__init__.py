"""
Table query language.

A narrow interpreter for filter/group/aggregate pipelines written as
chained calls on ``table``. Parsing never evaluates code; execution
runs over a pandas DataFrame.
"""

from .engine import execute, render
from .errors import (
    MathNotAllowedError,
    QueryError,
    QueryExecutionError,
    QuerySyntaxError,
    UnknownColumnError,
)
from .parser import parse_query

__all__ = [
    "parse_query",
    "execute",
    "render",
    "QueryError",
    "QuerySyntaxError",
    "MathNotAllowedError",
    "QueryExecutionError",
    "UnknownColumnError",
]
