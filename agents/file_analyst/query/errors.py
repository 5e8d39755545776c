"""
Query language exceptions.

Raised by the parser and the engine; the data_query_engine tool turns
them into correction messages for the reasoning backend.
"""

from __future__ import annotations

import difflib
from typing import Iterable, Optional


class QueryError(Exception):
    """Base exception for query failures."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class QuerySyntaxError(QueryError):
    """The query text is not a valid chain of table verbs."""
    pass


class MathNotAllowedError(QuerySyntaxError):
    """The query reaches for JavaScript Math functions."""
    pass


class UnknownColumnError(QueryError):
    """A referenced column does not exist in the table."""

    def __init__(self, column: str, available: Iterable[str]):
        self.column = column
        self.available = list(available)
        suggestions = difflib.get_close_matches(column, self.available, n=3, cutoff=0.5)
        suggestions += [
            c for c in self.available if c.lower() == column.lower() and c not in suggestions
        ]
        hint = f"Did you mean: {', '.join(repr(s) for s in suggestions)}?" if suggestions else None
        super().__init__(
            f"Column '{column}' does not exist. Available columns (copy exactly): "
            f"{', '.join(repr(c) for c in self.available)}",
            hint=hint,
        )


class QueryExecutionError(QueryError):
    """The query is well formed but cannot be applied to this table."""
    pass
