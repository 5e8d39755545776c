"""
Tabular query tool.

Runs a query-language pipeline over a CSV or JSON file. Query mistakes
come back as correction messages so the backend can retry.
"""
from __future__ import annotations

from pathlib import Path

from loguru import logger

from ..core.tools import Tool, ToolFailure
from ..query import MathNotAllowedError, QueryError, execute, parse_query, render
from .readers import TABLE_EXTENSIONS, extension_of, read_table

COMMON_FIXES = """COMMON FIXES:
1. For standard deviation use ONLY: op.stdev('ColumnName')
2. Do NOT use arrow functions () => ... inside rollup
3. Do NOT use Math.sqrt or other Math functions
4. Use .groupby() not .group_by(), and follow it with .rollup() or .count()
5. Check column names match exactly (case-sensitive)"""


def _math_message(query_code: str, error: MathNotAllowedError) -> ToolFailure:
    return ToolFailure(f"""ERROR: {error.message}.

YOUR CODE:
{query_code}

CORRECTION NEEDED:
- Do NOT use Math.sqrt() or other JavaScript Math functions
- Do NOT use arrow functions inside rollup()

Example correct code:
table.rollup(std_dev=op.stdev('Amount'))

Please rewrite your query using only table operations.""")


def _error_message(query_code: str, error: Exception) -> ToolFailure:
    message = error.message if isinstance(error, QueryError) else str(error)
    hint = getattr(error, "hint", None)
    if hint:
        message = f"{message}\nHINT: {hint}"
    return ToolFailure(f"""ERROR IN QUERY:

YOUR CODE:
{query_code}

ERROR MESSAGE:
{message}

{COMMON_FIXES}

Please try again with corrected syntax.""")


class DataQueryTool(Tool):
    """
    Statistical analysis and filtering over CSV/JSON files.

    Example:
        tool = DataQueryTool()
        tool(filePath="sales.csv", queryCode="table.groupby('Region').rollup(total=op.sum('Amount'))")
    """

    name = "data_query_engine"
    description = (
        "Make statistical analysis and complex filters in CSV / JSON files. "
        "Receives a 'queryCode' chaining table operations. "
        "Example: table.filter(d => d.salary > 1000).rollup({ total: op.sum('salary') })"
    )
    inputs = {
        "queryCode": {
            "type": "string",
            "description": "The table query to execute",
        },
        "filePath": {
            "type": "string",
            "description": "Path of the CSV or JSON file",
        },
    }
    output_type = "string"

    def __init__(self, max_rows: int = 100):
        self.max_rows = max_rows

    def forward(self, queryCode: str, filePath: str) -> str:
        ext = extension_of(filePath)
        if ext not in TABLE_EXTENSIONS:
            return ToolFailure(
                "ERROR: DataQueryEngine only supports structured files (CSV or JSON). "
                f"File \"{Path(filePath).name}\" is {ext or 'without extension'}. "
                "For PDFs, read the text with file_inspector and use your logic directly."
            )

        try:
            query = parse_query(queryCode)
        except MathNotAllowedError as e:
            return _math_message(queryCode, e)
        except QueryError as e:
            return _error_message(queryCode, e)

        try:
            table = read_table(filePath)
        except FileNotFoundError:
            return ToolFailure(f"ERROR: File not found: {filePath}. Use one of the paths listed in FILES.")
        except Exception as e:
            logger.opt(exception=e).warning(f"data_query_engine could not load {filePath}")
            return ToolFailure(f"ERROR: Could not load \"{filePath}\" as a table: {e}")

        try:
            result = execute(query, table)
        except QueryError as e:
            return _error_message(queryCode, e)
        except Exception as e:
            logger.opt(exception=e).warning("data_query_engine query failed")
            return _error_message(queryCode, e)

        logger.debug(f"Query returned {len(result)} rows")
        return f"QUERY SUCCESSFUL: \n{render(result, max_rows=self.max_rows)}"
