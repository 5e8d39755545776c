"""
System directive for the file analyst.

The directive is rendered from an explicit, ordered list of rules so the
protocol the backend is held to can be inspected and tested as data.
Two of the rules are also enforced in code: repeated identical failures
are short-circuited by the dispatcher, and the query engine rejects
column names that do not match the file verbatim.
"""

from __future__ import annotations

from typing import Iterable, NamedTuple, Sequence


class DirectiveRule(NamedTuple):
    key: str
    text: str


DIRECTIVE_RULES: Sequence[DirectiveRule] = (
    DirectiveRule(
        "inspect_first",
        "When the answer depends on a file, ALWAYS call 'file_inspector' first to see its "
        "contents and exact column names. Never answer about a file you have not inspected.",
    ),
    DirectiveRule(
        "verbatim_columns",
        "COPY column names exactly as the inspector shows them (case-sensitive): if it says "
        "'Salary', do not write 'salary'.",
    ),
    DirectiveRule(
        "query_for_calculations",
        "For calculations on CSV/JSON files use 'data_query_engine' with the exact column names.",
    ),
    DirectiveRule(
        "deep_search_documents",
        "To search inside long PDF/TXT files use 'document_deep_analyst'.",
    ),
    DirectiveRule(
        "read_errors",
        "Read tool error messages CAREFULLY and fix the exact issue mentioned. If a tool returns "
        "an ERROR, change your approach: do NOT repeat the same call.",
    ),
    DirectiveRule(
        "stop_after_failures",
        "After 2 failed attempts with a tool, stop retrying and explain the problem to the user.",
    ),
    DirectiveRule(
        "use_known_results",
        "If a previous tool result already contains the data you need, answer directly. Never "
        "use placeholders: always give the actual values.",
    ),
    DirectiveRule(
        "final_value_only",
        "Your final answer must be ONLY the requested value (number, code or name): no "
        "explanations, no units, no phrases like 'The answer is'.",
    ),
)

QUERY_SYNTAX_HELP = """QUERY SYNTAX (data_query_engine):
CORRECT order: table.groupby('Column').rollup(metric=op.mean('Value'))
WRONG order:   table.rollup(metric=op.mean('Value')).groupby('Column')

Standard deviation: op.stdev('Column')   (never Math.sqrt, op.std or op.stddev)

VALID EXAMPLES:
- Average:     table.rollup(avg=op.mean('Salary'))
- Group stats: table.groupby('Position').rollup(avg=op.mean('Salary'), std=op.stdev('Salary'))
- Filter:      table.filter(d.Position == 'Developer').rollup(total=op.sum('Salary'))
- Count:       table.groupby('Position').count()
- Top rows:    table.orderby(desc('Salary')).select('Name', 'Salary').limit(3)"""


def build_system_prompt(
    known_files: Iterable[str],
    rules: Sequence[DirectiveRule] = DIRECTIVE_RULES,
) -> str:
    """Render the directive for the current set of known files."""
    files = ", ".join(sorted(known_files))
    numbered = "\n".join(f"{i}. {rule.text}" for i, rule in enumerate(rules, 1))
    return (
        "You are a Data Analyst.\n\n"
        f"FILES: [{files}]\n\n"
        "MANDATORY RULES:\n"
        f"{numbered}\n\n"
        f"{QUERY_SYNTAX_HELP}"
    )
