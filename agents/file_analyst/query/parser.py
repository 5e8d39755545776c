"""
Parser for the table query language.

Queries are chained verb calls on ``table``:

    table.filter(d.Position == 'Developer').groupby('Position').rollup(avg=op.mean('Salary'))

The text is normalised (so common JavaScript/Arquero spellings still
work), parsed with Python's ``ast`` module in expression mode, and then
translated node by node into the query AST. Anything outside the
grammar is rejected; nothing is ever evaluated.
"""

from __future__ import annotations

import ast
import re
from typing import Callable, Dict, List, Optional, Set, Tuple

from . import nodes
from .errors import MathNotAllowedError, QuerySyntaxError

AGGREGATES = {
    "count", "sum", "mean", "average", "median", "min", "max",
    "stdev", "stdevp", "variance", "variancep", "distinct",
}
FUNCTIONS = {"lower", "upper", "abs", "round", "length", "includes", "startswith", "endswith"}

_BINARY = {
    ast.Add: "+", ast.Sub: "-", ast.Mult: "*", ast.Div: "/",
    ast.Mod: "%", ast.Pow: "**", ast.FloorDiv: "//",
}
_BITWISE = {ast.BitAnd: "and", ast.BitOr: "or"}
_COMPARE = {
    ast.Eq: "==", ast.NotEq: "!=", ast.Lt: "<", ast.LtE: "<=",
    ast.Gt: ">", ast.GtE: ">=", ast.In: "in", ast.NotIn: "not in",
}

# (pattern, replacement) pairs applied in order
_NORMALISATIONS: List[Tuple[str, str]] = [
    (r"\baq\.op\.", "op."),
    (r"\baq\.", ""),
    (r"\bop\.(?:std|stddev)\(", "op.stdev("),
    (r"\bop\.(?:var)\(", "op.variance("),
    (r"\.group_by\(", ".groupby("),
    (r"\.order_by\(", ".orderby("),
    (r"===", "=="),
    (r"!==", "!="),
    (r"!(?!=)", " not "),
    (r"&&", " and "),
    (r"\|\|", " or "),
    (r"\btrue\b", "True"),
    (r"\bfalse\b", "False"),
    (r"\bnull\b", "None"),
]
_LEADING_ARROW = re.compile(r"^\s*(?:\(\s*(\w*)\s*\)|(\w+))\s*=>\s*")
_INLINE_ARROW = re.compile(r"\(\s*(\w+)\s*\)\s*=>\s*|\b(\w+)\s*=>\s*")
_MATH = re.compile(r"\bMath\.\w+")
_STRING_LITERAL = re.compile(r"""('(?:[^'\\\n]|\\.)*'|"(?:[^"\\\n]|\\.)*")""")


def _code_parts(text: str) -> List[str]:
    """The parts of `text` outside quoted string literals."""
    return _STRING_LITERAL.split(text)[::2]


def _rewrite_code(text: str, rewrite: Callable[[str], str]) -> str:
    """Apply `rewrite` between string literals; the literals stay as written."""
    parts = _STRING_LITERAL.split(text)
    parts[::2] = [rewrite(part) for part in parts[::2]]
    return "".join(parts)


def _apply_normalisations(code: str) -> str:
    code = _INLINE_ARROW.sub("", code)
    for pattern, replacement in _NORMALISATIONS:
        code = re.sub(pattern, replacement, code)
    return code


def normalise(code: str) -> Tuple[str, Set[str]]:
    """
    Rewrite common JavaScript/Arquero spellings into the query grammar.

    Returns:
        The rewritten text and the names that refer to the current row
    """
    text = code.strip().rstrip(";").strip()
    row_names = {"d", "row"}

    leading = _LEADING_ARROW.match(text)
    if leading:
        text = text[leading.end():]
        table_name = leading.group(1) or leading.group(2)
        if table_name and table_name != "table":
            text = re.sub(rf"^{table_name}\b", "table", text)

    for part in _code_parts(text):
        for match in _INLINE_ARROW.finditer(part):
            row_names.add(match.group(1) or match.group(2))
    text = _rewrite_code(text, _apply_normalisations)
    return text.strip(), row_names


class _Translator:
    """Walks a Python expression tree and builds the query AST."""

    def __init__(self, source: str, row_names: Set[str]):
        self.source = source
        self.row_names = row_names
        self.verbs: Dict[str, Callable[[ast.Call], List[nodes.Step]]] = {
            "filter": self._filter,
            "groupby": self._groupby,
            "rollup": self._rollup,
            "count": self._count,
            "derive": self._derive,
            "select": self._select,
            "orderby": self._orderby,
            "limit": self._limit,
            "slice": self._slice,
        }

    def fail(self, node: ast.AST, message: str, hint: Optional[str] = None) -> QuerySyntaxError:
        fragment = ast.get_source_segment(self.source, node)
        if fragment:
            message = f"{message} (at: {fragment})"
        return QuerySyntaxError(message, hint=hint)

    # -- pipeline ---------------------------------------------------------

    def pipeline(self, node: ast.AST) -> List[nodes.Step]:
        if isinstance(node, ast.Name):
            if node.id == "table":
                return []
            raise self.fail(node, f"Query must start from 'table', not '{node.id}'")
        if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Attribute)):
            raise self.fail(
                node,
                "Expected a chain of table methods",
                hint="Write the query like: table.groupby('A').rollup(total=op.sum('B'))",
            )

        verb = node.func.attr
        if verb not in self.verbs:
            raise self.fail(
                node.func,
                f"Unsupported table method '{verb}'",
                hint=f"Available methods: {', '.join(sorted(self.verbs))}",
            )
        return self.pipeline(node.func.value) + self.verbs[verb](node)

    # -- verbs ------------------------------------------------------------

    def _filter(self, call: ast.Call) -> List[nodes.Step]:
        if len(call.args) != 1 or call.keywords:
            raise self.fail(call, "filter() takes exactly one predicate")
        return [nodes.Filter(self.expr(call.args[0]))]

    def _groupby(self, call: ast.Call) -> List[nodes.Step]:
        columns = self.column_names(call)
        if not columns:
            raise self.fail(call, "groupby() needs at least one column")
        return [nodes.GroupBy(columns)]

    def _rollup(self, call: ast.Call) -> List[nodes.Step]:
        pairs = self.named_arguments(call, "rollup")
        if not pairs:
            raise self.fail(call, "rollup() needs at least one aggregate", hint="rollup(total=op.sum('Amount'))")
        return [nodes.Rollup(tuple((name, self.aggregate(value)) for name, value in pairs))]

    def _count(self, call: ast.Call) -> List[nodes.Step]:
        if call.args or call.keywords:
            raise self.fail(call, "count() takes no arguments")
        return [nodes.Rollup((("count", nodes.Aggregate("count")),))]

    def _derive(self, call: ast.Call) -> List[nodes.Step]:
        pairs = self.named_arguments(call, "derive")
        if not pairs:
            raise self.fail(call, "derive() needs at least one new column")
        return [nodes.Derive(tuple((name, self.expr(value)) for name, value in pairs))]

    def _select(self, call: ast.Call) -> List[nodes.Step]:
        columns = self.column_names(call)
        if not columns:
            raise self.fail(call, "select() needs at least one column")
        return [nodes.Select(columns)]

    def _orderby(self, call: ast.Call) -> List[nodes.Step]:
        keys = []
        for arg in self.flatten(call.args):
            if (
                isinstance(arg, ast.Call)
                and isinstance(arg.func, ast.Name)
                and arg.func.id == "desc"
                and len(arg.args) == 1
            ):
                keys.append((self.column_name(arg.args[0]), True))
            else:
                keys.append((self.column_name(arg), False))
        if not keys or call.keywords:
            raise self.fail(call, "orderby() takes column names or desc('Column')")
        return [nodes.OrderBy(tuple(keys))]

    def _limit(self, call: ast.Call) -> List[nodes.Step]:
        if len(call.args) != 1 or call.keywords:
            raise self.fail(call, "limit() takes exactly one row count")
        return [nodes.Slice(0, self.integer(call.args[0]))]

    def _slice(self, call: ast.Call) -> List[nodes.Step]:
        if not 1 <= len(call.args) <= 2 or call.keywords:
            raise self.fail(call, "slice() takes a start and an optional end")
        stop = self.integer(call.args[1]) if len(call.args) == 2 else None
        return [nodes.Slice(self.integer(call.args[0]), stop)]

    # -- argument helpers -------------------------------------------------

    @staticmethod
    def flatten(args: List[ast.expr]) -> List[ast.expr]:
        flat: List[ast.expr] = []
        for arg in args:
            if isinstance(arg, (ast.List, ast.Tuple)):
                flat.extend(arg.elts)
            else:
                flat.append(arg)
        return flat

    def column_names(self, call: ast.Call) -> Tuple[str, ...]:
        if call.keywords:
            raise self.fail(call, "Column lists take positional names only")
        return tuple(self.column_name(arg) for arg in self.flatten(call.args))

    def column_name(self, node: ast.AST) -> str:
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            return node.value
        expr = self.expr(node)
        if isinstance(expr, nodes.Column):
            return expr.name
        raise self.fail(node, "Expected a column name in quotes", hint="groupby('Position')")

    def integer(self, node: ast.AST) -> int:
        if isinstance(node, ast.Constant) and isinstance(node.value, int) and not isinstance(node.value, bool):
            return node.value
        raise self.fail(node, "Expected an integer")

    def named_arguments(self, call: ast.Call, verb: str) -> List[Tuple[str, ast.expr]]:
        pairs: List[Tuple[str, ast.expr]] = []
        for keyword in call.keywords:
            if keyword.arg is None:
                raise self.fail(call, f"{verb}() does not accept **kwargs")
            pairs.append((keyword.arg, keyword.value))
        for arg in call.args:
            if not isinstance(arg, ast.Dict):
                raise self.fail(arg, f"{verb}() takes name=value pairs or a {{name: value}} object")
            for key, value in zip(arg.keys, arg.values):
                if isinstance(key, ast.Constant) and isinstance(key.value, str):
                    pairs.append((key.value, value))
                elif isinstance(key, ast.Name):
                    pairs.append((key.id, value))
                else:
                    raise self.fail(arg, f"{verb}() keys must be plain names")
        return pairs

    def aggregate(self, node: ast.AST) -> nodes.Aggregate:
        if not (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Attribute)
            and isinstance(node.func.value, ast.Name)
            and node.func.value.id == "op"
        ):
            raise self.fail(
                node,
                "Aggregates must be op.<function>('Column')",
                hint="Do NOT use arrow functions inside rollup(); use op.mean('Column')",
            )
        func = node.func.attr
        if func not in AGGREGATES:
            raise self.fail(
                node.func,
                f"Unknown aggregate 'op.{func}'",
                hint=f"Available aggregates: {', '.join(sorted(AGGREGATES))}",
            )
        if len(node.args) > 1 or node.keywords:
            raise self.fail(node, f"op.{func}() takes a single column")
        if not node.args:
            if func != "count":
                raise self.fail(node, f"op.{func}() needs a column")
            return nodes.Aggregate(func)
        return nodes.Aggregate(func, self.column_name(node.args[0]))

    # -- expressions ------------------------------------------------------

    def expr(self, node: ast.AST) -> nodes.Expr:
        if isinstance(node, ast.Constant):
            return nodes.Literal(node.value)
        if isinstance(node, (ast.List, ast.Tuple)):
            values = []
            for elt in node.elts:
                if not isinstance(elt, ast.Constant):
                    raise self.fail(elt, "Lists may only contain literal values")
                values.append(elt.value)
            return nodes.Literal(tuple(values))
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            if node.value.id in self.row_names:
                return nodes.Column(node.attr)
        if isinstance(node, ast.Subscript) and isinstance(node.value, ast.Name):
            key = node.slice
            if node.value.id in self.row_names and isinstance(key, ast.Constant) and isinstance(key.value, str):
                return nodes.Column(key.value)
        if isinstance(node, ast.BinOp):
            if type(node.op) in _BITWISE:
                return nodes.BoolOp(_BITWISE[type(node.op)], (self.expr(node.left), self.expr(node.right)))
            if type(node.op) in _BINARY:
                return nodes.BinaryOp(_BINARY[type(node.op)], self.expr(node.left), self.expr(node.right))
        if isinstance(node, ast.BoolOp):
            op = "and" if isinstance(node.op, ast.And) else "or"
            return nodes.BoolOp(op, tuple(self.expr(v) for v in node.values))
        if isinstance(node, ast.UnaryOp):
            if isinstance(node.op, (ast.Not, ast.Invert)):
                return nodes.UnaryOp("not", self.expr(node.operand))
            if isinstance(node.op, ast.USub):
                return nodes.UnaryOp("neg", self.expr(node.operand))
            if isinstance(node.op, ast.UAdd):
                return self.expr(node.operand)
        if isinstance(node, ast.Compare):
            return self.compare(node)
        if isinstance(node, ast.Call):
            return self.function(node)
        if isinstance(node, ast.Name):
            raise self.fail(
                node,
                f"Unknown name '{node.id}'",
                hint="Refer to columns as d.Column or d['Column name']",
            )
        raise self.fail(node, f"Unsupported expression ({type(node).__name__})")

    def compare(self, node: ast.Compare) -> nodes.Expr:
        parts = []
        left = node.left
        for op, right in zip(node.ops, node.comparators):
            if type(op) not in _COMPARE:
                raise self.fail(node, "Unsupported comparison")
            parts.append(nodes.Compare(_COMPARE[type(op)], self.expr(left), self.expr(right)))
            left = right
        return parts[0] if len(parts) == 1 else nodes.BoolOp("and", tuple(parts))

    def function(self, node: ast.Call) -> nodes.Expr:
        func = node.func
        name = None
        if isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name) and func.value.id == "op":
            name = func.attr
        if name in AGGREGATES:
            raise self.fail(
                node,
                f"op.{name}() is an aggregate and only works inside rollup()",
                hint=f"Use table.rollup(x=op.{name}('Column'))",
            )
        if name not in FUNCTIONS:
            raise self.fail(
                node,
                "Unsupported function call",
                hint=f"Row functions available as op.<name>: {', '.join(sorted(FUNCTIONS))}",
            )
        if node.keywords:
            raise self.fail(node, f"op.{name}() takes positional arguments only")
        return nodes.FunctionCall(name, tuple(self.expr(a) for a in node.args))


def parse_query(code: str) -> nodes.Query:
    """
    Parse query text into the query AST.

    Raises:
        MathNotAllowedError: If the query uses JavaScript Math functions
        QuerySyntaxError: If the query falls outside the grammar
    """
    if not code or not code.strip():
        raise QuerySyntaxError("The query is empty", hint="table.rollup(total=op.sum('Amount'))")

    math = next(filter(None, map(_MATH.search, _code_parts(code))), None)
    if math:
        raise MathNotAllowedError(
            f"Your query contains '{math.group(0)}()' which is not allowed in table queries",
            hint="Use the built-in aggregates instead, e.g. table.rollup(std_dev=op.stdev('Amount'))",
        )

    text, row_names = normalise(code)
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        raise QuerySyntaxError(f"Invalid syntax: {e.msg} (line {e.lineno}, column {e.offset})") from e

    steps = _Translator(text, row_names).pipeline(tree.body)
    return nodes.Query(tuple(steps))
