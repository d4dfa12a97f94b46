"""Expression IR for deferred column expressions.

Nodes are produced by the expression parser (or built directly), combined by
the verb layer, and compiled against a table by :mod:`verb_tables.bridge`.
"""

from __future__ import annotations

import json
import keyword
import re
from dataclasses import dataclass
from typing import Any, Iterable, Union

import pandas as pd


@dataclass(frozen=True)
class Name:
    """A free variable: a column if the table has one, else an environment binding."""

    name: str


@dataclass(frozen=True)
class EnvRef:
    """``@name``: resolved in the environment only, never against columns."""

    name: str


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class UnaryOp:
    op: str  # "-", "+", "!"
    operand: "Expr"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Call:
    func: str
    args: tuple["Expr", ...] = ()
    kwargs: tuple[tuple[str, "Expr"], ...] = ()


@dataclass(frozen=True)
class Assign:
    """``name := value``; only meaningful in the column slot of an engine call."""

    name: str
    value: "Expr"


@dataclass(frozen=True)
class Index:
    target: "Expr"
    index: "Expr"


@dataclass(frozen=True)
class RowIndex:
    """``.I``: table positions of the rows currently in scope."""


@dataclass(frozen=True)
class GroupSize:
    """``.N``: number of rows currently in scope."""


@dataclass(frozen=True)
class SubData:
    """``.SD``: rows in scope, without the grouping columns."""


Expr = Union[Name, EnvRef, Literal, UnaryOp, BinaryOp, Call, Assign, Index, RowIndex, GroupSize, SubData]

EXPR_TYPES = (Name, EnvRef, Literal, UnaryOp, BinaryOp, Call, Assign, Index, RowIndex, GroupSize, SubData)

TRUE = Literal(True)


def is_expr(value: object) -> bool:
    return isinstance(value, EXPR_TYPES)


def and_expr(exprs: Iterable[Expr]) -> Expr:
    """Fold predicates into one left-associative conjunction.

    No predicates gives a literal ``True``; a single predicate is returned
    unchanged.
    """
    exprs = list(exprs)
    if not exprs:
        return TRUE
    left = exprs[0]
    for right in exprs[1:]:
        left = BinaryOp("&", left, right)
    return left


def as_expr(value: object) -> Expr:
    """Coerce a Python value to an expression node, leaving nodes untouched."""
    if is_expr(value):
        return value  # type: ignore[return-value]
    return Literal(value)


# --- Rendering ----------------------------------------------------------------

# Binding strength, loosest first; mirrors the parser's precedence table.
_BINARY_PRECEDENCE = {
    "|": 1,
    "&": 2,
    "==": 4, "!=": 4, "<": 4, "<=": 4, ">": 4, ">=": 4, "in": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "//": 6, "%": 6,
    ":": 7,
    "**": 9,
}
_UNARY_PRECEDENCE = {"!": 3, "-": 8, "+": 8}
_RIGHT_ASSOC = frozenset({"**"})
_NON_ASSOC = frozenset({"==", "!=", "<", "<=", ">", ">=", "in"})
_POSTFIX = 10
_ATOM = 11

_RESERVED_WORDS = frozenset({"and", "or", "not", "in", "true", "false", "na", "none", "null"})
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


def _precedence(node: Expr) -> int:
    if isinstance(node, BinaryOp):
        return _BINARY_PRECEDENCE[node.op]
    if isinstance(node, UnaryOp):
        return _UNARY_PRECEDENCE[node.op]
    if isinstance(node, Assign):
        return 0
    if isinstance(node, (Call, Index)):
        return _POSTFIX
    if isinstance(node, Literal) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        if node.value < 0:
            return _UNARY_PRECEDENCE["-"]
    return _ATOM


def format_name(name: str) -> str:
    """Render a name, quoting it with backticks when it is not a plain identifier."""
    if _IDENTIFIER_RE.match(name) and name.lower() not in _RESERVED_WORDS and not keyword.iskeyword(name):
        return name
    return f"`{name}`"


def _format_literal(value: Any) -> str:
    if value is None:
        return "None"
    if value is pd.NA:
        return "NA"
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return "c(" + ", ".join(_format_literal(v) for v in value) + ")"
    return repr(value)


def _wrap(node: Expr, parens: bool) -> str:
    text = deparse(node)
    return f"({text})" if parens else text


def deparse(node: Expr) -> str:
    """Render an expression back to parseable text.

    Used to give unnamed mutate/summarise results deterministic names, so the
    output is stable: single spaces around binary operators, none inside calls.
    """
    if isinstance(node, Name):
        return format_name(node.name)
    if isinstance(node, EnvRef):
        return "@" + format_name(node.name)
    if isinstance(node, Literal):
        return _format_literal(node.value)
    if isinstance(node, RowIndex):
        return ".I"
    if isinstance(node, GroupSize):
        return ".N"
    if isinstance(node, SubData):
        return ".SD"
    if isinstance(node, UnaryOp):
        prec = _UNARY_PRECEDENCE[node.op]
        operand = _wrap(node.operand, _precedence(node.operand) < prec)
        return f"{node.op}{operand}"
    if isinstance(node, BinaryOp):
        prec = _BINARY_PRECEDENCE[node.op]
        left_prec = _precedence(node.left)
        right_prec = _precedence(node.right)
        if node.op in _RIGHT_ASSOC:
            left_parens, right_parens = left_prec <= prec, right_prec < prec
        elif node.op in _NON_ASSOC:
            left_parens, right_parens = left_prec <= prec, right_prec <= prec
        else:
            left_parens, right_parens = left_prec < prec, right_prec <= prec
        left = _wrap(node.left, left_parens)
        right = _wrap(node.right, right_parens)
        if node.op == ":":
            return f"{left}:{right}"
        return f"{left} {node.op} {right}"
    if isinstance(node, Call):
        parts = [deparse(arg) for arg in node.args]
        parts.extend(f"{format_name(key)} = {deparse(value)}" for key, value in node.kwargs)
        return f"{format_name(node.func)}({', '.join(parts)})"
    if isinstance(node, Index):
        target = _wrap(node.target, _precedence(node.target) < _POSTFIX)
        return f"{target}[{deparse(node.index)}]"
    if isinstance(node, Assign):
        return f"{format_name(node.name)} := {deparse(node.value)}"
    raise TypeError(f"Cannot render {type(node).__name__} as an expression")

