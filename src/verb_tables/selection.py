"""Resolve select/rename specs against a table's column names.

Specs are deferred expressions interpreted symbolically: names, positions,
``a:b`` ranges, ``-x`` exclusion and the helpers ``starts_with``,
``ends_with``, ``contains``, ``matches``, ``num_range``, ``one_of``,
``last_col``, ``everything`` and ``c``. The result maps each output name to
the input column it comes from, in output order.
"""

from __future__ import annotations

import numbers
import re
from typing import Any, Callable, Iterable, Mapping, Sequence

from verb_tables.bridge import evaluate
from verb_tables.dots import Dots
from verb_tables.errors import ColumnNotFoundError
from verb_tables.expr import BinaryOp, Call, EnvRef, Expr, Literal, Name, UnaryOp, deparse
from verb_tables.functions import as_series, is_vector


def _is_exclusion(expr: Expr) -> bool:
    return isinstance(expr, UnaryOp) and expr.op in ("-", "!")


def _position(vars: Sequence[str], value: Any) -> int:
    if isinstance(value, str):
        if value not in vars:
            raise ColumnNotFoundError(value, vars)
        return vars.index(value)
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise TypeError(f"Cannot select a column with {value!r}")
    index = int(value)
    if index < 0:
        index += len(vars)
    if not 0 <= index < len(vars):
        raise ColumnNotFoundError(str(value), vars)
    return index


def _bound(vars: Sequence[str], expr: Expr, env: Mapping[str, Any]) -> int:
    if isinstance(expr, Name):
        return _position(vars, expr.name)
    if isinstance(expr, UnaryOp) and expr.op == "-" and isinstance(expr.operand, Literal):
        return _position(vars, -expr.operand.value)
    return _position(vars, evaluate(expr, env=env))


def _names_from_value(vars: Sequence[str], value: Any) -> list[str]:
    values = list(as_series(value)) if is_vector(value) else [value]
    return [vars[_position(vars, v)] for v in values]


def _matching(vars: Sequence[str], test: Callable[[str], bool]) -> list[str]:
    return [v for v in vars if test(v)]


_HELPERS = frozenset(
    {"starts_with", "ends_with", "contains", "matches", "num_range", "one_of", "last_col", "everything"}
)


def _helper(vars: Sequence[str], call: Call, env: Mapping[str, Any]) -> list[str]:
    if call.func not in _HELPERS:
        raise ValueError(f"Unsupported selection helper '{call.func}()'")
    args = [evaluate(arg, env=env) for arg in call.args]
    kwargs = {key: evaluate(value, env=env) for key, value in call.kwargs}
    name = call.func
    ignore_case = bool(kwargs.pop("ignore_case", True))

    def fold(text: str) -> str:
        return text.lower() if ignore_case else text

    if name == "starts_with":
        return _matching(vars, lambda v: any(fold(v).startswith(fold(p)) for p in args))
    if name == "ends_with":
        return _matching(vars, lambda v: any(fold(v).endswith(fold(s)) for s in args))
    if name == "contains":
        return _matching(vars, lambda v: any(fold(s) in fold(v) for s in args))
    if name == "matches":
        flags = re.IGNORECASE if ignore_case else 0
        patterns = [re.compile(p, flags) for p in args]
        return _matching(vars, lambda v: any(p.search(v) for p in patterns))
    if name == "num_range":
        prefix, nums = args[0], args[1]
        width = kwargs.get("width")
        wanted = [f"{prefix}{int(k):0{int(width)}d}" if width else f"{prefix}{int(k)}" for k in as_series(nums)]
        return [v for v in wanted if v in vars]
    if name == "one_of":
        names: list[str] = []
        for arg in args:
            names.extend(_names_from_value(vars, arg))
        return names
    if name == "last_col":
        offset = int(args[0]) if args else int(kwargs.get("offset", 0))
        return [vars[_position(vars, -1 - offset)]]
    return list(vars)


def resolve(vars: Sequence[str], expr: Expr, env: Mapping[str, Any]) -> list[str]:
    """Input column names selected by one (non-excluding) spec entry."""
    if isinstance(expr, Name):
        if expr.name not in vars:
            raise ColumnNotFoundError(expr.name, vars)
        return [expr.name]
    if isinstance(expr, Literal):
        return _names_from_value(vars, expr.value)
    if isinstance(expr, EnvRef):
        return _names_from_value(vars, evaluate(expr, env=env))
    if isinstance(expr, UnaryOp) and expr.op == "+":
        return resolve(vars, expr.operand, env)
    if isinstance(expr, BinaryOp) and expr.op == ":":
        start = _bound(vars, expr.left, env)
        stop = _bound(vars, expr.right, env)
        step = 1 if stop >= start else -1
        return [vars[k] for k in range(start, stop + step, step)]
    if isinstance(expr, Call):
        if expr.func == "c":
            names: list[str] = []
            for arg in expr.args:
                names.extend(n for n in resolve(vars, arg, env) if n not in names)
            return names
        return _helper(vars, expr, env)
    raise ValueError(f"Unsupported selection '{deparse(expr)}'")


def select_vars(
    vars: Iterable[str],
    dots: Dots,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> dict[str, str]:
    """Map output names to input columns for a select spec.

    A spec starting with an exclusion starts from every column. Columns in
    ``include`` are always kept (prepended when not otherwise selected), and
    those in ``exclude`` always dropped.
    """
    vars = list(vars)
    entries = list(dots)
    selected: dict[str, str] = {}
    if entries and _is_exclusion(entries[0][1].expr):
        selected = {v: v for v in vars}

    for name, lazy in entries:
        expr = lazy.expr
        if _is_exclusion(expr):
            dropped = set(resolve(vars, expr.operand, lazy.env))  # type: ignore[union-attr]
            selected = {new: old for new, old in selected.items() if old not in dropped}
            continue
        olds = resolve(vars, expr, lazy.env)
        if name is None:
            chosen = set(selected.values())
            for old in olds:
                if old not in chosen:
                    selected[old] = old
                    chosen.add(old)
            continue
        new_names = [name] if len(olds) == 1 else [f"{name}{k + 1}" for k in range(len(olds))]
        for new, old in zip(new_names, olds):
            selected = {n: o for n, o in selected.items() if o != old}
            if new in selected:
                raise ValueError(f"Names must be unique; '{new}' is selected twice")
            selected[new] = old

    chosen = set(selected.values())
    missing = [g for g in include if g not in chosen]
    for g in missing:
        if g in selected:
            raise ValueError(f"Names must be unique; '{g}' is a kept column and cannot name '{selected[g]}'")
    if missing:
        selected = {**{g: g for g in missing}, **selected}
    excluded = set(exclude)
    return {new: old for new, old in selected.items() if old not in excluded}


def rename_vars(vars: Iterable[str], dots: Dots) -> dict[str, str]:
    """Map output names to input columns, keeping every column in place."""
    vars = list(vars)
    renames: dict[str, str] = {}
    for name, lazy in dots:
        if name is None:
            raise ValueError(f"All arguments to rename() must be named; got '{deparse(lazy.expr)}'")
        olds = resolve(vars, lazy.expr, lazy.env)
        if len(olds) != 1:
            raise ValueError(f"rename() of '{name}' must select exactly one column, got {len(olds)}")
        renames[olds[0]] = name
    result: dict[str, str] = {}
    for old in vars:
        new = renames.get(old, old)
        if new in result:
            raise ValueError(f"Names must be unique; '{new}' appears more than once")
        result[new] = old
    return result
