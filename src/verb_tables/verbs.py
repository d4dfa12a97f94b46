"""Table verbs.

Every verb accepts a grouped table, a wrapped table or a plain
``pandas.DataFrame`` and answers with the same kind of value. Expressions are
strings in the column expression language, expression nodes, or
``DeferredExpression`` objects; their free variables resolve against the
table's columns first and then against the calling scope (or ``_env``).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

import pandas as pd

from verb_tables.bridge import dt_subset
from verb_tables.dots import DeferredExpression, Dots, as_dots, caller_env, common_env, lazy_dots, make_call
from verb_tables.expr import Assign, Call, Index, Name, RowIndex, SubData, and_expr, deparse
from verb_tables.selection import rename_vars, select_vars
from verb_tables.tables import GroupedDt, GroupSpec, TblDt, grouped_dt, groups, native_frame, tbl_dt, ungroup

logger = logging.getLogger(__name__)

Handler = Callable[[pd.DataFrame, GroupSpec], "tuple[pd.DataFrame, GroupSpec]"]

__all__ = [
    "arrange",
    "filter",
    "group_by",
    "mutate",
    "rename",
    "select",
    "slice",
    "summarise",
    "summarize",
    "ungroup",
]


def _apply(verb: str, data: Any, handler: Handler) -> Any:
    """Run ``handler`` on the engine table and re-wrap the result like the input."""
    if isinstance(data, GroupedDt):
        logger.debug("%s() on grouped table by %s", verb, list(data.groups))
        frame, spec = handler(data.frame, data.groups)
        return grouped_dt(frame, spec, copy=False)
    if isinstance(data, TblDt):
        logger.debug("%s() on wrapped table", verb)
        frame, _ = handler(data.frame, GroupSpec())
        return tbl_dt(frame, copy=False)
    if isinstance(data, pd.DataFrame):
        logger.debug("%s() on plain DataFrame", verb)
        frame, _ = handler(data, GroupSpec())
        return frame
    raise TypeError(f"{verb}() expects a TblDt or pandas.DataFrame, got {type(data).__name__}")


def _reject_names(verb: str, dots: Dots) -> None:
    for name, lazy in dots:
        if name is not None:
            raise ValueError(
                f"{verb}() arguments must not be named; got '{name} = {deparse(lazy.expr)}' (did you mean '=='?)"
            )


def filter(data: Any, /, *args: Any, _env: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
    """Keep rows where every predicate holds; rows where one is NA are dropped."""
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env())
    _reject_names("filter", dots)

    def handler(frame: pd.DataFrame, spec: GroupSpec) -> tuple[pd.DataFrame, GroupSpec]:
        rows = Index(RowIndex(), and_expr(dots.exprs))
        j = Call("list", kwargs=(("_row", rows),))
        positions = dt_subset(frame, j=j, env=common_env(dots), by=spec.names)["_row"]
        positions = positions.dropna().to_numpy(dtype="int64")
        return frame.iloc[positions].reset_index(drop=True), spec

    return _apply("filter", data, handler)


def select(data: Any, /, *args: Any, _env: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
    """Keep (and optionally rename) columns; grouping columns are always kept."""
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env())

    def handler(frame: pd.DataFrame, spec: GroupSpec) -> tuple[pd.DataFrame, GroupSpec]:
        vars = select_vars(frame.columns, dots, include=spec.names)
        out = frame[list(vars.values())].set_axis(list(vars), axis=1)
        return out, spec.renamed(vars)

    return _apply("select", data, handler)


def rename(data: Any, /, *args: Any, _env: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
    """Rename columns with ``new = old`` entries, keeping all columns in place."""
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env())

    def handler(frame: pd.DataFrame, spec: GroupSpec) -> tuple[pd.DataFrame, GroupSpec]:
        vars = rename_vars(frame.columns, dots)
        out = frame[list(vars.values())].set_axis(list(vars), axis=1)
        return out, spec.renamed(vars)

    return _apply("rename", data, handler)


def mutate(data: Any, /, *args: Any, _env: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
    """Add or replace columns, evaluated in order and within groups.

    Later expressions see the columns created by earlier ones.
    """
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env(), all_named=True)

    def handler(frame: pd.DataFrame, spec: GroupSpec) -> tuple[pd.DataFrame, GroupSpec]:
        # Never modify the caller's table
        frame = frame.copy()
        for name, lazy in dots:
            frame = dt_subset(frame, j=Assign(name, lazy.expr), env=lazy.env, by=spec.names)
        return frame, spec

    return _apply("mutate", data, handler)


def arrange(data: Any, /, *args: Any, _env: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
    """Sort rows by the grouping columns, then by each key (``desc(x)`` for descending).

    The sort is stable, so ties keep their original order.
    """
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env())
    _reject_names("arrange", dots)

    def handler(frame: pd.DataFrame, spec: GroupSpec) -> tuple[pd.DataFrame, GroupSpec]:
        keys = as_dots(spec, common_env(dots)) + dots
        if not len(keys):
            return frame.reset_index(drop=True), spec
        order = make_call("order", keys)
        return dt_subset(frame, i=order.expr, env=order.env), spec

    return _apply("arrange", data, handler)


def slice(data: Any, /, *args: Any, _env: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
    """Select rows by 0-based position within each group.

    Negative positions count from the end of the group; positions past the
    end are ignored. This differs from R's data.table, where ``.SD[-k]``
    drops row ``k``: ``slice(data, -1)`` here keeps only the last row. Drop
    rows with ``filter`` instead.
    """
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env())
    _reject_names("slice", dots)

    def handler(frame: pd.DataFrame, spec: GroupSpec) -> tuple[pd.DataFrame, GroupSpec]:
        if not len(dots):
            return frame.reset_index(drop=True), spec
        rows = dots.exprs[0] if len(dots) == 1 else Call("c", tuple(dots.exprs))
        out = dt_subset(frame, j=Index(SubData(), rows), env=common_env(dots), by=spec.names)
        return out[list(frame.columns)], spec

    return _apply("slice", data, handler)


def summarise(data: Any, /, *args: Any, _env: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
    """Reduce each group to one row; the result is grouped one level less."""
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env(), all_named=True)

    def handler(frame: pd.DataFrame, spec: GroupSpec) -> tuple[pd.DataFrame, GroupSpec]:
        if not len(dots):
            if spec:
                out = frame[list(spec)].drop_duplicates().reset_index(drop=True)
            else:
                out = pd.DataFrame(index=pd.RangeIndex(1))
            return out, spec.drop_last()
        j = make_call("list", dots)
        out = dt_subset(frame, j=j.expr, env=j.env, by=spec.names, one_row=True)
        return out, spec.drop_last()

    return _apply("summarise", data, handler)


summarize = summarise


def group_by(
    data: Any,
    /,
    *args: Any,
    add: bool = False,
    _env: Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> TblDt:
    """Group by columns; named or computed keys are added with ``mutate`` first.

    With ``add=True`` the keys extend the existing grouping instead of
    replacing it.
    """
    dots = lazy_dots(args, kwargs, _env if _env is not None else caller_env())
    names: list[str] = []
    computed: dict[str, DeferredExpression] = {}
    for name, lazy in dots:
        if name is None and isinstance(lazy.expr, Name):
            names.append(lazy.expr.name)
            continue
        key = name if name is not None else deparse(lazy.expr)
        computed[key] = lazy
        names.append(key)

    copy = None if isinstance(data, pd.DataFrame) else False
    if computed:
        data = mutate(data, **computed)
        copy = False
    spec = (groups(data) if add else GroupSpec()).extend(names)
    return grouped_dt(native_frame(data), spec, copy=copy)
