"""Engine bridge: compiles row/column expressions into one call against pandas.

A call has the shape ``_dt[i, j, by]``:

* ``i`` (row slot) is evaluated once over the whole table and selects or
  reorders rows (boolean mask, positions, or a permutation from ``order()``).
* ``j`` (column slot) is evaluated once per group of ``by`` (once overall when
  ungrouped). ``list(name = expr, ...)`` builds a result table with the
  group keys in front, ``name := expr`` assigns a column in place, and any
  other value becomes a result column ``V1``.

Names resolve against the table's columns before the caller's environment.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import numpy as np
import pandas as pd

from verb_tables.dots import empty_env
from verb_tables.errors import GroupingError, ShapeError, UndefinedNameError
from verb_tables.expr import (
    Assign,
    BinaryOp,
    Call,
    EnvRef,
    Expr,
    GroupSize,
    Index,
    Literal,
    Name,
    RowIndex,
    SubData,
    UnaryOp,
    deparse,
    format_name,
)
from verb_tables.functions import FUNCTIONS, as_series, broadcast, inclusive_range, is_vector, length_of

logger = logging.getLogger(__name__)

Compiled = Callable[["Scope"], Any]


def has_default_index(frame: pd.DataFrame) -> bool:
    """Whether ``frame`` is labelled by its row positions ``0..n-1``."""
    index = frame.index
    return isinstance(index, pd.RangeIndex) and index.start == 0 and index.step == 1


class Scope:
    """Name resolution for the rows of one group.

    ``positions`` is ``None`` for the whole table, otherwise the table
    positions of the group's rows in their original order.
    """

    def __init__(
        self,
        frame: pd.DataFrame,
        positions: np.ndarray | None,
        env: Mapping[str, Any],
        by: tuple[str, ...] = (),
    ) -> None:
        self._frame = frame
        self._positions = positions
        self.env = env
        self.by = by
        self._data: pd.DataFrame | None = None

    @property
    def data(self) -> pd.DataFrame:
        if self._data is None:
            if self._positions is None:
                frame = self._frame
                self._data = frame if has_default_index(frame) else frame.reset_index(drop=True)
            else:
                self._data = self._frame.iloc[self._positions].reset_index(drop=True)
        return self._data

    @property
    def size(self) -> int:
        return len(self._frame) if self._positions is None else len(self._positions)

    def row_index(self) -> pd.Series:
        positions = np.arange(len(self._frame)) if self._positions is None else self._positions
        return pd.Series(positions, dtype="Int64")

    def subdata(self) -> pd.DataFrame:
        if not self.by:
            return self.data
        return self.data.drop(columns=list(self.by))

    def lookup(self, name: str) -> Any:
        data = self.data
        if name in data.columns:
            return data[name]
        return self.lookup_env(name)

    def lookup_env(self, name: str) -> Any:
        try:
            return self.env[name]
        except KeyError:
            raise UndefinedNameError(name) from None

    def lookup_function(self, name: str) -> Callable[..., Any]:
        value = self.env.get(name)
        if callable(value):
            return value
        try:
            return FUNCTIONS[name]
        except KeyError:
            raise UndefinedNameError(name, kind="function") from None


# --- Operators ----------------------------------------------------------------


def _as_logical(value: Any) -> Any:
    if isinstance(value, pd.Series):
        if pd.api.types.is_bool_dtype(value.dtype):
            return value
        return value.astype("boolean")
    if is_vector(value):
        return as_series(value).astype("boolean")
    return value


def _logical(op: Callable[[Any, Any], Any]) -> Callable[[Any, Any], Any]:
    def apply(left: Any, right: Any) -> Any:
        if is_vector(left) or is_vector(right):
            return op(_as_logical(left), _as_logical(right))
        return op(left, right)

    return apply


def _logical_not(value: Any) -> Any:
    if is_vector(value):
        return ~_as_logical(value)
    if value is pd.NA:
        return pd.NA
    return not value


def _isin(left: Any, right: Any) -> Any:
    values = list(as_series(right)) if is_vector(right) else [right]
    if is_vector(left):
        return as_series(left).isin(values)
    return left in values


_BINARY: dict[str, Callable[[Any, Any], Any]] = {
    "&": _logical(operator.and_),
    "|": _logical(operator.or_),
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _isin,
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "//": operator.floordiv,
    "%": operator.mod,
    "**": operator.pow,
    ":": inclusive_range,
}

_UNARY: dict[str, Callable[[Any], Any]] = {
    "-": operator.neg,
    "+": operator.pos,
    "!": _logical_not,
}


# --- Indexing -----------------------------------------------------------------


def positions_for(index: Any, n: int) -> np.ndarray:
    """Resolve an index value against ``n`` rows to 0-based positions.

    Missing entries become ``-1``. Booleans select where true (length one is
    recycled); integers count from 0, negatives from the end, and out-of-range
    integers are missing.
    """
    if isinstance(index, (bool, np.bool_)):
        return np.arange(n) if index else np.arange(0)
    if not is_vector(index):
        if pd.isna(index):
            return np.full(n, -1)
        index = [index]
    series = as_series(index)
    if pd.api.types.is_bool_dtype(series.dtype) or pd.api.types.infer_dtype(series, skipna=True) == "boolean":
        mask = broadcast(series.astype("boolean"), n)
        missing = mask.isna().to_numpy()
        keep = mask.fillna(False).to_numpy(dtype=bool) | missing
        result = np.flatnonzero(keep)
        result[missing[keep]] = -1
        return result
    missing = series.isna().to_numpy()
    values = series.fillna(0).to_numpy().astype(np.int64)
    values = np.where(values < 0, values + n, values)
    values[(values < 0) | (values >= n) | missing] = -1
    return values


def take(target: Any, index: Any) -> Any:
    """``target[index]``: rows of a table (missing positions dropped) or
    elements of a vector (missing positions give NA)."""
    if isinstance(target, pd.DataFrame):
        positions = positions_for(index, len(target))
        return target.iloc[positions[positions >= 0]].reset_index(drop=True)
    series = as_series(target)
    positions = positions_for(index, len(series))
    if (positions < 0).any():
        values = pd.api.extensions.take(series.array, positions, allow_fill=True)
        return pd.Series(values, name=series.name)
    return series.iloc[positions].reset_index(drop=True)


# --- Compilation --------------------------------------------------------------


def compile_expr(node: Expr) -> Compiled:
    """Compile an expression to a function of a :class:`Scope`.

    Operands are evaluated left to right, each exactly once per call.
    """
    if isinstance(node, Name):
        name = node.name
        return lambda scope: scope.lookup(name)
    if isinstance(node, EnvRef):
        name = node.name
        return lambda scope: scope.lookup_env(name)
    if isinstance(node, Literal):
        value = node.value
        return lambda scope: value
    if isinstance(node, RowIndex):
        return lambda scope: scope.row_index()
    if isinstance(node, GroupSize):
        return lambda scope: scope.size
    if isinstance(node, SubData):
        return lambda scope: scope.subdata()
    if isinstance(node, UnaryOp):
        unary = _UNARY[node.op]
        operand = compile_expr(node.operand)
        return lambda scope: unary(operand(scope))
    if isinstance(node, BinaryOp):
        binary = _BINARY[node.op]
        left = compile_expr(node.left)
        right = compile_expr(node.right)
        return lambda scope: binary(left(scope), right(scope))
    if isinstance(node, Call):
        return _compile_call(node)
    if isinstance(node, Index):
        target = compile_expr(node.target)
        index = compile_expr(node.index)
        return lambda scope: take(target(scope), index(scope))
    if isinstance(node, Assign):
        raise SyntaxError(f"Assignment '{deparse(node)}' is only valid as a top-level column expression")
    raise TypeError(f"Cannot compile {type(node).__name__}")


def _compile_call(node: Call) -> Compiled:
    if node.func == "n" and not node.args and not node.kwargs:
        return lambda scope: scope.size
    func = node.func
    args = [compile_expr(arg) for arg in node.args]
    kwargs = [(key, compile_expr(value)) for key, value in node.kwargs]

    def call(scope: Scope) -> Any:
        fn = scope.lookup_function(func)
        return fn(*[arg(scope) for arg in args], **{key: value(scope) for key, value in kwargs})

    return call


def evaluate(node: Expr, frame: pd.DataFrame | None = None, env: Mapping[str, Any] | None = None) -> Any:
    """Evaluate one expression over a whole table (or over no columns)."""
    frame = frame if frame is not None else pd.DataFrame()
    return compile_expr(node)(Scope(frame, None, env if env is not None else empty_env()))


# --- Grouping -----------------------------------------------------------------


def group_positions(frame: pd.DataFrame, by: tuple[str, ...]) -> list[np.ndarray]:
    """Row positions of each group, groups in order of first appearance."""
    if not by:
        return [np.arange(len(frame))]
    if len(frame) == 0:
        return []
    codes = frame.groupby(list(by), sort=False, dropna=False).ngroup().to_numpy()
    order = np.argsort(codes, kind="stable")
    bounds = np.cumsum(np.bincount(codes))[:-1]
    return np.split(order, bounds)


def _frame_from_values(values: dict[str, Any]) -> pd.DataFrame:
    for name, value in values.items():
        if isinstance(value, pd.DataFrame):
            raise ShapeError(f"Column '{name}' evaluated to a table, expected a vector")
    n = max((length_of(v) for v in values.values()), default=0)
    for name, value in values.items():
        if length_of(value) not in (1, n):
            raise ShapeError(f"Column '{name}' has length {length_of(value)}, expected 1 or {n}")
    return pd.DataFrame({name: broadcast(value, n) for name, value in values.items()}, index=pd.RangeIndex(n))


# --- Engine call --------------------------------------------------------------


@dataclass(frozen=True)
class EngineCall:
    """One compiled ``_dt[i, j, by]`` call.

    With ``one_row`` set, ``j`` must produce exactly one row for every group.
    """

    i: Expr | None = None
    j: Expr | None = None
    by: tuple[str, ...] = ()
    env: Mapping[str, Any] = field(default_factory=empty_env, compare=False)
    one_row: bool = False

    def __str__(self) -> str:
        i = deparse(self.i) if self.i is not None else ""
        j = deparse(self.j) if self.j is not None else ""
        by = f", by = c({', '.join(format_name(b) for b in self.by)})" if self.by else ""
        return f"_dt[{i}, {j}{by}]"

    def execute(self, frame: pd.DataFrame) -> pd.DataFrame:
        if self.i is not None:
            rows = positions_for(evaluate(self.i, frame, self.env), len(frame))
            frame = frame.iloc[rows[rows >= 0]].reset_index(drop=True)
        if self.j is None:
            return frame
        if isinstance(self.j, Assign):
            return self._assign(frame, self.j)
        return self._collect(frame)

    def _scope(self, frame: pd.DataFrame, positions: np.ndarray) -> Scope:
        return Scope(frame, positions if self.by else None, self.env, self.by)

    def _assign(self, frame: pd.DataFrame, assign: Assign) -> pd.DataFrame:
        if assign.name in self.by:
            raise GroupingError(f"Cannot modify grouping column '{assign.name}'")
        value_fn = compile_expr(assign.value)
        pieces = []
        for positions in group_positions(frame, self.by):
            value = value_fn(self._scope(frame, positions))
            if isinstance(value, pd.DataFrame):
                raise ShapeError(f"Column '{assign.name}' evaluated to a table, expected a vector")
            value = broadcast(value, len(positions))
            pieces.append(value.set_axis(positions))
        if not pieces:
            frame[assign.name] = pd.Series([], dtype=object, index=frame.index)
            return frame
        result = pieces[0] if len(pieces) == 1 else pd.concat(pieces).sort_index()
        frame[assign.name] = result.set_axis(frame.index)
        return frame

    def _compile_columns(self) -> Callable[[Scope], pd.DataFrame]:
        j = self.j
        if isinstance(j, Call) and j.func == "list":
            named = [(f"V{k + 1}", compile_expr(arg)) for k, arg in enumerate(j.args)]
            named += [(key, compile_expr(value)) for key, value in j.kwargs]
            return lambda scope: _frame_from_values({name: fn(scope) for name, fn in named})
        value_fn = compile_expr(j)

        def single(scope: Scope) -> pd.DataFrame:
            value = value_fn(scope)
            if isinstance(value, pd.DataFrame):
                return value.reset_index(drop=True)
            return _frame_from_values({"V1": value})

        return single

    def _with_keys(self, frame: pd.DataFrame, positions: np.ndarray, piece: pd.DataFrame) -> pd.DataFrame:
        clash = [name for name in piece.columns if name in self.by]
        if clash:
            raise GroupingError(f"Result column '{clash[0]}' duplicates a grouping column")
        keys = frame[list(self.by)].iloc[np.repeat(positions[:1], len(piece))].reset_index(drop=True)
        return pd.concat([keys, piece.reset_index(drop=True)], axis=1)

    def _group_label(self, frame: pd.DataFrame, positions: np.ndarray) -> str:
        if not self.by:
            return ""
        keys = frame[list(self.by)].iloc[positions[0]]
        return " for group " + ", ".join(f"{name} = {keys[name]}" for name in self.by)

    def _collect(self, frame: pd.DataFrame) -> pd.DataFrame:
        columns_fn = self._compile_columns()
        pieces = []
        for positions in group_positions(frame, self.by):
            piece = columns_fn(self._scope(frame, positions))
            if self.one_row and len(piece) != 1:
                raise ShapeError(f"Expected one row per group, got {len(piece)}{self._group_label(frame, positions)}")
            if self.by:
                piece = self._with_keys(frame, positions, piece)
            pieces.append(piece)
        if not pieces:
            # No groups: evaluate once over no rows just to learn the result columns.
            empty = np.arange(0)
            piece = columns_fn(Scope(frame, empty, self.env, self.by))
            return self._with_keys(frame, empty, piece.iloc[0:0])
        if len(pieces) == 1:
            return pieces[0]
        return pd.concat(pieces, ignore_index=True)


def dt_subset(
    frame: pd.DataFrame,
    i: Expr | None = None,
    j: Expr | None = None,
    env: Mapping[str, Any] | None = None,
    by: tuple[str, ...] | list[str] = (),
    one_row: bool = False,
) -> pd.DataFrame:
    """Compile ``i``/``j`` into one engine call and execute it once.

    An assignment in ``j`` modifies ``frame`` in place; callers pass a copy
    they own.
    """
    call = EngineCall(i=i, j=j, by=tuple(by), env=env if env is not None else empty_env(), one_row=one_row)
    logger.debug("Executing %s on %d rows", call, len(frame))
    return call.execute(frame)
