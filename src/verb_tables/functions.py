"""Functions callable from column expressions.

Vector helpers take and return ``pandas.Series`` (scalars are accepted
anywhere a vector is); aggregates reduce a vector to a scalar. Names that
skip missing values take ``na_rm``, defaulting to ``False`` so that a missing
input yields a missing result.
"""

from __future__ import annotations

import math
from typing import Any, Callable

import numpy as np
import pandas as pd

from verb_tables.config import options
from verb_tables.errors import ShapeError

FUNCTIONS: dict[str, Callable[..., Any]] = {}


def register(*names: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Register ``fn`` under each of ``names``."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        for name in names:
            FUNCTIONS[name] = fn
        return fn

    return decorator


def is_vector(value: Any) -> bool:
    return isinstance(value, (pd.Series, pd.Index, np.ndarray, list, tuple, pd.api.extensions.ExtensionArray))


def as_series(value: Any) -> pd.Series:
    """A ``Series`` with a fresh ``RangeIndex``; scalars become length one."""
    if isinstance(value, pd.Series):
        return value.reset_index(drop=True)
    if is_vector(value):
        return pd.Series(value)
    return pd.Series([value])


def length_of(value: Any) -> int:
    if isinstance(value, pd.DataFrame):
        return len(value)
    return len(value) if is_vector(value) else 1


def broadcast(value: Any, n: int) -> pd.Series:
    """Recycle a length-one value to ``n`` rows; other lengths must equal ``n``."""
    series = as_series(value)
    if len(series) == n:
        return series
    if len(series) == 1:
        return series.iloc[[0] * n].reset_index(drop=True)
    raise ShapeError(f"Value of length {len(series)} cannot be recycled to length {n}")


def _common_length(values: tuple[Any, ...]) -> int:
    return max((length_of(v) for v in values), default=0)


def _na_scalar(value: Any) -> bool:
    return not is_vector(value) and bool(pd.isna(value))


# --- Aggregates ---------------------------------------------------------------


@register("sum")
def fn_sum(x: Any, na_rm: bool = False) -> Any:
    return as_series(x).sum(skipna=na_rm)


@register("mean")
def fn_mean(x: Any, na_rm: bool = False) -> Any:
    return as_series(x).mean(skipna=na_rm)


@register("median")
def fn_median(x: Any, na_rm: bool = False) -> Any:
    return as_series(x).median(skipna=na_rm)


@register("min")
def fn_min(x: Any, na_rm: bool = False) -> Any:
    return as_series(x).min(skipna=na_rm)


@register("max")
def fn_max(x: Any, na_rm: bool = False) -> Any:
    return as_series(x).max(skipna=na_rm)


@register("sd")
def fn_sd(x: Any, na_rm: bool = False) -> Any:
    return as_series(x).std(skipna=na_rm)


@register("var")
def fn_var(x: Any, na_rm: bool = False) -> Any:
    return as_series(x).var(skipna=na_rm)


@register("any")
def fn_any(x: Any, na_rm: bool = False) -> Any:
    series = as_series(x)
    if not na_rm and series.isna().any() and not series.fillna(False).astype(bool).any():
        return pd.NA
    return bool(series.fillna(False).astype(bool).any())


@register("all")
def fn_all(x: Any, na_rm: bool = False) -> Any:
    series = as_series(x)
    if not na_rm and series.isna().any() and series.fillna(True).astype(bool).all():
        return pd.NA
    return bool(series.fillna(True).astype(bool).all())


@register("length")
def fn_length(x: Any) -> int:
    return length_of(x)


@register("n_distinct")
def fn_n_distinct(*xs: Any, na_rm: bool = False) -> int:
    if len(xs) == 1:
        return int(as_series(xs[0]).nunique(dropna=na_rm))
    n = _common_length(xs)
    frame = pd.DataFrame({i: broadcast(x, n) for i, x in enumerate(xs)})
    if na_rm:
        frame = frame.dropna()
    return len(frame.drop_duplicates())


@register("nth")
def fn_nth(x: Any, k: int, default: Any = pd.NA) -> Any:
    """0-based element ``k`` of ``x``; negative ``k`` counts from the end."""
    series = as_series(x)
    k = int(k)
    if k < 0:
        k += len(series)
    if 0 <= k < len(series):
        return series.iloc[k]
    return default


@register("first")
def fn_first(x: Any, default: Any = pd.NA) -> Any:
    return fn_nth(x, 0, default)


@register("last")
def fn_last(x: Any, default: Any = pd.NA) -> Any:
    return fn_nth(x, -1, default)


# --- Vector helpers -----------------------------------------------------------


def _elementwise(fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def apply(x: Any) -> Any:
        if is_vector(x):
            return fn(as_series(x))
        return fn(x)

    return apply


FUNCTIONS["abs"] = _elementwise(np.abs)
FUNCTIONS["sqrt"] = _elementwise(np.sqrt)
FUNCTIONS["exp"] = _elementwise(np.exp)
FUNCTIONS["floor"] = _elementwise(np.floor)
FUNCTIONS["ceiling"] = _elementwise(np.ceil)


@register("log")
def fn_log(x: Any, base: float | None = None) -> Any:
    value = np.log(as_series(x) if is_vector(x) else x)
    if base is not None:
        value = value / math.log(base)
    return value


@register("round")
def fn_round(x: Any, digits: int = 0) -> Any:
    if is_vector(x):
        return as_series(x).round(int(digits))
    return np.round(x, int(digits))


@register("cumsum")
def fn_cumsum(x: Any) -> pd.Series:
    return as_series(x).cumsum()


@register("cumprod")
def fn_cumprod(x: Any) -> pd.Series:
    return as_series(x).cumprod()


@register("cummin")
def fn_cummin(x: Any) -> pd.Series:
    return as_series(x).cummin()


@register("cummax")
def fn_cummax(x: Any) -> pd.Series:
    return as_series(x).cummax()


@register("lag")
def fn_lag(x: Any, n: int = 1, default: Any = pd.NA) -> pd.Series:
    series = as_series(x)
    if _na_scalar(default):
        return series.shift(int(n))
    return series.shift(int(n), fill_value=default)


@register("lead")
def fn_lead(x: Any, n: int = 1, default: Any = pd.NA) -> pd.Series:
    return fn_lag(x, -int(n), default)


@register("is_na")
def fn_is_na(x: Any) -> Any:
    if is_vector(x):
        return as_series(x).isna()
    return bool(pd.isna(x))


@register("if_else", "ifelse")
def fn_if_else(condition: Any, true: Any, false: Any, missing: Any = pd.NA) -> Any:
    if not any(is_vector(v) for v in (condition, true, false)):
        if _na_scalar(condition):
            return missing
        return true if condition else false
    n = _common_length((condition, true, false))
    cond = broadcast(condition, n)
    known = cond.notna()
    chosen = cond.where(known, False).astype(bool)
    result = broadcast(true, n).where(chosen, broadcast(false, n))
    if not known.all():
        result = result.where(known, broadcast(missing, n))
    return result


@register("coalesce")
def fn_coalesce(*xs: Any) -> Any:
    if not xs:
        raise TypeError("coalesce() needs at least one argument")
    n = _common_length(xs)
    result = broadcast(xs[0], n)
    for x in xs[1:]:
        result = result.fillna(broadcast(x, n))
    return result


@register("between")
def fn_between(x: Any, left: Any, right: Any) -> Any:
    if is_vector(x):
        return as_series(x).between(left, right)
    return left <= x <= right


@register("scale")
def fn_scale(x: Any) -> pd.Series:
    series = as_series(x)
    return (series - series.mean()) / series.std()


@register("desc")
def fn_desc(x: Any) -> Any:
    """Descending sort key: a negated rank, so ties stay tied and NA stays NA."""
    return -as_series(x).rank(method="min")


@register("c")
def fn_c(*xs: Any) -> pd.Series:
    if not xs:
        return pd.Series([], dtype=object)
    return pd.concat([as_series(x) for x in xs], ignore_index=True)


def inclusive_range(start: Any, stop: Any) -> np.ndarray:
    """``start:stop``, inclusive at both ends and counting down when ``start > stop``."""
    if is_vector(start) or is_vector(stop):
        raise ShapeError("Range bounds must be single values")
    step = 1 if stop >= start else -1
    return np.arange(start, stop + step, step)


@register("seq")
def fn_seq(start: Any, stop: Any, by: Any = 1) -> np.ndarray:
    if by == 0:
        raise ValueError("seq() step must not be zero")
    count = math.floor((stop - start) / by) + 1
    return start + by * np.arange(max(count, 0))


@register("rev")
def fn_rev(x: Any) -> pd.Series:
    return as_series(x).iloc[::-1].reset_index(drop=True)


@register("toupper")
def fn_toupper(x: Any) -> Any:
    return as_series(x).str.upper() if is_vector(x) else str(x).upper()


@register("tolower")
def fn_tolower(x: Any) -> Any:
    return as_series(x).str.lower() if is_vector(x) else str(x).lower()


@register("nchar")
def fn_nchar(x: Any) -> Any:
    return as_series(x).str.len() if is_vector(x) else len(str(x))


@register("paste")
def fn_paste(*xs: Any, sep: str = " ") -> Any:
    if not any(is_vector(x) for x in xs):
        return sep.join(str(x) for x in xs)
    n = _common_length(xs)
    parts = [broadcast(x, n).astype(str) for x in xs]
    result = parts[0]
    for part in parts[1:]:
        result = result + sep + part
    return result


@register("order")
def fn_order(*keys: Any, decreasing: bool = False) -> np.ndarray:
    """Stable permutation sorting rows by ``keys``, earlier keys first."""
    if not keys:
        return np.arange(0)
    n = _common_length(keys)
    frame = pd.DataFrame({i: broadcast(key, n) for i, key in enumerate(keys)})
    ordered = frame.sort_values(
        by=list(frame.columns),
        ascending=not decreasing,
        kind="mergesort",
        na_position="last" if options.na_last else "first",
    )
    return ordered.index.to_numpy()
