"""Wrapped tables: the backend tag and the grouping state it carries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

import pandas as pd

from verb_tables.bridge import has_default_index
from verb_tables.config import options
from verb_tables.dots import caller_env
from verb_tables.errors import ColumnNotFoundError, GroupingError


@dataclass(frozen=True)
class GroupSpec:
    """Ordered, distinct grouping column names; the last is the innermost level."""

    names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for name in self.names:
            if name in seen:
                raise GroupingError(f"Grouping column '{name}' listed twice")
            seen.add(name)

    @classmethod
    def of(cls, names: Iterable[str] | "GroupSpec" | None) -> "GroupSpec":
        if isinstance(names, GroupSpec):
            return names
        if isinstance(names, str):
            return cls((names,))
        return cls(tuple(names or ()))

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __bool__(self) -> bool:
        return bool(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def drop_last(self) -> "GroupSpec":
        """Roll up one level by removing the innermost grouping column."""
        return GroupSpec(self.names[:-1])

    def extend(self, names: Iterable[str]) -> "GroupSpec":
        return GroupSpec(self.names + tuple(n for n in names if n not in self.names))

    def renamed(self, mapping: Mapping[str, str]) -> "GroupSpec":
        """Names after a select/rename given as ``{new: old}``."""
        new_for_old = {old: new for new, old in mapping.items()}
        return GroupSpec(tuple(new_for_old[name] for name in self.names if name in new_for_old))

    def validate(self, columns: Iterable[str]) -> None:
        columns = list(columns)
        for name in self.names:
            if name not in columns:
                raise ColumnNotFoundError(name, columns)


def _to_frame(data: Any) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        return data
    if hasattr(data, "to_pandas"):
        return data.to_pandas()
    if isinstance(data, pd.Series):
        return data.to_frame()
    return pd.DataFrame(data)


def _normalized(frame: pd.DataFrame, copy: bool) -> pd.DataFrame:
    if copy:
        frame = frame.copy(deep=True)
    if not has_default_index(frame):
        frame = frame.reset_index(drop=True)
    return frame


@dataclass(frozen=True, eq=False, repr=False)
class TblDt:
    """A pandas table owned by this backend.

    Verbs called on a ``TblDt`` return a new ``TblDt``; the wrapped frame is
    never modified after construction.
    """

    frame: pd.DataFrame

    @property
    def groups(self) -> GroupSpec:
        return GroupSpec()

    @property
    def columns(self) -> list[str]:
        return list(self.frame.columns)

    @property
    def shape(self) -> tuple[int, int]:
        return self.frame.shape

    def __len__(self) -> int:
        return len(self.frame)

    def __repr__(self) -> str:
        rows, cols = self.frame.shape
        header = f"Source: local data table [{rows:,} x {cols}]"
        if self.groups:
            header += f"\nGroups: {', '.join(self.groups)}"
        return f"{header}\n\n{self.frame!r}"

    # Verb methods, for chaining: tbl.filter("x > 1").summarise(n="n()")

    def filter(self, *args: Any, **kwargs: Any) -> "TblDt":
        from verb_tables import verbs

        return verbs.filter(self, *args, _env=caller_env(), **kwargs)

    def select(self, *args: Any, **kwargs: Any) -> "TblDt":
        from verb_tables import verbs

        return verbs.select(self, *args, _env=caller_env(), **kwargs)

    def rename(self, *args: Any, **kwargs: Any) -> "TblDt":
        from verb_tables import verbs

        return verbs.rename(self, *args, _env=caller_env(), **kwargs)

    def mutate(self, *args: Any, **kwargs: Any) -> "TblDt":
        from verb_tables import verbs

        return verbs.mutate(self, *args, _env=caller_env(), **kwargs)

    def arrange(self, *args: Any, **kwargs: Any) -> "TblDt":
        from verb_tables import verbs

        return verbs.arrange(self, *args, _env=caller_env(), **kwargs)

    def slice(self, *args: Any, **kwargs: Any) -> "TblDt":
        from verb_tables import verbs

        return verbs.slice(self, *args, _env=caller_env(), **kwargs)

    def summarise(self, *args: Any, **kwargs: Any) -> "TblDt":
        from verb_tables import verbs

        return verbs.summarise(self, *args, _env=caller_env(), **kwargs)

    summarize = summarise

    def group_by(self, *args: Any, add: bool = False, **kwargs: Any) -> "GroupedDt":
        from verb_tables import verbs

        return verbs.group_by(self, *args, add=add, _env=caller_env(), **kwargs)

    def ungroup(self) -> "TblDt":
        return ungroup(self)

    def head(self, n: int = 6) -> "TblDt":
        return head(self, n)

    def tail(self, n: int = 6) -> "TblDt":
        return tail(self, n)

    def to_pandas(self) -> pd.DataFrame:
        return as_frame(self)


@dataclass(frozen=True, eq=False, repr=False)
class GroupedDt(TblDt):
    """A wrapped table with a non-empty grouping."""

    group_spec: GroupSpec = field(default_factory=GroupSpec)

    @property
    def groups(self) -> GroupSpec:
        return self.group_spec


def tbl_dt(data: Any, copy: bool | None = None) -> TblDt:
    """Wrap ``data`` as a backend table.

    Grouped input comes back ungrouped and uncopied. Engine-native input
    (a ``TblDt`` or ``pandas.DataFrame``) is copied when ``copy`` is true,
    defaulting to the ``copy_on_wrap`` option; anything else is converted.
    """
    if isinstance(data, GroupedDt):
        return TblDt(data.frame)
    if copy is None:
        copy = options.copy_on_wrap
    if isinstance(data, TblDt):
        return TblDt(_normalized(data.frame, copy)) if copy else data
    if isinstance(data, pd.DataFrame):
        return TblDt(_normalized(data, copy))
    return TblDt(_normalized(_to_frame(data), False))


def grouped_dt(data: Any, groups: Iterable[str] | GroupSpec, copy: bool | None = False) -> TblDt:
    """Wrap ``data`` grouped by ``groups``; an empty grouping gives a plain ``TblDt``."""
    frame = tbl_dt(data, copy=copy).frame
    spec = GroupSpec.of(groups)
    if not spec:
        return TblDt(frame)
    spec.validate(frame.columns)
    return GroupedDt(frame, spec)


def is_grouped_dt(data: Any) -> bool:
    return isinstance(data, GroupedDt)


def native_frame(data: Any) -> pd.DataFrame:
    """The engine table behind a wrapped or plain value (not copied)."""
    if isinstance(data, TblDt):
        return data.frame
    if isinstance(data, pd.DataFrame):
        return data
    raise TypeError(f"Expected a TblDt or pandas.DataFrame, got {type(data).__name__}")


def groups(data: Any) -> GroupSpec:
    return data.groups if isinstance(data, TblDt) else GroupSpec()


def group_vars(data: Any) -> list[str]:
    return list(groups(data))


def tbl_vars(data: Any) -> list[str]:
    return list(native_frame(data).columns)


def ungroup(data: Any) -> Any:
    if isinstance(data, TblDt):
        return TblDt(data.frame)
    return data


def same_src(x: Any, y: Any) -> bool:
    return isinstance(y, (TblDt, pd.DataFrame))


def auto_copy(x: Any, y: Any) -> pd.DataFrame:
    """Bring a foreign tabular value ``y`` into the engine's native form."""
    return _normalized(_to_frame(native_frame(y) if isinstance(y, TblDt) else y), True)


def as_frame(data: Any) -> pd.DataFrame:
    """An independent ``pandas.DataFrame`` copy of a wrapped or plain table."""
    return native_frame(data).copy(deep=True)


def _rewrap(data: Any, frame: pd.DataFrame) -> Any:
    if isinstance(data, TblDt):
        return grouped_dt(frame, data.groups)
    return frame


def head(data: Any, n: int = 6) -> Any:
    return _rewrap(data, native_frame(data).head(n).reset_index(drop=True))


def tail(data: Any, n: int = 6) -> Any:
    return _rewrap(data, native_frame(data).tail(n).reset_index(drop=True))
