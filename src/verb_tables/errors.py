"""Exception types raised by verb_tables."""

from __future__ import annotations


class VerbTablesError(Exception):
    """Base class for verb_tables errors."""


class ExpressionSyntaxError(VerbTablesError, SyntaxError):
    """Expression text could not be tokenized or parsed."""

    def __init__(self, message: str, position: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.position = position

    def __str__(self) -> str:
        if self.position is None:
            return self.message
        return f"{self.message} (position {self.position})"


class ColumnNotFoundError(VerbTablesError, KeyError):
    """A selection, rename or grouping spec names a column the table lacks."""

    def __init__(self, name: str, columns: list[str] | tuple[str, ...] = ()) -> None:
        super().__init__(name)
        self.name = name
        self.columns = tuple(columns)

    def __str__(self) -> str:
        if self.columns:
            return f"Unknown column '{self.name}'; available: {', '.join(self.columns)}"
        return f"Unknown column '{self.name}'"


class UndefinedNameError(VerbTablesError, NameError):
    """A free variable or function is neither a column nor in the environment."""

    def __init__(self, name: str, kind: str = "object") -> None:
        super().__init__(f"{kind} '{name}' not found")
        self.name = name


class ShapeError(VerbTablesError, ValueError):
    """An evaluated value has a length incompatible with its destination."""


class GroupingError(VerbTablesError, ValueError):
    """An operation would modify or invalidate a grouping column."""
