"""Deferred expressions: syntax captured together with the environment it came from."""

from __future__ import annotations

import sys
from collections import ChainMap
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

from verb_tables.errors import ExpressionSyntaxError
from verb_tables.expr import Assign, Call, Expr, Name, as_expr, deparse, is_expr
from verb_tables.parsing import parse_expression


def empty_env() -> ChainMap:
    return ChainMap({})


def caller_env(depth: int = 1) -> ChainMap:
    """Environment of the frame ``depth`` levels above the caller of this function.

    ``caller_env()`` called inside a verb returns the environment of whoever
    called the verb.
    """
    frame = sys._getframe(depth + 1)
    try:
        return ChainMap(frame.f_locals, frame.f_globals)
    finally:
        del frame


@dataclass(frozen=True)
class DeferredExpression:
    """An unevaluated expression and the environment its free variables resolve in."""

    expr: Expr
    env: Mapping[str, Any] = field(default_factory=empty_env, compare=False)

    def __str__(self) -> str:
        return deparse(self.expr)


@dataclass(frozen=True)
class Dots:
    """Ordered, optionally named, deferred expressions collected from a call site."""

    entries: tuple[tuple[str | None, DeferredExpression], ...] = ()

    def __iter__(self) -> Iterator[tuple[str | None, DeferredExpression]]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def exprs(self) -> list[Expr]:
        return [lazy.expr for _, lazy in self.entries]

    def auto_named(self) -> "Dots":
        """Name every entry, using the rendered expression text for unnamed ones."""
        return Dots(tuple((name if name is not None else deparse(lazy.expr), lazy) for name, lazy in self.entries))

    def __add__(self, other: "Dots") -> "Dots":
        return Dots(self.entries + other.entries)


def _lazy(value: Any, env: Mapping[str, Any]) -> tuple[str | None, DeferredExpression]:
    if isinstance(value, DeferredExpression):
        return None, value
    if isinstance(value, str):
        value = parse_expression(value)
    elif not is_expr(value):
        return None, DeferredExpression(as_expr(value), env)
    if isinstance(value, Assign):
        return value.name, DeferredExpression(value.value, env)
    return None, DeferredExpression(value, env)


def lazy_dots(
    args: Iterable[Any] = (),
    kwargs: Mapping[str, Any] | None = None,
    env: Mapping[str, Any] | None = None,
    all_named: bool = False,
) -> Dots:
    """Capture verb arguments as deferred expressions.

    Strings are parsed; a top-level ``name = expr`` string becomes a named
    entry. Keyword arguments become named entries after the positional ones.
    """
    if env is None:
        env = caller_env()
    entries = [_lazy(value, env) for value in args]
    for name, value in (kwargs or {}).items():
        inner_name, lazy = _lazy(value, env)
        if inner_name is not None:
            raise ExpressionSyntaxError(f"Keyword argument '{name}' cannot hold an assignment to '{inner_name}'")
        entries.append((name, lazy))
    dots = Dots(tuple(entries))
    return dots.auto_named() if all_named else dots


def as_dots(names: Iterable[str], env: Mapping[str, Any] | None = None) -> Dots:
    """Column names as unnamed ``Name`` expressions."""
    env = env if env is not None else empty_env()
    return Dots(tuple((None, DeferredExpression(Name(name), env)) for name in names))


def common_env(dots: Dots) -> Mapping[str, Any]:
    """The one environment every entry can resolve against.

    Identical environments are returned as-is. Otherwise the result chains the
    scopes all entries share (typically module globals); with nothing shared it
    is empty.
    """
    envs = [lazy.env for _, lazy in dots]
    if not envs:
        return empty_env()
    first = envs[0]
    if all(env is first for env in envs[1:]):
        return first

    def chain(env: Mapping[str, Any]) -> list[Mapping[str, Any]]:
        return list(env.maps) if isinstance(env, ChainMap) else [env]

    shared = chain(first)
    for env in envs[1:]:
        ids = {id(m) for m in chain(env)}
        shared = [m for m in shared if id(m) in ids]
    return ChainMap(*shared) if shared else empty_env()


def make_call(func: str, dots: Dots) -> DeferredExpression:
    """Combine entries into one call expression; named entries become keywords."""
    args = tuple(lazy.expr for name, lazy in dots if name is None)
    kwargs = tuple((name, lazy.expr) for name, lazy in dots if name is not None)
    return DeferredExpression(Call(func, args, kwargs), common_env(dots))
