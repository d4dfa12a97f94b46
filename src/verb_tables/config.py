"""Process-wide options."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any, Iterator


@dataclass
class Options:
    """Tunable defaults.

    copy_on_wrap: ``tbl_dt`` copies engine-native input when ``copy`` is not given.
    na_last: ``order`` (and so ``arrange``) places missing keys after all others.
    """

    copy_on_wrap: bool = True
    na_last: bool = True


options = Options()

_OPTION_NAMES = frozenset(f.name for f in fields(Options))


def _check_name(name: str) -> None:
    if name not in _OPTION_NAMES:
        raise KeyError(f"Unknown option '{name}'; expected one of {', '.join(sorted(_OPTION_NAMES))}")


def get_option(name: str) -> Any:
    _check_name(name)
    return getattr(options, name)


def set_option(name: str, value: Any) -> None:
    _check_name(name)
    setattr(options, name, value)


@contextmanager
def option_context(**overrides: Any) -> Iterator[Options]:
    """Temporarily override options, restoring the previous values on exit."""
    for name in overrides:
        _check_name(name)
    saved = {name: getattr(options, name) for name in overrides}
    try:
        for name, value in overrides.items():
            setattr(options, name, value)
        yield options
    finally:
        for name, value in saved.items():
            setattr(options, name, value)
