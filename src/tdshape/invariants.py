"""Invariant markers for tdshape."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import NoReturn, TypeVar

from tdshape.exceptions import NeverThrown

_STRICT_OVERRIDE: ContextVar[bool | None] = ContextVar(
    "tdshape_strict_override",
    default=None,
)

T = TypeVar("T")


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The optional env payload is metadata for the raised exception only.
    """
    normalized_reason = str(reason or "never() invariant reached").strip()
    raise NeverThrown(normalized_reason, env={str(key): value for key, value in env.items()})


def strict_mode() -> bool:
    return bool(_STRICT_OVERRIDE.get())


@contextmanager
def strict_mode_scope(enabled: bool):
    token = _STRICT_OVERRIDE.set(bool(enabled))
    try:
        yield
    finally:
        _STRICT_OVERRIDE.reset(token)


def require_not_none(
    value: T | None,
    *,
    reason: str = "",
    strict: bool | None = None,
    **env: object,
) -> T | None:
    if value is None:
        if strict is None:
            strict = strict_mode()
        if strict:
            never(reason or "required value is None", **env)
    return value
