"""
Per-thread (and per-task) fields attached to every log record.

The cache binds ``fingerprint`` while computing a result and the sweep runner
binds ``sweep_id`` for each grid point, so log lines emitted deep inside a
backtest can be traced back to the parameter set that produced them.
"""

from __future__ import annotations

import contextlib
import contextvars
import uuid
from collections.abc import Iterator
from types import MappingProxyType
from typing import Any, Mapping

_EMPTY: Mapping[str, Any] = MappingProxyType({})

_fields: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar(
    "bcache_log_fields", default=_EMPTY
)


def _merged(**kwargs: Any) -> Mapping[str, Any]:
    merged = dict(_fields.get())
    merged.update((k, v) for k, v in kwargs.items() if v is not None)
    return MappingProxyType(merged)


def get_context() -> dict[str, Any]:
    """Fields currently bound, as a fresh dict."""
    return dict(_fields.get())


def set_context(**kwargs: Any) -> None:
    """Bind fields until cleared; None values are skipped."""
    _fields.set(_merged(**kwargs))


def clear_context(*keys: str) -> None:
    """Unbind the named fields, or everything when called without names."""
    if not keys:
        _fields.set(_EMPTY)
        return
    _fields.set(MappingProxyType({k: v for k, v in _fields.get().items() if k not in keys}))


@contextlib.contextmanager
def use_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields for the duration of a block; the outer binding is restored on exit."""
    token = _fields.set(_merged(**kwargs))
    try:
        yield
    finally:
        _fields.reset(token)


def new_sweep_id() -> str:
    return uuid.uuid4().hex
