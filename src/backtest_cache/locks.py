"""Per-fingerprint locking primitives.

``KeyedLocks`` serializes writers of one fingerprint without a global lock.
``InFlightTable`` lets concurrent callers share a single computation. Both drop
their per-key slots as soon as nobody holds or waits on them, so the tables
never grow with the number of fingerprints ever seen.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from concurrent.futures import Future
from contextlib import contextmanager
from dataclasses import dataclass, field

from .exceptions import ComputeTimeoutError


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLocks:
    def __init__(self, default_timeout: float | None = None):
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}
        self.default_timeout = default_timeout

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @contextmanager
    def hold(self, key: str, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for ``key``; raises ComputeTimeoutError if not acquired in time."""
        wait = self.default_timeout if timeout is None else timeout
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1

        acquired = False
        try:
            acquired = slot.lock.acquire(timeout=-1 if wait is None else max(0.0, wait))
            if not acquired:
                raise ComputeTimeoutError(f"Timed out after {wait}s waiting for lock on {key}")
            yield
        finally:
            if acquired:
                slot.lock.release()
            with self._guard:
                slot.users -= 1
                if slot.users == 0 and self._slots.get(key) is slot:
                    del self._slots[key]


class InFlightTable:
    """Maps a key to the Future of the computation currently producing it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._futures: dict[str, Future] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._futures)

    def claim(self, key: str) -> tuple[Future, bool]:
        """Return (future, is_owner). The owner must later call ``release``."""
        with self._guard:
            existing = self._futures.get(key)
            if existing is not None:
                return existing, False
            future: Future = Future()
            # running futures refuse cancel()
            future.set_running_or_notify_cancel()
            self._futures[key] = future
            return future, True

    def release(self, key: str, future: Future) -> None:
        with self._guard:
            if self._futures.get(key) is future:
                del self._futures[key]
