"""
deskpoints.engine.locks — Keyed in-process serialization
=========================================================

Read-then-write sections (closure supersession, milestone checks, badge
awards) take a lock on a tuple key such as ``("badge", user, badge, day)``.
Within one process this closes the check-then-insert window; across
processes the database unique constraints decide the winner.

Thread-safe.  Locks are reference counted and dropped once nobody holds
or waits on them.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from threading import Lock


class KeyedLock:
    """One :class:`threading.Lock` per key, created on demand."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[Hashable, list] = {}  # key → [Lock, refcount]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = [Lock(), 0]
                self._locks[key] = slot
            slot[1] += 1
        lock: Lock = slot[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_default: KeyedLock | None = None
_default_guard = Lock()


def get_default_locks() -> KeyedLock:
    """Return (or create) the process-global :class:`KeyedLock`."""
    global _default
    if _default is None:
        with _default_guard:
            if _default is None:
                _default = KeyedLock()
    return _default
