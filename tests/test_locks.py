"""
tests/test_locks.py — Keyed Lock Tests
=======================================
"""

from __future__ import annotations

import threading
import time

from deskpoints.engine.locks import KeyedLock, get_default_locks


def test_lock_dropped_after_release():
    locks = KeyedLock()
    with locks.hold(("ticket", 1)):
        assert len(locks) == 1
    assert len(locks) == 0


def test_same_key_serializes():
    locks = KeyedLock()
    entered: list[int] = []

    def worker():
        with locks.hold("k"):
            entered.append(1)

    with locks.hold("k"):
        thread = threading.Thread(target=worker)
        thread.start()
        time.sleep(0.05)
        assert entered == []
    thread.join(timeout=2)
    assert entered == [1]
    assert len(locks) == 0


def test_different_keys_do_not_block():
    locks = KeyedLock()
    done = threading.Event()

    def worker():
        with locks.hold("b"):
            done.set()

    with locks.hold("a"):
        thread = threading.Thread(target=worker)
        thread.start()
        assert done.wait(timeout=2)
    thread.join(timeout=2)


def test_released_on_exception():
    locks = KeyedLock()
    try:
        with locks.hold("k"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert len(locks) == 0


def test_default_is_singleton():
    assert get_default_locks() is get_default_locks()
