"""Tests for per-object locking."""

import threading
import time

from server.apps.media.logic.locks import KeyedLock


def test_same_key_is_serialized():
    """Test two holders of one key never overlap."""
    locks = KeyedLock()
    inside = []
    overlaps = []

    def worker():
        with locks.hold('u1', 'obj'):
            if inside:
                overlaps.append(True)
            inside.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []


def test_different_keys_do_not_contend():
    """Test holding one key does not block another."""
    locks = KeyedLock()
    acquired = threading.Event()

    def worker():
        with locks.hold('u1', 'other'):
            acquired.set()

    with locks.hold('u1', 'obj'):
        thread = threading.Thread(target=worker)
        thread.start()
        assert acquired.wait(timeout=1)
    thread.join()


def test_entries_are_released():
    """Test the registry drops keys nobody holds."""
    locks = KeyedLock()

    with locks.hold('u1', 'obj'):
        assert len(locks) == 1

    assert not locks


def test_released_on_error():
    """Test an exception inside the block releases the lock."""
    locks = KeyedLock()

    try:
        with locks.hold('u1', 'obj'):
            raise RuntimeError('boom')
    except RuntimeError:
        pass

    with locks.hold('u1', 'obj'):
        assert len(locks) == 1
