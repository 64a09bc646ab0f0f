"""Per-object mutual exclusion for lifecycle transitions."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class KeyedLock:
    """Registry of locks keyed by ``(user_id, object_id)``.

    Operations on the same key are serialized; different keys never
    contend. Entries are dropped once no thread holds or waits on them, so
    the registry stays proportional to in-flight operations.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._guard = threading.Lock()
        self._entries: dict[tuple[str, str], _Entry] = {}

    @contextmanager
    def hold(self, user_id: str, object_id: str) -> Iterator[None]:
        """Hold the lock for one object for the duration of the block.

        Args:
            user_id: Owner namespace.
            object_id: Object being mutated.

        Yields:
            Nothing; the lock is released on exit.
        """
        key = (user_id, object_id)
        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if not entry.holders:
                    del self._entries[key]

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._entries)
