"""Process-local locks keyed by operation id or by user."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Hashable, Iterator


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLock:
    """A mutex per key, created on first use and dropped when nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    @contextmanager
    def locked(self, key: Hashable, *, blocking: bool = True) -> Iterator[bool]:
        """Hold the lock for `key`; yields False if non-blocking and already held."""
        entry = self._checkout(key)
        acquired = entry.lock.acquire(blocking)
        try:
            yield acquired
        finally:
            if acquired:
                entry.lock.release()
            self._checkin(key, entry)

    def is_locked(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._entries.get(key)
            return entry is not None and entry.lock.locked()


# Shared by the snapshot store and rollback engine within one process.
snapshot_locks = KeyedLock()
rollback_locks = KeyedLock()
