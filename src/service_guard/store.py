"""Shared record of when each target was last recovered."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Waiting writers take priority over new readers.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class LastActionStore:
    """Thread-safe map of target name to time of last recovery attempt.

    Names are case-insensitive. One store is shared by every monitor of a
    supervisor and lives as long as the supervisor does.
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._actions: dict[str, float] = {}

    @staticmethod
    def _key(name: str) -> str:
        return name.casefold()

    def get(self, name: str) -> Optional[float]:
        """Return the last action timestamp for a target, or None."""
        with self._lock.read():
            return self._actions.get(self._key(name))

    def upsert(self, name: str, timestamp: float):
        """Insert or replace the last action timestamp for a target."""
        with self._lock.write():
            self._actions[self._key(name)] = timestamp

    def remove(self, name: str):
        """Forget a target. Removing an unknown name is a no-op."""
        with self._lock.write():
            self._actions.pop(self._key(name), None)

    def snapshot(self) -> dict[str, float]:
        """Copy of all recorded actions, keyed by folded name."""
        with self._lock.read():
            return dict(self._actions)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._actions)
