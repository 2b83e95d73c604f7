"""Sliding-window timestamp counters backing the IP ledger and rate limiter.

``InMemoryCounterStore`` keeps state per process, so each instance of a
multi-instance deployment throttles independently. A shared backend (for
example a key-value cache) can implement ``CounterStore`` instead.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from threading import Lock
from typing import Protocol


class CounterStore(Protocol):
    async def count_since(self, key: str, since: datetime) -> int:
        """Drop timestamps at or before ``since`` and return how many remain."""
        ...

    async def record(self, key: str, at: datetime) -> None: ...

    async def clear(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class InMemoryCounterStore:
    def __init__(self) -> None:
        self._entries: dict[str, deque[datetime]] = {}
        self._lock = Lock()

    async def count_since(self, key: str, since: datetime) -> int:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return 0
            while entry and entry[0] <= since:
                entry.popleft()
            if not entry:
                del self._entries[key]
                return 0
            return len(entry)

    async def record(self, key: str, at: datetime) -> None:
        with self._lock:
            entry = self._entries.setdefault(key, deque())
            if entry and at < entry[-1]:
                entry.append(at)
                self._entries[key] = deque(sorted(entry))
            else:
                entry.append(at)

    async def clear(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [key for key in self._entries if key.startswith(prefix)]
