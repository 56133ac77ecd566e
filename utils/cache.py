"""In-memory TTL cache shared by the dashboard endpoint and the client hooks.

Keys are usually tuples such as ``("residents", frozenset(params))`` so a
whole family of entries can be dropped at once:

    cache = TTLCache(maxsize=32, ttl_seconds=300)
    stats = cache.get_or_set(("dashboard", scope, None), compute_stats)
    cache.invalidate(("dashboard",))        # after any write

Entries past their deadline are treated as absent.  When the cache is full
the entry with the nearest deadline makes room for the new one.
"""

import threading
import time
from typing import Any, Callable, NamedTuple


class _Entry(NamedTuple):
    value: Any
    deadline: float


def _matches(key: Any, prefix: tuple) -> bool:
    if isinstance(key, tuple):
        return key[:len(prefix)] == prefix
    # A bare key belongs to the family named by a one-element prefix
    return len(prefix) == 1 and key == prefix[0]


class TTLCache:
    """Thread-safe mapping whose entries expire ``ttl_seconds`` after being set."""

    def __init__(self, maxsize: int = 128, ttl_seconds: float = 300.0) -> None:
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self._entries: dict[Any, _Entry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def _live(self, key: Any) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.deadline < time.monotonic():
            del self._entries[key]
            return None
        return entry

    def get(self, key: Any) -> Any | None:
        """The value stored under *key*, or ``None`` when missing or expired."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: Any, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.maxsize:
                nearest = min(self._entries, key=lambda k: self._entries[k].deadline)
                del self._entries[nearest]
            self._entries[key] = _Entry(value, time.monotonic() + ttl)

    def get_or_set(self, key: Any, factory: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on a miss.

        *factory* runs outside the lock; a ``None`` result is not stored.
        """
        value = self.get(key)
        if value is not None:
            return value
        value = factory()
        if value is not None:
            self.set(key, value)
        return value

    def delete(self, key: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate(self, prefix: tuple) -> int:
        """Drop every key in the family *prefix*; returns how many went."""
        with self._lock:
            doomed = [k for k in self._entries if _matches(k, prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        """Empty the cache and zero the hit and miss counters."""
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = 0

    def stats(self) -> dict[str, int]:
        """``hits``, ``misses`` and the number of live entries."""
        with self._lock:
            for key in list(self._entries):
                self._live(key)
            return {"hits": self._hits, "misses": self._misses, "size": len(self._entries)}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
