"""Thread-safe TTL cache for analysis results."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


@dataclass(slots=True)
class _Entry:
    value: Any
    stored_at: datetime
    recipient: str | None


class AnalysisCache:
    """Keyed by issue key. Reads and writes hold a lock so a write is an atomic replace.

    ``clock`` returns the current aware datetime; tests inject a fixed one.
    """

    def __init__(self, ttl_minutes: float = 120, clock: Callable[[], datetime] | None = None):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, now: datetime | None = None) -> Any | None:
        now = now or self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now - entry.stored_at >= self.ttl:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def put(self, key: str, value: Any, *, recipient: str | None = None, now: datetime | None = None) -> None:
        now = now or self._clock()
        with self._lock:
            self._entries[key] = _Entry(value=value, stored_at=now, recipient=recipient)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_recipient(self, recipient: str) -> int:
        """Drop every result whose workload decision was made for ``recipient``."""
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.recipient == recipient]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def set_ttl(self, ttl_minutes: float) -> None:
        self.ttl = timedelta(minutes=ttl_minutes)

    def stats(self) -> dict[str, float]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / lookups if lookups else 0.0,
            }
