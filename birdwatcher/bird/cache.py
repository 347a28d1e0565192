"""
Query result caching for backend output.

Entries expire after the backend's configured TTL. A zero TTL disables
caching entirely.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from cachetools import TTLCache


@dataclass(frozen=True)
class CacheEntry:
    """Output of one backend query and when it was produced."""

    lines: Tuple[str, ...]
    cached_at: datetime


class QueryCache:
    """TTL cache keyed by the backend query string"""

    def __init__(self, ttl: timedelta, max_size: int = 1024):
        self.ttl = ttl
        self._lock = threading.Lock()
        self._cache: Optional[TTLCache] = None
        if ttl.total_seconds() > 0 and max_size > 0:
            self._cache = TTLCache(maxsize=max_size, ttl=ttl.total_seconds())

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    def get(self, command: str) -> Optional[CacheEntry]:
        """Return the cached entry for `command` if it has not expired"""
        if self._cache is None:
            return None
        with self._lock:
            return self._cache.get(command)

    def put(self, command: str, lines: Tuple[str, ...]) -> CacheEntry:
        """Store backend output and return the new entry"""
        entry = CacheEntry(lines=tuple(lines), cached_at=datetime.now(timezone.utc))
        if self._cache is not None:
            with self._lock:
                self._cache[command] = entry
        return entry

    def clear(self) -> None:
        """Drop every cached entry"""
        if self._cache is not None:
            with self._lock:
                self._cache.clear()
