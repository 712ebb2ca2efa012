"""
Small in-process TTL cache for read-heavy endpoints (subscriber count, stats).
"""

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """Thread-safe key/value cache where each entry expires after its own TTL"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Tuple[Any, float]]:
        """
        Return (value, expires_at) for a live entry, or None.
        """
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            if self._clock() >= item[1]:
                del self._data[key]
                return None
            return item

    def set(self, key: Hashable, value: Any, ttl_seconds: float) -> float:
        """Store a value and return its expiry (epoch seconds)"""
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            self._data[key] = (value, expires_at)
        return expires_at

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._data.items() if now >= expires_at]
            for key in expired:
                del self._data[key]
        return len(expired)


SUBSCRIBER_COUNT_KEY = "subscriber_count"

count_cache = TTLCache()
stats_cache = TTLCache()


def invalidate_subscriber_count() -> None:
    """Drop the cached count after any subscription write"""
    count_cache.delete(SUBSCRIBER_COUNT_KEY)


def clear_caches() -> None:
    count_cache.clear()
    stats_cache.clear()
