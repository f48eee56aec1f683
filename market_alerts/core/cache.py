"""In-process key-value cache with per-entry expiry."""

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from market_alerts.core.logger import logger

_MISSING = object()

class TTLCache:
    """A key -> (value, insertion time) map whose entries expire on read.

    Expired entries are dropped lazily the next time they are looked up; there
    is no background sweeper.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize the cache.

        Args:
            ttl_seconds (float): Lifetime of an entry. ``0`` disables caching.
            clock (Callable[[], float]): Monotonic time source in seconds.
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value for key, or None when absent or expired.

        Args:
            key (str): The cache key.
        """
        value = self._lookup(key)
        return None if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return _MISSING
            value, inserted_at = entry
            if self._clock() - inserted_at >= self.ttl_seconds:
                del self._entries[key]
                logger.debug(f"TTLCache: expired key {key}")
                return _MISSING
            return value

    def set(self, key: str, value: Any) -> None:
        """
        Store value under key, stamping it with the current time.

        Args:
            key (str): The cache key.
            value (Any): The value to store.
        """
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (value, self._clock())

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        """Return the cached value for key, computing and storing it on a miss.

        A ``None`` result is cached like any other value.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value
        value = compute()
        self.set(key, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
