"""In-memory TTL cache for short-lived read projections."""

import copy
import threading
import time
from typing import Any, Dict, Optional, Tuple


class TTLCache:
    """Thread-safe dict cache with a single TTL and bounded size.

    Values are deep-copied on retrieval so callers cannot mutate cached state.
    """

    def __init__(self, ttl_seconds: float, max_size: int = 32) -> None:
        self._store: Dict[str, Tuple[Any, float]] = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._max_size = max_size

    def get(self, key: str) -> Optional[Any]:
        """Return a copy of the cached value or ``None`` if expired or missing."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.monotonic() > expires_at:
                del self._store[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._store[key] = (value, time.monotonic() + self._ttl)
            if len(self._store) > self._max_size:
                oldest = min(self._store, key=lambda k: self._store[k][1])
                del self._store[oldest]

    def invalidate_all(self) -> None:
        """Flush the entire cache."""
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
