"""
TTL result cache for search responses.

Entries are keyed by a canonical JSON rendering of the raw request, so
requests differing only in object key order share an entry. Expired entries
are swept after every put; there is no background timer.
"""

import copy
import json
import threading
import time
from typing import Any, Callable, Dict, Optional

from .models import CacheEntry, SearchResponse

DEFAULT_TTL_SECONDS = 300.0


def cache_key(raw_query: Any) -> str:
    """Stable serialization of a raw request."""
    return json.dumps(raw_query, sort_keys=True, separators=(',', ':'), default=str)


class ResultCache:
    """Memoizes search responses for a fixed time-to-live."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl_seconds: Maximum entry age before it is treated as stale
            clock: Monotonic time source in seconds
        """
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, raw_query: Any) -> Optional[SearchResponse]:
        """Return a copy of the cached response, or None on a miss or stale entry."""
        entry = self._entries.get(cache_key(raw_query))
        if entry is None or self._expired(entry, self.clock()):
            return None
        return copy.deepcopy(entry.response)

    def put(self, raw_query: Any, response: SearchResponse) -> None:
        """Store a copy of a response, then sweep expired entries."""
        self._entries[cache_key(raw_query)] = CacheEntry(copy.deepcopy(response), self.clock())
        self.sweep()

    def sweep(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        with self._lock:
            stale = [key for key, entry in list(self._entries.items()) if self._expired(entry, now)]
            for key in stale:
                self._entries.pop(key, None)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds
