"""TTL + max-entry cache for Figma API responses.

Keys are ``(operation, file_key, node_id, depth, format, scale)`` tuples.
Entries are written only after a successful call, so failures are never
cached. Access is guarded by a ``threading.Lock`` so one cache may be shared
by overlapping pipeline invocations, including ones on different loops.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger("design_context.integrations.figma")

CacheKey = Tuple[Hashable, ...]


def make_cache_key(
    operation: str,
    file_key: str,
    node_id: Optional[str] = None,
    depth: Optional[int] = None,
    fmt: Optional[str] = None,
    scale: Optional[float] = None,
    *extra: Hashable,
) -> CacheKey:
    return (operation, file_key, node_id, depth, fmt, scale, *extra)


class ResponseCache:
    """Least-recently-used cache with a per-entry time-to-live.

    Args:
        ttl_seconds: Entry lifetime. 0 disables caching.
        max_entries: Eviction ceiling; the least recently used entry goes first.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: CacheKey) -> Optional[Any]:
        """Return a deep copy of the cached value, or None on miss/expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
        logger.debug(f"cache hit: {key}")
        return copy.deepcopy(value)

    def set(self, key: CacheKey, value: Any) -> None:
        if self._ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl, copy.deepcopy(value))
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    def clear(self) -> int:
        """Drop every entry. Returns how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info(f"cache cleared: {removed} entries removed")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }
