"""In-memory TTL cache of pipeline results, keyed by a content hash."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Union

from piilens.models.schemas import CacheStatsResponse, DetectionResult

logger = logging.getLogger(__name__)


def content_hash(source: Union[str, bytes]) -> str:
    """32-bit rolling hash of *source* combined with its length.

    ``h = (h * 31 + c) mod 2**32`` over code points (str) or byte values.
    Collisions are possible; the length suffix makes them rarer.
    """
    values = source if isinstance(source, (bytes, bytearray)) else map(ord, source)
    h = 0
    for c in values:
        h = (h * 31 + c) & 0xFFFFFFFF
    return f"{h:08x}:{len(source)}"


class ResultCache:
    """Thread-safe TTL cache.  Stores and returns deep copies."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, DetectionResult]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[DetectionResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            stored_at, result = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return result.model_copy(deep=True)

    def put(self, key: str, result: DetectionResult) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), result.model_copy(deep=True))

    def purge_expired(self) -> int:
        """Drop stale entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (t, _) in self._entries.items() if now - t > self.ttl_seconds]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Purged %d expired cache entries", len(stale))
        return len(stale)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        logger.info("Result cache cleared (%d entries)", count)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStatsResponse:
        with self._lock:
            return CacheStatsResponse(
                size=len(self._entries),
                ttl_seconds=self.ttl_seconds,
                hits=self._hits,
                misses=self._misses,
            )
