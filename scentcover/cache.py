"""
Version-keyed LRU cache for filtered coverage queries.

Time-range and session queries union a subset of the per-source
snapshots. Their result only changes when the global version changes, so
entries are keyed by (version, query) and stale versions simply age out
of the LRU.
"""
import threading
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class VersionedQueryCache:
    """
    Thread-safe bounded LRU keyed by (version, query key).

    Usage:
        cache = VersionedQueryCache(max_size=64, name="coverage")
        result = cache.get_or_compute(version, ("session", "s1"), compute)
    """

    def __init__(self, max_size: int = 64, name: str = "queries"):
        self.max_size = max_size
        self.name = name

        self._entries: "OrderedDict[Tuple[int, Hashable], Any]" = OrderedDict()
        self._lock = threading.RLock()
        self._latest_version = -1

        # Metrics
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, version: int, key: Hashable) -> Optional[Any]:
        with self._lock:
            full_key = (version, key)
            if full_key not in self._entries:
                self._misses += 1
                return None
            self._entries.move_to_end(full_key)
            self._hits += 1
            return self._entries[full_key]

    def set(self, version: int, key: Hashable, value: Any) -> None:
        with self._lock:
            if version > self._latest_version:
                self._drop_older_than(version)
                self._latest_version = version

            full_key = (version, key)
            if full_key in self._entries:
                self._entries.move_to_end(full_key)
            else:
                while len(self._entries) >= self.max_size:
                    self._evict_oldest()
            self._entries[full_key] = value

    def get_or_compute(self, version: int, key: Hashable, factory: Callable[[], Any]) -> Any:
        """
        Return the cached value for (version, key), computing it on a miss.

        The factory runs outside the lock; two racing readers may both
        compute, and the later write wins with an identical value.
        """
        value = self.get(version, key)
        if value is not None:
            return value
        value = factory()
        self.set(version, key, value)
        return value

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            logger.debug(f"Cache '{self.name}' cleared: {count} entries removed")
            return count

    def _drop_older_than(self, version: int) -> None:
        stale = [k for k in self._entries if k[0] < version]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug(f"Cache '{self.name}' dropped {len(stale)} entries below version {version}")

    def _evict_oldest(self) -> None:
        if self._entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self._evictions += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                'name': self.name,
                'size': len(self._entries),
                'max_size': self.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': round(self._hits / total, 4) if total else 0.0,
                'evictions': self._evictions,
                'latest_version': self._latest_version,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
