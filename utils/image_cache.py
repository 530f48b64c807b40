"""
Two-tier image cache.

MemoryImageCache is an LRU keyed by string with a byte budget; it is the
fast tier and is always consulted synchronously. ImageCache layers an
optional persistent store (see utils.disk_cache) underneath it. Store
failures never escape ImageCache: reads degrade to a miss and writes to
a no-op.
"""
from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional

from core.constants import DEFAULT_MEMORY_CACHE_MB, DEFAULT_MEMORY_CACHE_ITEMS
from core.logging.logger import get_logger, is_verbose_logging, is_perf_metrics_enabled
from core.logging.tags import TAG_CACHE, TAG_DISK_CACHE, TAG_PERF
from utils.image_utils import DecodeConfig, DEFAULT_DECODE_CONFIG, estimate_size

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """A resource held by the memory tier."""
    key: str
    resource: Any
    size_bytes: int


class MemoryImageCache:
    """
    LRU cache for decoded images.

    Features:
    - Evicts least recently used entries until the byte budget (and the
      optional item cap) holds; this happens before put() returns
    - Stores references, not copies
    - Thread-safe
    - Hit/miss/eviction counters for PERF summaries
    """

    def __init__(self, max_memory_bytes: int = DEFAULT_MEMORY_CACHE_MB * 1024 * 1024,
                 max_items: int = DEFAULT_MEMORY_CACHE_ITEMS):
        """
        Initialize the memory tier.

        Args:
            max_memory_bytes: Byte budget for all entries combined
            max_items: Maximum number of entries, 0 for no item cap
        """
        if max_memory_bytes < 0:
            raise ValueError("max_memory_bytes must be >= 0")
        self.max_memory_bytes = int(max_memory_bytes)
        self.max_items = max(0, int(max_items))

        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._current_memory = 0
        self._hit_count = 0
        self._miss_count = 0
        self._evict_count = 0
        self._lock = threading.RLock()

        logger.info("%s MemoryImageCache initialized: max_items=%s, max_memory=%.2fMB",
                    TAG_CACHE, self.max_items or "unbounded",
                    self.max_memory_bytes / (1024 * 1024))

    def get(self, key: str) -> Optional[Any]:
        """
        Get a resource from the cache.

        Args:
            key: Cache key

        Returns:
            The cached resource, None on a miss
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                self._cache.move_to_end(key)
                self._hit_count += 1
                if is_verbose_logging():
                    logger.debug("%s Cache hit: %s", TAG_CACHE, key)
                return entry.resource

            self._miss_count += 1
            if is_verbose_logging():
                logger.debug("%s Cache miss: %s", TAG_CACHE, key)
            return None

    def put(self, key: str, resource: Any) -> None:
        """
        Add a resource to the cache, replacing any entry under the same key.

        Args:
            key: Cache key
            resource: Resource to cache
        """
        size = estimate_size(resource)
        with self._lock:
            old = self._cache.pop(key, None)
            if old is not None:
                self._current_memory -= old.size_bytes

            self._cache[key] = CacheEntry(key, resource, size)
            self._current_memory += size

            while self._should_evict_locked():
                self._evict_oldest_locked()

            if key not in self._cache:
                logger.debug("%s Entry %s (%d bytes) exceeds budget of %d bytes, not cached",
                             TAG_CACHE, key, size, self.max_memory_bytes)
            elif is_verbose_logging():
                logger.debug("%s Cached: %s (items=%d, memory=%.2fMB)", TAG_CACHE, key,
                             len(self._cache), self._current_memory / (1024 * 1024))

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._cache

    def remove(self, key: str) -> bool:
        """
        Remove an entry from the cache.

        Returns:
            True if entry was removed, False if not found
        """
        with self._lock:
            entry = self._cache.pop(key, None)
            if entry is None:
                return False
            self._current_memory -= entry.size_bytes
            return True

    def clear(self) -> None:
        """Clear all cached resources."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._current_memory = 0
        logger.info("%s Memory cache cleared: %d entries removed", TAG_CACHE, count)

    def size(self) -> int:
        """Get number of cached entries."""
        with self._lock:
            return len(self._cache)

    def memory_usage(self) -> int:
        """Get estimated memory usage in bytes."""
        with self._lock:
            return self._current_memory

    def get_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        with self._lock:
            total_accesses = self._hit_count + self._miss_count
            hit_rate = (self._hit_count / total_accesses * 100.0) if total_accesses > 0 else 0.0
            return {
                'item_count': len(self._cache),
                'max_items': self.max_items,
                'memory_usage_bytes': self._current_memory,
                'max_memory_bytes': self.max_memory_bytes,
                'hits': self._hit_count,
                'misses': self._miss_count,
                'hit_rate_percent': hit_rate,
                'evictions': self._evict_count,
            }

    def _should_evict_locked(self) -> bool:
        """Check if eviction is needed (caller holds lock)."""
        if not self._cache:
            return False
        if self.max_items and len(self._cache) > self.max_items:
            return True
        return self._current_memory > self.max_memory_bytes

    def _evict_oldest_locked(self) -> None:
        """Evict the least recently used entry (caller holds lock)."""
        key, entry = self._cache.popitem(last=False)
        self._current_memory -= entry.size_bytes
        self._evict_count += 1
        if is_verbose_logging():
            logger.debug("%s Evicted from cache: %s", TAG_CACHE, key)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: str) -> bool:
        return self.contains(key)

    def __str__(self) -> str:
        return (f"MemoryImageCache(items={len(self)}, "
                f"memory={self.memory_usage()}/{self.max_memory_bytes} bytes)")


class ImageCache:
    """
    Memory tier plus an optional persistent tier.

    The persistent tier must provide read(key, config), write(key, resource)
    and clear(); utils.disk_cache.DiskImageStore is the bundled one.
    get_persistent() blocks on I/O and must not be called on the UI thread.
    """

    def __init__(self, memory: Optional[MemoryImageCache] = None, store: Any = None):
        self.memory = memory if memory is not None else MemoryImageCache()
        self.store = store

    @property
    def has_store(self) -> bool:
        return self.store is not None

    def get_memory(self, key: str) -> Optional[Any]:
        """Synchronous memory-tier lookup."""
        return self.memory.get(key)

    def get_persistent(self, key: str, config: DecodeConfig = DEFAULT_DECODE_CONFIG) -> Optional[Any]:
        """
        Persistent-tier lookup.

        Returns:
            The stored resource, None on a miss or when the store fails

        Raises:
            MemoryError: decoding the stored image exhausted memory
        """
        if self.store is None:
            return None
        try:
            return self.store.read(key, config)
        except MemoryError:
            raise
        except Exception as e:
            logger.warning("%s Read failed for %s, treating as miss: %s", TAG_DISK_CACHE, key, e)
            return None

    def put(self, key: str, resource: Any, persist: bool = True) -> None:
        """
        Insert into the memory tier and, if persist is set, the persistent tier.

        Args:
            key: Cache key
            resource: Resource to cache; None is ignored
            persist: Also write to the persistent tier
        """
        if resource is None:
            return
        self.memory.put(key, resource)
        if persist and self.store is not None:
            try:
                self.store.write(key, resource)
            except MemoryError:
                raise
            except Exception as e:
                logger.warning("%s Write failed for %s, skipping: %s", TAG_DISK_CACHE, key, e)

    def put_memory(self, key: str, resource: Any) -> None:
        """Insert into the memory tier only."""
        if resource is not None:
            self.memory.put(key, resource)

    def clear(self) -> None:
        """Drop the memory tier; the persistent tier is left untouched."""
        self.memory.clear()

    def clear_persistent(self) -> None:
        if self.store is None:
            return
        try:
            self.store.clear()
        except Exception as e:
            logger.warning("%s Clear failed: %s", TAG_DISK_CACHE, e)

    def get_stats(self) -> dict:
        stats = self.memory.get_stats()
        if is_perf_metrics_enabled():
            logger.info("%s ImageCache items=%d hits=%d misses=%d hit_rate=%.1f%% evictions=%d",
                        TAG_PERF, stats['item_count'], stats['hits'], stats['misses'],
                        stats['hit_rate_percent'], stats['evictions'])
        return stats
