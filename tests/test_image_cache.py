"""Unit tests for the two-tier image cache.

Tests cover:
- Memory tier round trip and LRU order
- Byte budget and item cap eviction
- Persistent tier fallbacks and failures
"""
import threading

import pytest
from PySide6.QtGui import QImage

from tests._worker_fakes import DictStore
from utils.image_cache import ImageCache, MemoryImageCache
from utils.image_utils import DecodeConfig, estimate_size


class TestMemoryImageCache:
    """Tests for the memory tier."""

    def test_put_then_get_returns_same_object(self):
        """A put resource comes back by reference."""
        cache = MemoryImageCache(max_memory_bytes=1024)
        resource = b"x" * 10
        cache.put("a", resource)
        assert cache.get("a") is resource

    def test_miss_returns_none(self):
        cache = MemoryImageCache(max_memory_bytes=1024)
        assert cache.get("missing") is None
        assert cache.get_stats()['misses'] == 1

    def test_replace_same_key_updates_memory(self):
        """Replacing an entry does not double count its size."""
        cache = MemoryImageCache(max_memory_bytes=1024)
        cache.put("a", b"x" * 100)
        cache.put("a", b"y" * 40)
        assert cache.memory_usage() == 40
        assert len(cache) == 1

    def test_budget_overflow_evicts_lru(self):
        """Exceeding the budget by one byte evicts the least recently used entry."""
        cache = MemoryImageCache(max_memory_bytes=300)
        cache.put("a", b"a" * 100)
        cache.put("b", b"b" * 100)
        cache.put("c", b"c" * 100)
        assert cache.memory_usage() == 300

        cache.put("d", b"d")
        assert "a" not in cache
        assert cache.contains("b") and cache.contains("c") and cache.contains("d")
        assert cache.memory_usage() <= 300
        assert cache.get_stats()['evictions'] == 1

    def test_get_refreshes_recency(self):
        """A read moves the entry to the most recently used end."""
        cache = MemoryImageCache(max_memory_bytes=200)
        cache.put("a", b"a" * 100)
        cache.put("b", b"b" * 100)
        cache.get("a")
        cache.put("c", b"c" * 100)
        assert "a" in cache
        assert "b" not in cache

    def test_item_cap(self):
        cache = MemoryImageCache(max_memory_bytes=1024 * 1024, max_items=2)
        for key in ("a", "b", "c"):
            cache.put(key, key.encode())
        assert len(cache) == 2
        assert "a" not in cache

    def test_oversized_entry_not_kept(self):
        """An entry larger than the whole budget is evicted immediately."""
        cache = MemoryImageCache(max_memory_bytes=50)
        cache.put("small", b"s" * 10)
        cache.put("huge", b"h" * 100)
        assert "huge" not in cache
        assert cache.memory_usage() <= 50

    def test_remove_and_clear(self):
        cache = MemoryImageCache(max_memory_bytes=1024)
        cache.put("a", b"a")
        cache.put("b", b"b")
        assert cache.remove("a") is True
        assert cache.remove("a") is False
        cache.clear()
        assert len(cache) == 0
        assert cache.memory_usage() == 0

    def test_negative_budget_rejected(self):
        with pytest.raises(ValueError):
            MemoryImageCache(max_memory_bytes=-1)

    def test_qimage_size_estimate(self):
        image = QImage(10, 20, QImage.Format.Format_ARGB32)
        assert estimate_size(image) == 10 * 20 * 4
        assert estimate_size(QImage()) == 0

    def test_hit_rate(self):
        cache = MemoryImageCache(max_memory_bytes=1024)
        cache.put("a", b"a")
        cache.get("a")
        cache.get("b")
        stats = cache.get_stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['hit_rate_percent'] == pytest.approx(50.0)

    def test_concurrent_puts_respect_budget(self):
        """Parallel writers never leave the cache over budget."""
        cache = MemoryImageCache(max_memory_bytes=1000)

        def writer(prefix):
            for i in range(200):
                cache.put(f"{prefix}{i}", b"x" * 37)

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.memory_usage() <= 1000
        assert cache.memory_usage() == 37 * len(cache)


class TestImageCache:
    """Tests for the combined memory + persistent cache."""

    def test_put_writes_both_tiers(self):
        store = DictStore()
        cache = ImageCache(MemoryImageCache(1024), store)
        cache.put("k", b"data")
        assert cache.get_memory("k") == b"data"
        assert store.data["k"] == b"data"

    def test_put_without_persist_skips_store(self):
        store = DictStore()
        cache = ImageCache(MemoryImageCache(1024), store)
        cache.put("k", b"data", persist=False)
        assert store.writes == 0
        assert cache.get_memory("k") == b"data"

    def test_put_none_is_ignored(self):
        cache = ImageCache(MemoryImageCache(1024), DictStore())
        cache.put("k", None)
        assert cache.get_memory("k") is None

    def test_get_persistent_reads_store(self):
        store = DictStore()
        store.data["k"] = b"stored"
        cache = ImageCache(MemoryImageCache(1024), store)
        assert cache.get_persistent("k", DecodeConfig()) == b"stored"

    def test_get_persistent_without_store(self):
        cache = ImageCache(MemoryImageCache(1024))
        assert cache.has_store is False
        assert cache.get_persistent("k") is None

    def test_store_failures_degrade(self):
        """Read failures become misses and write failures are skipped."""
        cache = ImageCache(MemoryImageCache(1024), DictStore(fail=True))
        cache.put("k", b"data")
        assert cache.get_memory("k") == b"data"
        assert cache.get_persistent("k") is None

    def test_clear_keeps_persistent_tier(self):
        store = DictStore()
        cache = ImageCache(MemoryImageCache(1024), store)
        cache.put("k", b"data")
        cache.clear()
        assert cache.get_memory("k") is None
        assert "k" in store.data

        cache.clear_persistent()
        assert store.data == {}
