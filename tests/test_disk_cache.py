"""Unit tests for DiskImageStore.

Tests cover:
- Write/read round trip and pixel format conversion
- Metadata persistence across instances
- LRU eviction against the byte budget
- Corrupt and missing files
"""
import json
from types import SimpleNamespace

import pytest
from PySide6.QtGui import QColor, QImage

from core.errors import StoreFailure
from utils.disk_cache import CACHE_METADATA_FILE, CachedFile, DiskImageStore
from utils.image_utils import DecodeConfig


def _solid(color=QColor(0, 128, 255), size=32) -> QImage:
    image = QImage(size, size, QImage.Format.Format_ARGB32)
    image.fill(color)
    return image


@pytest.fixture
def store(tmp_path):
    return DiskImageStore(cache_dir=tmp_path / "cache", max_size_bytes=10 * 1024 * 1024)


class TestCachedFile:
    def test_dict_round_trip(self):
        cached = CachedFile(key="k", filename="f.png", size_bytes=10,
                            last_accessed=1.0, stored_at=1.0)
        assert CachedFile.from_dict(cached.to_dict()) == cached


class TestDiskImageStore:
    """Tests for the persistent tier."""

    def test_read_missing_returns_none(self, store):
        assert store.read("nothing") is None
        assert store.has("nothing") is False

    def test_write_then_read(self, store):
        store.write("a", _solid())
        assert store.has("a")
        image = store.read("a")
        assert isinstance(image, QImage)
        assert image.width() == 32
        assert image.pixelColor(5, 5) == QColor(0, 128, 255)

    def test_read_converts_format(self, store):
        store.write("a", _solid())
        config = DecodeConfig(image_format=QImage.Format.Format_RGB32)
        image = store.read("a", config)
        assert image.format() == QImage.Format.Format_RGB32

    def test_index_survives_restart(self, tmp_path):
        """A new instance on the same directory serves earlier writes."""
        cache_dir = tmp_path / "cache"
        first = DiskImageStore(cache_dir=cache_dir)
        first.write("persisted", _solid())

        second = DiskImageStore(cache_dir=cache_dir)
        assert second.has("persisted")
        assert second.read("persisted") is not None
        assert (cache_dir / CACHE_METADATA_FILE).exists()

    def test_corrupt_metadata_starts_empty(self, tmp_path):
        cache_dir = tmp_path / "cache"
        first = DiskImageStore(cache_dir=cache_dir)
        first.write("a", _solid())
        (cache_dir / CACHE_METADATA_FILE).write_text("{not json", encoding="utf-8")

        second = DiskImageStore(cache_dir=cache_dir)
        assert len(second) == 0
        # Image files with no index entry are removed
        assert list(cache_dir.glob("*.png")) == []

    def test_eviction_keeps_budget(self, tmp_path):
        """Writing past the budget evicts the least recently used file."""
        sample = DiskImageStore(cache_dir=tmp_path / "sample")
        sample.write("sample", _solid())
        file_size = sample.size_bytes()

        store = DiskImageStore(cache_dir=tmp_path / "cache", max_size_bytes=file_size * 2)
        store.write("a", _solid())
        store.write("b", _solid())
        store.write("c", _solid())

        assert store.size_bytes() <= file_size * 2
        assert not store.has("a")
        assert store.has("b") and store.has("c")

    def test_rewrite_same_key(self, store):
        store.write("a", _solid(QColor(255, 0, 0)))
        store.write("a", _solid(QColor(0, 255, 0)))
        assert len(store) == 1
        assert store.read("a").pixelColor(0, 0) == QColor(0, 255, 0)

    def test_corrupt_file_raises_and_drops_entry(self, store):
        store.write("a", _solid())
        path = store.cache_dir / store._filename_for("a")
        path.write_bytes(b"definitely not a png")

        with pytest.raises(StoreFailure):
            store.read("a")
        assert not store.has("a")

    def test_externally_deleted_file_is_miss(self, store):
        store.write("a", _solid())
        (store.cache_dir / store._filename_for("a")).unlink()
        assert store.read("a") is None
        assert not store.has("a")

        data = json.loads((store.cache_dir / CACHE_METADATA_FILE).read_text(encoding="utf-8"))
        assert data["items"] == []
        assert data["total_size_bytes"] == 0

    def test_read_recency_survives_restart(self, tmp_path, monkeypatch):
        """A read refreshes the entry on disk, so a new instance evicts the right file."""
        cache_dir = tmp_path / "cache"
        ticks = [0.0]

        def clock():
            ticks[0] += 100.0
            return ticks[0]

        monkeypatch.setattr("utils.disk_cache.time", SimpleNamespace(time=clock))

        first = DiskImageStore(cache_dir=cache_dir)
        first.write("a", _solid())
        first.write("b", _solid())
        assert first.read("a") is not None

        data = json.loads((cache_dir / CACHE_METADATA_FILE).read_text(encoding="utf-8"))
        accessed = {item["key"]: item["last_accessed"] for item in data["items"]}
        assert accessed == {"a": 300.0, "b": 200.0}

        item_size = first.size_bytes() // 2
        second = DiskImageStore(cache_dir=cache_dir, max_size_bytes=item_size * 2)
        second.write("c", _solid())
        assert second.has("a")
        assert not second.has("b")
        assert second.has("c")

    def test_write_rejects_non_images(self, store):
        with pytest.raises(StoreFailure):
            store.write("a", b"raw bytes")
        with pytest.raises(StoreFailure):
            store.write("b", QImage())

    def test_remove_and_clear(self, store):
        store.write("a", _solid())
        store.write("b", _solid())
        assert store.remove("a") is True
        assert store.remove("a") is False
        store.clear()
        assert len(store) == 0
        assert store.size_bytes() == 0
        data = json.loads((store.cache_dir / CACHE_METADATA_FILE).read_text(encoding="utf-8"))
        assert data["items"] == []
