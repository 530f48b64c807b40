"""Disk Image Store.

Persistent tier of the image cache: decoded images are written to a cache
directory with LRU eviction against a byte budget. The index of cached
files is kept in a JSON metadata file so it survives restarts.

Thread Safety:
- Index operations use threading.Lock()
- Image files are written to a temporary name and moved into place, so a
  reader never sees a partial file
"""
from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from PySide6.QtCore import QStandardPaths
from PySide6.QtGui import QImage

from core.constants import (
    DEFAULT_DISK_CACHE_FORMAT,
    DEFAULT_DISK_CACHE_MB,
    DEFAULT_DISK_CACHE_QUALITY,
    DISK_CACHE_DIR_NAME,
)
from core.errors import StoreFailure
from core.logging.logger import get_logger, is_verbose_logging
from core.logging.tags import TAG_DISK_CACHE
from utils.image_utils import DecodeConfig, DEFAULT_DECODE_CONFIG

logger = get_logger(__name__)

CACHE_METADATA_FILE = "cache_metadata.json"
METADATA_VERSION = 1


def default_cache_dir() -> Path:
    """Platform cache location for the persistent tier."""
    base = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.CacheLocation)
    if not base:
        base = str(Path.home() / ".cache")
    return Path(base) / DISK_CACHE_DIR_NAME


@dataclass
class CachedFile:
    """Metadata for an image stored on disk."""
    key: str
    filename: str
    size_bytes: int
    last_accessed: float
    stored_at: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CachedFile":
        return cls(**data)


class DiskImageStore:
    """Thread-safe disk store for decoded images.

    Features:
    - LRU eviction when the total file size exceeds the budget
    - Persistent metadata for fast startup, rebuilt if missing/corrupt
    - Atomic file replacement on write
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        max_size_bytes: int = DEFAULT_DISK_CACHE_MB * 1024 * 1024,
        image_format: str = DEFAULT_DISK_CACHE_FORMAT,
        quality: int = DEFAULT_DISK_CACHE_QUALITY,
    ) -> None:
        """Initialize the store.

        Args:
            cache_dir: Directory for cached images
            max_size_bytes: Byte budget for all cached files
            image_format: Format name understood by QImage.save()
            quality: Compression quality passed to QImage.save()
        """
        self._cache_dir = Path(cache_dir) if cache_dir is not None else default_cache_dir()
        self._max_size_bytes = int(max_size_bytes)
        self._format = image_format.upper()
        self._extension = self._format.lower()
        self._quality = int(quality)
        self._lock = threading.Lock()

        self._index: Dict[str, CachedFile] = {}
        self._total_size_bytes = 0

        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._load_metadata()

        logger.debug("%s Initialized at %s with %d items, %d bytes",
                     TAG_DISK_CACHE, self._cache_dir, len(self._index), self._total_size_bytes)

    @property
    def cache_dir(self) -> Path:
        """Get the cache directory path."""
        return self._cache_dir

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    def _metadata_path(self) -> Path:
        return self._cache_dir / CACHE_METADATA_FILE

    def _filename_for(self, key: str) -> str:
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return f"{digest}.{self._extension}"

    def _load_metadata(self) -> None:
        """Load the index from disk, dropping entries whose file is gone."""
        meta_path = self._metadata_path()
        if not meta_path.exists():
            self._remove_orphans()
            return

        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("%s Failed to load metadata, starting empty: %s", TAG_DISK_CACHE, e)
            self._remove_orphans()
            return

        for item_data in data.get("items", []):
            try:
                cached = CachedFile.from_dict(item_data)
            except TypeError as e:
                logger.debug("%s Skipping malformed index entry: %s", TAG_DISK_CACHE, e)
                continue
            if (self._cache_dir / cached.filename).exists():
                self._index[cached.key] = cached
                self._total_size_bytes += cached.size_bytes

        self._remove_orphans()
        logger.debug("%s Loaded %d cached items from metadata", TAG_DISK_CACHE, len(self._index))

    def _remove_orphans(self) -> None:
        """Delete image files that are not in the index.

        The index stores keys, not the other way round, so a file without
        an index entry can never be served again.
        """
        known = {item.filename for item in self._index.values()}
        for path in self._cache_dir.glob(f"*.{self._extension}"):
            if path.name not in known:
                try:
                    path.unlink()
                except OSError as e:
                    logger.debug("%s Failed to delete orphan %s: %s", TAG_DISK_CACHE, path.name, e)

    def _save_metadata_locked(self) -> None:
        data = {
            "version": METADATA_VERSION,
            "items": [item.to_dict() for item in self._index.values()],
            "total_size_bytes": self._total_size_bytes,
            "saved_at": datetime.now().isoformat(),
        }
        meta_path = self._metadata_path()
        tmp_path = meta_path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, meta_path)
        except OSError as e:
            logger.warning("%s Failed to save metadata: %s", TAG_DISK_CACHE, e)

    def _drop_locked(self, cached: CachedFile) -> None:
        self._index.pop(cached.key, None)
        self._total_size_bytes -= cached.size_bytes
        try:
            (self._cache_dir / cached.filename).unlink(missing_ok=True)
        except OSError as e:
            logger.debug("%s Failed to delete %s: %s", TAG_DISK_CACHE, cached.filename, e)

    def _evict_lru_locked(self) -> None:
        """Evict least recently used files until the budget holds."""
        if self._total_size_bytes <= self._max_size_bytes:
            return
        items = sorted(self._index.values(), key=lambda x: x.last_accessed)
        evicted = 0
        while self._total_size_bytes > self._max_size_bytes and items:
            self._drop_locked(items.pop(0))
            evicted += 1
        if evicted:
            logger.debug("%s Evicted %d items (LRU)", TAG_DISK_CACHE, evicted)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._index

    def read(self, key: str, config: DecodeConfig = DEFAULT_DECODE_CONFIG) -> Optional[QImage]:
        """Load a stored image.

        Returns:
            QImage converted to config.image_format, or None if not stored

        Raises:
            StoreFailure: the file exists but cannot be decoded
        """
        with self._lock:
            cached = self._index.get(key)
            if cached is None:
                return None
            path = self._cache_dir / cached.filename
            if not path.exists():
                # File was deleted externally
                self._drop_locked(cached)
                self._save_metadata_locked()
                return None
            cached.last_accessed = time.time()
            self._save_metadata_locked()

        image = QImage()
        if not image.load(str(path)):
            with self._lock:
                if self._index.get(key) is cached:
                    self._drop_locked(cached)
                    self._save_metadata_locked()
            raise StoreFailure(key, f"could not decode {path.name}")

        if image.format() != config.image_format:
            image = image.convertToFormat(config.image_format)
        if is_verbose_logging():
            logger.debug("%s Hit: %s", TAG_DISK_CACHE, key)
        return image

    def write(self, key: str, resource: QImage) -> None:
        """Store an image, replacing any previous file for the key.

        Raises:
            StoreFailure: the resource is not a QImage or cannot be saved
        """
        if not isinstance(resource, QImage) or resource.isNull():
            raise StoreFailure(key, f"unsupported resource {type(resource).__name__}")

        filename = self._filename_for(key)
        final_path = self._cache_dir / filename
        tmp_path = self._cache_dir / f".{filename}.{threading.get_ident()}.tmp"

        if not resource.save(str(tmp_path), self._format, self._quality):
            tmp_path.unlink(missing_ok=True)
            raise StoreFailure(key, f"QImage.save failed ({self._format})")

        try:
            size_bytes = tmp_path.stat().st_size
            with self._lock:
                os.replace(tmp_path, final_path)
                old = self._index.get(key)
                if old is not None:
                    self._total_size_bytes -= old.size_bytes
                now = time.time()
                self._index[key] = CachedFile(
                    key=key,
                    filename=filename,
                    size_bytes=size_bytes,
                    last_accessed=now,
                    stored_at=now,
                )
                self._total_size_bytes += size_bytes
                self._evict_lru_locked()
                self._save_metadata_locked()
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreFailure(key, str(e)) from e

        if is_verbose_logging():
            logger.debug("%s Stored %s (%d bytes)", TAG_DISK_CACHE, key, size_bytes)

    def remove(self, key: str) -> bool:
        with self._lock:
            cached = self._index.get(key)
            if cached is None:
                return False
            self._drop_locked(cached)
            self._save_metadata_locked()
            return True

    def clear(self) -> None:
        """Delete every stored image."""
        with self._lock:
            for cached in list(self._index.values()):
                self._drop_locked(cached)
            self._total_size_bytes = 0
            self._save_metadata_locked()
        logger.info("%s Cleared", TAG_DISK_CACHE)

    def size_bytes(self) -> int:
        with self._lock:
            return self._total_size_bytes

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)
