"""Shared constants for the image worker."""

from .sizes import (
    BYTES_PER_PIXEL,
    DEFAULT_DISK_CACHE_FORMAT,
    DEFAULT_DISK_CACHE_MB,
    DEFAULT_DISK_CACHE_QUALITY,
    DEFAULT_IO_WORKERS,
    DEFAULT_MEMORY_CACHE_ITEMS,
    DEFAULT_MEMORY_CACHE_MB,
    DISK_CACHE_DIR_NAME,
)
from .timing import FADE_IN_TIME_MS
