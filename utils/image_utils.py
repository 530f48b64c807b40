"""
Resource helpers shared by the cache tiers and producers.

Resources are usually QImage (safe to create off the UI thread) but the
cache accepts any object; sizes and validity fall back to duck typing.
"""
from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any

from PySide6.QtGui import QImage, QPixmap

from core.constants import BYTES_PER_PIXEL


@dataclass(frozen=True)
class DecodeConfig:
    """Pixel format and bounds a decoded image must satisfy.

    A max dimension of 0 means unbounded.
    """
    image_format: QImage.Format = QImage.Format.Format_ARGB32
    max_width: int = 0
    max_height: int = 0

    def matches(self, resource: Any) -> bool:
        """Return True if a cached resource can serve a request with this config."""
        if isinstance(resource, QImage):
            return resource.format() == self.image_format
        return True

    @property
    def bounded(self) -> bool:
        return self.max_width > 0 or self.max_height > 0


DEFAULT_DECODE_CONFIG = DecodeConfig()


def estimate_size(resource: Any) -> int:
    """
    Estimate the memory size of a cached resource.

    Args:
        resource: QImage, QPixmap, bytes-like or any object

    Returns:
        Estimated size in bytes
    """
    if resource is None:
        return 0
    if isinstance(resource, (QImage, QPixmap)):
        if resource.isNull():
            return 0
        # Assume 4 bytes per pixel (RGBA)
        return resource.width() * resource.height() * BYTES_PER_PIXEL
    if isinstance(resource, (bytes, bytearray, memoryview)):
        return len(resource)
    for attr in ("size_bytes", "nbytes"):
        value = getattr(resource, attr, None)
        if isinstance(value, int):
            return value
    return sys.getsizeof(resource)


def is_usable(resource: Any) -> bool:
    """Return True unless the resource is missing, null or marked invalid."""
    if resource is None:
        return False
    if isinstance(resource, (QImage, QPixmap)):
        return not resource.isNull()
    valid = getattr(resource, "is_valid", True)
    if callable(valid):
        valid = valid()
    return bool(valid)
