"""Image production from files on disk.

PillowImageProducer is the bundled producer: it decodes with Pillow on a
worker thread, downscales to the requested bounds and hands back a QImage
in the requested pixel format. QImage (unlike QPixmap) is safe to build
off the UI thread.
"""
from __future__ import annotations

import os
import time
from typing import Optional, Tuple

from PIL import Image, ImageFilter, ImageOps
from PySide6.QtGui import QImage

from core.errors import ProducerExhaustion
from core.logging.logger import get_logger, is_verbose_logging
from core.logging.tags import TAG_TASK
from utils.image_utils import DecodeConfig, DEFAULT_DECODE_CONFIG

logger = get_logger(__name__)


def fit_within(size: Tuple[int, int], max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale (width, height) down to fit the bounds, keeping aspect ratio.

    A bound of 0 is unbounded. Images are never scaled up.
    """
    width, height = size
    scale = 1.0
    if max_width > 0 and width > max_width:
        scale = min(scale, max_width / width)
    if max_height > 0 and height > max_height:
        scale = min(scale, max_height / height)
    if scale >= 1.0:
        return width, height
    return max(1, int(width * scale)), max(1, int(height * scale))


class PillowImageProducer:
    """Decode image files into QImage."""

    LANCZOS_RESAMPLE = Image.Resampling.LANCZOS
    SHARPEN_THRESHOLD = 0.5  # Apply sharpening when scale < 0.5

    def __init__(self, sharpen: bool = True) -> None:
        self._sharpen = sharpen
        self._decode_count = 0
        self._total_decode_ms = 0.0

    @property
    def decode_count(self) -> int:
        return self._decode_count

    def produce(self, key: str, config: DecodeConfig = DEFAULT_DECODE_CONFIG) -> Optional[QImage]:
        """Decode the file named by key.

        Returns:
            QImage in config.image_format, None if the file is missing or
            cannot be decoded

        Raises:
            ProducerExhaustion: decoding ran out of memory
        """
        if not os.path.exists(key):
            logger.warning("%s File not found: %s", TAG_TASK, key)
            return None

        start = time.time()
        try:
            with Image.open(key) as img:
                img.load()
                img = ImageOps.exif_transpose(img)
                if img.mode != "RGBA":
                    img = img.convert("RGBA")
                img = self._scale(img, config)
                width, height = img.size
                rgba_data = img.tobytes("raw", "RGBA")
        except MemoryError as e:
            raise ProducerExhaustion(key) from e
        except Image.DecompressionBombError as e:
            raise ProducerExhaustion(key, "image too large to decode") from e
        except (OSError, ValueError) as e:
            logger.warning("%s Failed to decode image %s: %s", TAG_TASK, key, e)
            return None

        # QImage wraps the buffer without copying; copy() detaches it before
        # rgba_data goes out of scope.
        image = QImage(rgba_data, width, height, width * 4, QImage.Format.Format_RGBA8888).copy()
        if image.format() != config.image_format:
            image = image.convertToFormat(config.image_format)

        decode_ms = (time.time() - start) * 1000
        self._decode_count += 1
        self._total_decode_ms += decode_ms
        if is_verbose_logging():
            logger.debug("%s Decoded %s (%dx%d) in %.1fms", TAG_TASK, key, width, height, decode_ms)
        return image

    def _scale(self, img: Image.Image, config: DecodeConfig) -> Image.Image:
        if not config.bounded:
            return img
        original_size = img.size
        scaled_size = fit_within(original_size, config.max_width, config.max_height)
        if scaled_size == original_size:
            return img

        img = img.resize(scaled_size, self.LANCZOS_RESAMPLE)
        if self._sharpen:
            scale_factor = scaled_size[0] / original_size[0]
            if scale_factor < self.SHARPEN_THRESHOLD:
                img = img.filter(ImageFilter.UnsharpMask(radius=2, percent=150, threshold=3))
        return img
