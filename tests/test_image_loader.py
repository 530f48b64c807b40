"""Tests for the Pillow-backed image producer."""
import pytest
from PIL import Image
from PySide6.QtGui import QImage

from core.errors import ProducerExhaustion
from utils.image_loader import PillowImageProducer, fit_within
from utils.image_utils import DecodeConfig


@pytest.fixture
def jpeg_path(tmp_path):
    path = tmp_path / "photo.jpg"
    Image.new("RGB", (400, 200), (10, 200, 30)).save(path, "JPEG")
    return path


class TestFitWithin:
    def test_unbounded(self):
        assert fit_within((400, 200), 0, 0) == (400, 200)

    def test_never_upscales(self):
        assert fit_within((100, 50), 400, 400) == (100, 50)

    def test_keeps_aspect_ratio(self):
        assert fit_within((400, 200), 100, 0) == (100, 50)
        assert fit_within((400, 200), 0, 50) == (100, 50)
        assert fit_within((400, 200), 200, 20) == (40, 20)


class TestPillowImageProducer:
    def test_produces_qimage_in_requested_format(self, jpeg_path):
        producer = PillowImageProducer()
        image = producer.produce(str(jpeg_path), DecodeConfig())
        assert isinstance(image, QImage)
        assert not image.isNull()
        assert image.format() == QImage.Format.Format_ARGB32
        assert (image.width(), image.height()) == (400, 200)
        assert producer.decode_count == 1

    def test_respects_bounds(self, jpeg_path):
        producer = PillowImageProducer()
        config = DecodeConfig(max_width=100, max_height=100)
        image = producer.produce(str(jpeg_path), config)
        assert (image.width(), image.height()) == (100, 50)

    def test_png_source(self, temp_image):
        image = PillowImageProducer(sharpen=False).produce(
            str(temp_image), DecodeConfig(image_format=QImage.Format.Format_RGB32))
        assert image.format() == QImage.Format.Format_RGB32
        color = image.pixelColor(50, 50)
        assert (color.red(), color.green(), color.blue()) == (255, 0, 0)

    def test_missing_file_returns_none(self, tmp_path):
        assert PillowImageProducer().produce(str(tmp_path / "nope.png"), DecodeConfig()) is None

    def test_undecodable_file_returns_none(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image at all")
        assert PillowImageProducer().produce(str(path), DecodeConfig()) is None

    def test_memory_error_becomes_exhaustion(self, jpeg_path, monkeypatch):
        def _explode(*args, **kwargs):
            raise MemoryError()

        monkeypatch.setattr(Image, "open", _explode)
        with pytest.raises(ProducerExhaustion) as excinfo:
            PillowImageProducer().produce(str(jpeg_path), DecodeConfig())
        assert excinfo.value.key == str(jpeg_path)
