"""
Shared pytest fixtures for image worker tests.
"""
import os
import sys

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PySide6.QtWidgets import QApplication


@pytest.fixture(scope='session')
def qt_app():
    """Create QApplication instance for tests."""
    app = QApplication.instance()
    if app is None:
        app = QApplication(sys.argv)
    yield app
    # Don't quit - causes issues with pytest


@pytest.fixture
def settings_manager(qt_app):
    """Create SettingsManager instance for testing."""
    from core.settings import SettingsManager
    manager = SettingsManager(organization="Test", application="ImageWorkerTest")
    manager.reset_to_defaults()
    yield manager
    # Clear test settings
    manager.clear()


@pytest.fixture
def thread_manager():
    """Create ThreadManager instance for testing."""
    from core.threading.manager import ThreadManager
    manager = ThreadManager()
    yield manager
    manager.shutdown(wait=True)


@pytest.fixture
def memory_cache():
    from utils.image_cache import MemoryImageCache
    return MemoryImageCache(max_memory_bytes=1024 * 1024)


@pytest.fixture
def temp_image(tmp_path):
    """Create a temporary 100x100 red test image."""
    from PySide6.QtGui import QImage, QColor
    from PySide6.QtCore import QSize

    image = QImage(QSize(100, 100), QImage.Format.Format_RGB32)
    image.fill(QColor(255, 0, 0))

    image_path = tmp_path / "test_image.png"
    image.save(str(image_path))

    return image_path
