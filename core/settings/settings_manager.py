"""
Settings manager implementation for the image worker.

Uses QSettings for persistent storage.
"""
import os
import threading
from typing import Any, Callable, Dict, List

from PySide6.QtCore import QSettings, QObject, Signal

from core.constants import (
    DEFAULT_DISK_CACHE_FORMAT,
    DEFAULT_DISK_CACHE_MB,
    DEFAULT_DISK_CACHE_QUALITY,
    DEFAULT_IO_WORKERS,
    DEFAULT_MEMORY_CACHE_ITEMS,
    DEFAULT_MEMORY_CACHE_MB,
    FADE_IN_TIME_MS,
)
from core.logging.logger import get_logger, is_verbose_logging

logger = get_logger('SettingsManager')


def get_default_settings() -> Dict[str, Any]:
    """Return the canonical defaults for every known key."""
    return {
        # Memory tier
        'cache.max_memory_mb': DEFAULT_MEMORY_CACHE_MB,
        'cache.max_items': DEFAULT_MEMORY_CACHE_ITEMS,

        # Persistent tier. An empty directory resolves to the platform
        # cache location at construction time.
        'cache.disk_enabled': True,
        'cache.disk_dir': '',
        'cache.disk_max_mb': DEFAULT_DISK_CACHE_MB,
        'cache.disk_format': DEFAULT_DISK_CACHE_FORMAT,
        'cache.disk_quality': DEFAULT_DISK_CACHE_QUALITY,

        # Thread pools
        'threads.io_workers': DEFAULT_IO_WORKERS,
        'threads.compute_workers': max(1, (os.cpu_count() or 1) - 1),

        # Delivery
        'loader.fade_in': True,
        'loader.fade_in_ms': FADE_IN_TIME_MS,
    }


class SettingsManager(QObject):
    """
    Centralized settings management for the image worker.

    Uses QSettings for persistent storage with organization/application name.
    Thread-safe with change notifications.
    """

    # Signal emitted when settings change
    settings_changed = Signal(str, object)  # key, new_value

    def __init__(self, organization: str = "ImageWorker",
                 application: str = "ImageWorker"):
        """
        Initialize the settings manager.

        Args:
            organization: Organization name for QSettings
            application: Application name for QSettings
        """
        super().__init__()
        self._settings = QSettings(organization, application)
        self._organization = organization
        self._application = application
        self._lock = threading.RLock()
        self._change_handlers: Dict[str, List[Callable[[Any, Any], None]]] = {}

        self._set_defaults()
        logger.info("SettingsManager initialized (%s/%s)", organization, application)

    def _set_defaults(self) -> None:
        """Set default values if not already present."""
        with self._lock:
            for key, value in get_default_settings().items():
                if not self._settings.contains(key):
                    self._settings.setValue(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.

        Args:
            key: Setting key in dot notation (e.g., 'cache.max_memory_mb')
            default: Default value if key not found

        Returns:
            Setting value or default
        """
        with self._lock:
            return self._settings.value(key, default)

    @staticmethod
    def to_bool(value: Any, default: bool = False) -> bool:
        """Normalize a stored setting value to bool.

        QSettings INI/registry backends hand booleans back as strings, so
        "true"/"1"/"yes"/"on" and their negatives are accepted.
        """
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            v = value.strip().lower()
            if v in ("true", "1", "yes", "on"):
                return True
            if v in ("false", "0", "no", "off"):
                return False
            return default
        if value is None:
            return default
        return bool(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Convenience wrapper around get() that normalizes to bool."""
        return self.to_bool(self.get(key, default), default)

    def get_int(self, key: str, default: int = 0) -> int:
        """Convenience wrapper around get() that normalizes to int."""
        raw = self.get(key, default)
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("Setting %s has non-integer value %r, using %d", key, raw, default)
            return default

    def set(self, key: str, value: Any) -> None:
        """
        Set a setting value.

        Args:
            key: Setting key in dot notation
            value: Value to set
        """
        with self._lock:
            old_value = self._settings.value(key)
            self._settings.setValue(key, value)
            handlers = list(self._change_handlers.get(key, ()))

        self.settings_changed.emit(key, value)
        for handler in handlers:
            try:
                handler(value, old_value)
            except Exception as e:
                logger.error(f"Error in change handler for {key}: {e}")

        if is_verbose_logging():
            logger.debug("Setting changed: %s: %r -> %r", key, old_value, value)
        else:
            logger.debug("Setting changed: %s", key)

    def on_changed(self, key: str, handler: Callable[[Any, Any], None]) -> None:
        """
        Register a handler for when a specific setting changes.

        Args:
            key: Setting key to watch
            handler: Callback function(new_value, old_value)
        """
        with self._lock:
            self._change_handlers.setdefault(key, []).append(handler)
        logger.debug(f"Registered change handler for {key}")

    def remove_handler(self, key: str, handler: Callable[[Any, Any], None]) -> bool:
        """
        Unregister a handler added with on_changed().

        Returns:
            True if the handler was registered
        """
        with self._lock:
            handlers = self._change_handlers.get(key, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            if not handlers:
                del self._change_handlers[key]
        logger.debug(f"Removed change handler for {key}")
        return True

    def handler_count(self, key: str) -> int:
        with self._lock:
            return len(self._change_handlers.get(key, ()))

    def save(self) -> None:
        """Force save settings to persistent storage."""
        with self._lock:
            self._settings.sync()
        logger.debug("Settings saved")

    def load(self) -> None:
        """Reload settings from persistent storage."""
        with self._lock:
            self._settings.sync()
        logger.debug("Settings loaded")

    def reset_to_defaults(self) -> None:
        """Drop every stored value and restore the defaults."""
        with self._lock:
            self._settings.clear()
        self._set_defaults()
        self.settings_changed.emit('*', None)
        logger.info("Settings reset to defaults")

    def contains(self, key: str) -> bool:
        """Check if a setting key exists."""
        with self._lock:
            return self._settings.contains(key)

    def remove(self, key: str) -> None:
        """Remove a setting key."""
        with self._lock:
            self._settings.remove(key)
        logger.debug(f"Removed setting: {key}")

    def clear(self) -> None:
        """Clear all settings (use with caution)."""
        with self._lock:
            self._settings.clear()
        logger.warning("All settings cleared")

    def get_all_keys(self) -> List[str]:
        with self._lock:
            return list(self._settings.allKeys())
