"""QSettings-backed configuration."""

from .settings_manager import SettingsManager

__all__ = ['SettingsManager']
