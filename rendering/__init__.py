"""Rendering of loaded images into Qt display targets."""

from .load_signals import LoadSignals
from .target_renderer import LabelTargetRenderer, to_pixmap

__all__ = ['LabelTargetRenderer', 'LoadSignals', 'to_pixmap']
