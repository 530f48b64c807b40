"""
QLabel target renderer.

Sets images on QLabel targets, optionally cross-fading from the placeholder
to the loaded image. Must only be used on the UI thread.
"""
from __future__ import annotations

import weakref
from typing import Any, Optional

from PySide6.QtCore import QEasingCurve, Qt, QVariantAnimation
from PySide6.QtGui import QImage, QPainter, QPixmap
from PySide6.QtWidgets import QLabel

from core.constants.timing import FADE_IN_TIME_MS
from core.logging.logger import get_logger
from core.logging.tags import TAG_RENDER

logger = get_logger(__name__)


def to_pixmap(resource: Any) -> Optional[QPixmap]:
    """Convert a QImage or QPixmap to a QPixmap; None for anything else."""
    if isinstance(resource, QPixmap):
        return None if resource.isNull() else resource
    if isinstance(resource, QImage):
        return None if resource.isNull() else QPixmap.fromImage(resource)
    return None


class LabelTargetRenderer:
    """Renders images into QLabel targets."""

    def __init__(self, fade_in_ms: int = FADE_IN_TIME_MS) -> None:
        self._fade_in_ms = max(0, int(fade_in_ms))
        self._animations: "weakref.WeakKeyDictionary[QLabel, QVariantAnimation]" = weakref.WeakKeyDictionary()

    @property
    def fade_in_ms(self) -> int:
        return self._fade_in_ms

    def set_fade_in_ms(self, duration_ms: int) -> None:
        self._fade_in_ms = max(0, int(duration_ms))

    def is_animating(self, target: QLabel) -> bool:
        return target in self._animations

    def show_placeholder(self, target: QLabel, placeholder: Optional[Any]) -> None:
        """Show placeholder in target, or clear it when there is none."""
        self._stop_animation(target)
        pixmap = to_pixmap(placeholder)
        if pixmap is None:
            target.clear()
        else:
            target.setPixmap(pixmap)

    def render(self, target: QLabel, resource: Any, fade: bool,
               placeholder: Optional[Any] = None) -> None:
        """
        Set resource on target.

        Args:
            target: Label to update
            resource: QImage or QPixmap
            fade: Cross-fade from placeholder (or from transparent)
            placeholder: Image shown underneath while fading
        """
        self._stop_animation(target)
        pixmap = to_pixmap(resource)
        if pixmap is None:
            logger.warning("%s Cannot render %s", TAG_RENDER, type(resource).__name__)
            return

        if not fade or self._fade_in_ms <= 0:
            target.setPixmap(pixmap)
            return

        self._start_fade_in(target, pixmap, to_pixmap(placeholder))

    def _start_fade_in(self, target: QLabel, pixmap: QPixmap, background: Optional[QPixmap]) -> None:
        if background is not None and background.size() != pixmap.size():
            background = background.scaled(pixmap.size())

        anim = QVariantAnimation(target)
        anim.setDuration(self._fade_in_ms)
        anim.setStartValue(0.0)
        anim.setEndValue(1.0)
        anim.setEasingCurve(QEasingCurve.Type.InOutCubic)

        def _on_value_changed(value) -> None:
            try:
                opacity = float(value)
            except (TypeError, ValueError):
                opacity = 1.0
            target.setPixmap(self._blend(pixmap, background, opacity))

        def _on_finished() -> None:
            self._animations.pop(target, None)
            target.setPixmap(pixmap)
            anim.deleteLater()

        anim.valueChanged.connect(_on_value_changed)
        anim.finished.connect(_on_finished)
        self._animations[target] = anim
        target.setPixmap(self._blend(pixmap, background, 0.0))
        anim.start()

    @staticmethod
    def _blend(pixmap: QPixmap, background: Optional[QPixmap], opacity: float) -> QPixmap:
        frame = QPixmap(pixmap.size())
        frame.fill(Qt.GlobalColor.transparent)
        painter = QPainter(frame)
        try:
            if background is not None:
                painter.setOpacity(1.0 - opacity)
                painter.drawPixmap(0, 0, background)
            painter.setOpacity(opacity)
            painter.drawPixmap(0, 0, pixmap)
        finally:
            painter.end()
        return frame

    def _stop_animation(self, target: QLabel) -> None:
        anim = self._animations.pop(target, None)
        if anim is None:
            return
        try:
            anim.stop()
            anim.deleteLater()
        except RuntimeError:
            logger.debug("%s Animation already deleted", TAG_RENDER)
