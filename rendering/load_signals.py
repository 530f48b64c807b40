"""
Qt signal adapter for ImageWorker lifecycle events.

Pass a LoadSignals instance as the worker's observer and connect to its
signals instead of implementing LoadObserver directly.
"""
from __future__ import annotations

from typing import Any, Optional

from PySide6.QtCore import QObject, Signal


class LoadSignals(QObject):
    """Re-emits LoadObserver callbacks as Qt signals."""

    load_started = Signal(object, str)    # target, key
    delivered = Signal(object, object)    # target, image or None
    rendered = Signal(object, object)     # target, image shown
    cancelled = Signal(object, str)       # target, key

    def on_load_start(self, target: Any, key: str) -> None:
        self.load_started.emit(target, key)

    def on_delivered(self, target: Any, resource: Optional[Any]) -> None:
        self.delivered.emit(target, resource)

    def on_rendered(self, target: Any, resource: Any) -> None:
        self.rendered.emit(target, resource)

    def on_cancelled(self, target: Any, key: str) -> None:
        self.cancelled.emit(target, key)
