"""Collaborator interfaces for the image worker."""
from __future__ import annotations

from typing import Any, Optional, Protocol

from utils.image_utils import DecodeConfig


class ImageProducer(Protocol):
    """Produces a resource for a key on a background thread.

    Must be thread-safe and idempotent. May raise ProducerExhaustion (or
    MemoryError) when memory runs out; returns None on other failures.
    """

    def produce(self, key: str, config: DecodeConfig) -> Optional[Any]:
        ...


class PersistentStore(Protocol):
    """Slow, durable cache tier."""

    def read(self, key: str, config: DecodeConfig) -> Optional[Any]:
        ...

    def write(self, key: str, resource: Any) -> None:
        ...

    def clear(self) -> None:
        ...


class TargetRenderer(Protocol):
    """Puts resources into display targets. Called on the UI thread only."""

    def show_placeholder(self, target: Any, placeholder: Optional[Any]) -> None:
        ...

    def render(self, target: Any, resource: Any, fade: bool,
               placeholder: Optional[Any] = None) -> None:
        ...


class IndexKeyProvider(Protocol):
    """Maps list positions to keys for ImageWorker.load_by_index()."""

    def key_at(self, index: int) -> str:
        ...

    def count(self) -> int:
        ...


class LoadObserver(Protocol):
    """Lifecycle notifications. Return values are ignored."""

    def on_load_start(self, target: Any, key: str) -> None:
        ...

    def on_delivered(self, target: Any, resource: Optional[Any]) -> None:
        ...

    def on_rendered(self, target: Any, resource: Any) -> None:
        ...

    def on_cancelled(self, target: Any, key: str) -> None:
        ...
