"""
Background production task.

An ImageTask resolves one key to an image off the UI thread: persistent
tier first, then the producer, then write-back into the cache. Delivery to
the target is not done here; ImageWorker performs it on the UI thread
after checking the task is still bound to its target.

State transitions are monotonic: PENDING -> RUNNING -> COMPLETED, with
CANCELLED reachable from PENDING or RUNNING. A task stays RUNNING until its
result is delivered, so a cancel that arrives after write-back still
suppresses delivery.
"""
from __future__ import annotations

import threading
import time
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from core.errors import ProducerExhaustion
from core.logging.logger import get_logger, is_verbose_logging
from core.logging.tags import TAG_TASK
from engine.interfaces import ImageProducer
from utils.image_cache import ImageCache
from utils.image_utils import DecodeConfig, is_usable

logger = get_logger(__name__)


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeliveryStatus(Enum):
    """What happened when the task's result reached the UI thread."""
    PENDING = "pending"
    DELIVERED = "delivered"
    REBOUND = "rebound"          # target now belongs to another task, result dropped
    CANCELLED = "cancelled"
    SUPPRESSED = "suppressed"    # exit-early was set


@dataclass
class ProductionResult:
    resource: Any = None
    source: Optional[str] = None  # "disk" or "producer"
    exhausted: bool = False
    elapsed_ms: float = 0.0


class ImageTask:
    """Cancellable unit of background work for one key and one target."""

    def __init__(
        self,
        key: str,
        config: DecodeConfig,
        target: Any,
        cache: Optional[ImageCache],
        producer: ImageProducer,
        exit_early: Callable[[], bool] = lambda: False,
    ) -> None:
        self.key = key
        self.config = config
        self.generation = 0
        self.delivery = DeliveryStatus.PENDING
        self.result: Optional[ProductionResult] = None

        self._target_ref = weakref.ref(target) if target is not None else None
        self._cache = cache
        self._producer = producer
        self._exit_early = exit_early
        self._state = TaskState.PENDING
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ImageTask(key={self.key!r}, generation={self.generation}, state={self.state.value})"

    @property
    def task_id(self) -> str:
        return f"image:{self.generation}:{self.key}"

    @property
    def state(self) -> TaskState:
        with self._lock:
            return self._state

    @property
    def target(self) -> Any:
        """The target this task was created for, or None if it was collected."""
        return self._target_ref() if self._target_ref is not None else None

    def is_cancelled(self) -> bool:
        return self.state is TaskState.CANCELLED

    def is_active(self) -> bool:
        return self.state in (TaskState.PENDING, TaskState.RUNNING)

    def cancel(self) -> bool:
        """Request cooperative cancellation.

        Returns:
            True if the task moved to CANCELLED, False if it had already
            completed or been cancelled
        """
        with self._lock:
            if self._state in (TaskState.PENDING, TaskState.RUNNING):
                self._state = TaskState.CANCELLED
                return True
            return False

    def _transition(self, source: TaskState, dest: TaskState) -> bool:
        with self._lock:
            if self._state is not source:
                return False
            self._state = dest
            return True

    def finish(self) -> bool:
        """Mark the task COMPLETED; False if it was cancelled first."""
        return self._transition(TaskState.RUNNING, TaskState.COMPLETED)

    def _should_continue(self) -> bool:
        return not self.is_cancelled() and not self._exit_early()

    def run(self) -> ProductionResult:
        """Execute the lookup/produce/write-back steps. Runs on a pool thread."""
        if not self._transition(TaskState.PENDING, TaskState.RUNNING):
            logger.debug("%s %s cancelled before start", TAG_TASK, self.task_id)
            self.result = ProductionResult()
            return self.result

        start = time.time()
        resource = None
        source = None
        try:
            if self._cache is not None and self._should_continue():
                resource = self._cache.get_persistent(self.key, self.config)
                if resource is not None:
                    source = "disk"

            if resource is None and self._should_continue():
                resource = self._producer.produce(self.key, self.config)
                if resource is not None:
                    source = "producer"
        except (ProducerExhaustion, MemoryError) as e:
            logger.warning("%s Out of memory producing %s, clearing memory cache: %s",
                           TAG_TASK, self.key, e)
            if self._cache is not None:
                self._cache.clear()
            self.result = ProductionResult(exhausted=True, elapsed_ms=(time.time() - start) * 1000)
            return self.result
        except Exception as e:
            logger.error("%s Production failed for %s: %s", TAG_TASK, self.key, e)
            resource = None

        if resource is not None and not is_usable(resource):
            logger.warning("%s Producer returned an unusable image for %s", TAG_TASK, self.key)
            resource = None

        # Written back even if cancelled meanwhile; a later request may use it.
        if resource is not None and self._cache is not None:
            try:
                self._cache.put(self.key, resource, persist=(source == "producer"))
            except MemoryError as e:
                logger.warning("%s Out of memory caching %s: %s", TAG_TASK, self.key, e)
                self._cache.clear()

        self.result = ProductionResult(resource=resource, source=source,
                                       elapsed_ms=(time.time() - start) * 1000)
        if is_verbose_logging():
            logger.debug("%s %s finished from %s in %.1fms", TAG_TASK, self.task_id,
                         source or "nowhere", self.result.elapsed_ms)
        return self.result
