"""
Image worker: loads images into reusable display targets.

ImageWorker wires the two-tier cache, the target binding and background
ImageTasks together. A request checks the memory tier synchronously; on a
miss a task is bound to the target and run on a ThreadManager pool, and its
result is delivered on the UI thread only if the task still owns the
target. Rebinding a target to another key cancels the older task; asking
for the key already in flight on that target is a no-op.
"""
from __future__ import annotations

import threading
import weakref
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional

from PySide6.QtCore import Qt
from PySide6.QtGui import QImage

from core.errors import NotConfiguredError, ProducerExhaustion
from core.logging.logger import get_logger, is_perf_metrics_enabled, is_verbose_logging
from core.logging.tags import TAG_PERF, TAG_WORKER
from core.settings.settings_manager import SettingsManager
from core.threading.manager import TaskResult, ThreadManager, ThreadPoolType
from engine.image_task import DeliveryStatus, ImageTask, ProductionResult
from engine.interfaces import ImageProducer, IndexKeyProvider, LoadObserver, TargetRenderer
from engine.target_binding import TargetBinding
from utils.disk_cache import DiskImageStore
from utils.image_cache import ImageCache, MemoryImageCache
from utils.image_utils import DecodeConfig, DEFAULT_DECODE_CONFIG, is_usable

logger = get_logger(__name__)


class ImageWorker:
    """
    Loads images by key into display targets using a memory cache, a
    persistent cache and a background producer.

    load() must be called on the UI thread; rendering and observer callbacks
    for background results are marshalled back to it.
    """

    def __init__(
        self,
        producer: ImageProducer,
        cache: Optional[ImageCache] = None,
        renderer: Optional[TargetRenderer] = None,
        thread_manager: Optional[ThreadManager] = None,
        observer: Optional[LoadObserver] = None,
        key_provider: Optional[IndexKeyProvider] = None,
        pool_type: ThreadPoolType = ThreadPoolType.COMPUTE,
        thread_config: Optional[Dict[ThreadPoolType, int]] = None,
    ) -> None:
        """
        Args:
            producer: Decodes images on a cache miss
            cache: Two-tier cache; None disables caching
            renderer: Puts images into targets; None for observer-only use
            thread_manager: Shared pools; when None the worker creates and
                owns one built from thread_config
            observer: Optional lifecycle observer
            key_provider: Optional index→key mapping for load_by_index()
            pool_type: Pool that runs production tasks
            thread_config: Pool sizes for an owned ThreadManager
        """
        self._producer = producer
        self._cache = cache
        self._renderer = renderer
        self._owns_threads = thread_manager is None
        self._threads = thread_manager if thread_manager is not None else ThreadManager(thread_config)
        self._observer = observer
        self._key_provider = key_provider
        self._pool_type = pool_type
        self._binding = TargetBinding()
        self._in_flight: Dict[str, ImageTask] = {}
        self._in_flight_lock = threading.Lock()
        self._settings_handler = None

        self._placeholder: Any = None
        self._failure_placeholder: Any = None
        self._fade_in = True
        self._exit_early = False

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def cache(self) -> Optional[ImageCache]:
        return self._cache

    @property
    def binding(self) -> TargetBinding:
        return self._binding

    @property
    def placeholder(self) -> Any:
        return self._placeholder

    def set_placeholder(self, resource: Any) -> None:
        """Set the image shown while a background load is running."""
        self._placeholder = resource

    @property
    def failure_placeholder(self) -> Any:
        return self._failure_placeholder

    def set_failure_placeholder(self, resource: Any) -> None:
        """Set the image shown when a load produced nothing."""
        self._failure_placeholder = resource

    @property
    def fade_in(self) -> bool:
        return self._fade_in

    def set_fade_in(self, fade_in: bool) -> None:
        """If True, images loaded in the background fade in when set."""
        self._fade_in = bool(fade_in)

    @property
    def exit_early(self) -> bool:
        return self._exit_early

    def set_exit_early(self, exit_early: bool) -> None:
        """Stop touching targets, e.g. while the owning view is torn down.

        Running tasks skip their remaining work and results are reported
        to the observer as None without being rendered.
        """
        self._exit_early = bool(exit_early)
        logger.debug("%s exit_early=%s", TAG_WORKER, self._exit_early)

    def set_observer(self, observer: Optional[LoadObserver]) -> None:
        self._observer = observer

    @property
    def key_provider(self) -> Optional[IndexKeyProvider]:
        return self._key_provider

    def set_key_provider(self, provider: Optional[IndexKeyProvider]) -> None:
        self._key_provider = provider

    def follow_settings(self, settings: SettingsManager) -> None:
        """Apply 'loader.fade_in' now and on every later change until shutdown()."""
        self.set_fade_in(settings.get_bool('loader.fade_in', True))
        worker_ref = weakref.ref(self)

        def _on_fade_in_changed(new_value, _old_value) -> None:
            worker = worker_ref()
            if worker is not None:
                worker.set_fade_in(SettingsManager.to_bool(new_value, True))

        settings.on_changed('loader.fade_in', _on_fade_in_changed)
        self._settings_handler = (settings, 'loader.fade_in', _on_fade_in_changed)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, target: Any, key: Any, config: Optional[DecodeConfig] = None) -> None:
        """
        Load the image for key into target.

        A usable memory-cache hit is rendered immediately. Otherwise a task
        is bound to target and the placeholder is shown until it delivers.

        Args:
            target: Display target (hashable, weak-referenceable)
            key: Image key; converted with str()
            config: Requested pixel format and bounds
        """
        if target is None:
            raise ValueError("target is required, use load_sync() for headless loads")
        key = str(key)
        config = config or DEFAULT_DECODE_CONFIG
        self._notify("on_load_start", target, key)

        resource = self._cache.get_memory(key) if self._cache is not None else None
        if is_usable(resource) and config.matches(resource):
            # The target now shows this image; any in-flight task for it is stale.
            previous = self._binding.clear(target)
            if previous is not None and previous.cancel():
                logger.debug("%s Cancelled work for %s (memory hit on %s)", TAG_WORKER, previous.key, key)
                self._withdraw(previous)
            self._render(target, resource, fade=False)
            self._notify("on_delivered", target, resource)
            self._notify("on_rendered", target, resource)
            return

        task = ImageTask(key, config, target, self._cache, self._producer,
                         exit_early=lambda: self._exit_early)
        installed, previous = self._binding.bind_unless_duplicate(target, task)
        if not installed:
            if is_verbose_logging():
                logger.debug("%s Same work already in progress for %s", TAG_WORKER, key)
            return
        if previous is not None and previous.cancel():
            logger.debug("%s Cancelled work for %s (rebound to %s)", TAG_WORKER, previous.key, key)
            self._withdraw(previous)

        self._show_placeholder(target)
        with self._in_flight_lock:
            self._in_flight[task.task_id] = task
        try:
            self._threads.submit_task(
                self._pool_type,
                task.run,
                task_id=task.task_id,
                callback=partial(self._on_task_done, task),
            )
        except RuntimeError as e:
            logger.warning("%s Could not dispatch %s: %s", TAG_WORKER, key, e)
            with self._in_flight_lock:
                self._in_flight.pop(task.task_id, None)
            task.cancel()
            task.delivery = DeliveryStatus.CANCELLED
            self._binding.release(target, task)
            self._notify("on_cancelled", target, key)
            return

        if is_verbose_logging():
            logger.debug("%s Dispatched %s", TAG_WORKER, task.task_id)

    def load_by_index(self, index: int, target: Any, config: Optional[DecodeConfig] = None) -> None:
        """
        Load the image at a list position, resolved through the key provider.

        Raises:
            NotConfiguredError: no key provider has been set
        """
        if self._key_provider is None:
            raise NotConfiguredError("No key provider set, call set_key_provider() first")
        self.load(target, self._key_provider.key_at(index), config)

    def load_sync(self, key: Any, config: Optional[DecodeConfig] = None) -> Optional[Any]:
        """
        Load an image on the calling thread without a target.

        Memory tier, then persistent tier, then the producer; results are
        written back to the cache. Blocks on I/O, so do not call it on the
        UI thread for keys that may miss.

        Returns:
            The image, or None if it could not be produced
        """
        key = str(key)
        config = config or DEFAULT_DECODE_CONFIG
        self._notify("on_load_start", None, key)

        try:
            if self._cache is not None:
                resource = self._cache.get_memory(key)
                if is_usable(resource) and config.matches(resource):
                    return resource
                resource = self._cache.get_persistent(key, config)
                if is_usable(resource):
                    self._cache.put(key, resource, persist=False)
                    return resource

            resource = self._producer.produce(key, config)
            if not is_usable(resource):
                return None
            if self._cache is not None:
                self._cache.put(key, resource)
            return resource
        except (ProducerExhaustion, MemoryError) as e:
            logger.warning("%s Out of memory loading %s, clearing memory cache: %s", TAG_WORKER, key, e)
            if self._cache is not None:
                self._cache.clear()
            return None

    def create_image(self, key: Any, width: int, height: int,
                     config: Optional[DecodeConfig] = None) -> Optional[QImage]:
        """
        Return a blank, writable image of the given size.

        Images are cached in the memory tier only, under "{width}x{height}_{key}".

        Returns:
            The image, or None if it could not be allocated
        """
        config = config or DEFAULT_DECODE_CONFIG
        cache_key = f"{width}x{height}_{key}"
        if self._cache is not None:
            cached = self._cache.get_memory(cache_key)
            if is_usable(cached) and config.matches(cached):
                return cached

        try:
            image = QImage(width, height, config.image_format)
        except MemoryError:
            image = None
        if image is None or image.isNull():
            # QImage reports a failed allocation as a null image.
            logger.warning("%s Could not allocate %s, clearing memory cache", TAG_WORKER, cache_key)
            if self._cache is not None:
                self._cache.clear()
            return None

        image.fill(Qt.GlobalColor.transparent)
        if self._cache is not None:
            self._cache.put_memory(cache_key, image)
        return image

    def cancel_work(self, target: Any) -> bool:
        """
        Cancel whatever task currently owns target.

        Returns:
            True if a running or pending task was cancelled
        """
        task = self._binding.clear(target)
        if task is None:
            return False
        cancelled = task.cancel()
        if cancelled:
            logger.debug("%s cancel_work - cancelled work for %s", TAG_WORKER, task.key)
            self._withdraw(task)
        return cancelled

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop delivering results and release the pools this worker owns.

        Tasks still queued are pulled from their pool and reported through
        on_cancelled. Running tasks finish and are delivered as suppressed.
        """
        self.set_exit_early(True)
        with self._in_flight_lock:
            queued = list(self._in_flight.values())
        for task in queued:
            self._withdraw(task)

        if self._settings_handler is not None:
            settings, key, handler = self._settings_handler
            settings.remove_handler(key, handler)
            self._settings_handler = None

        if is_perf_metrics_enabled():
            logger.info("%s ImageWorker pools at shutdown: %s", TAG_PERF, self._threads.get_pool_stats())
        if self._owns_threads and not self._threads.is_shutdown:
            self._threads.shutdown(wait=wait)

    def _withdraw(self, task: ImageTask) -> bool:
        """
        Pull a cancelled task out of its pool if it has not started.

        A withdrawn task never reaches _on_task_done, so its cancellation
        is reported here.
        """
        if not self._threads.cancel_task(task.task_id):
            return False
        task.cancel()
        with self._in_flight_lock:
            self._in_flight.pop(task.task_id, None)
        target = task.target
        task.delivery = DeliveryStatus.CANCELLED
        self._binding.release(target, task)
        logger.debug("%s %s withdrawn before it started", TAG_WORKER, task.task_id)
        self._notify("on_cancelled", target, task.key)
        return True

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _on_task_done(self, task: ImageTask, task_result: TaskResult) -> None:
        """Pool-thread callback: hand the result to the UI thread."""
        with self._in_flight_lock:
            self._in_flight.pop(task.task_id, None)
        if task_result.success and isinstance(task_result.result, ProductionResult):
            result = task_result.result
        else:
            result = ProductionResult()
        ThreadManager.run_on_ui_thread(self._deliver, task, result)

    def _deliver(self, task: ImageTask, result: ProductionResult) -> None:
        """Deliver a finished task's result. Runs on the UI thread."""
        target = task.target

        if not task.finish():
            task.delivery = DeliveryStatus.CANCELLED
            self._binding.release(target, task)
            logger.debug("%s %s was cancelled, not delivering", TAG_WORKER, task.task_id)
            self._notify("on_cancelled", target, task.key)
            return

        if not self._binding.release(target, task):
            task.delivery = DeliveryStatus.REBOUND
            logger.debug("%s %s no longer owns its target, dropping result", TAG_WORKER, task.task_id)
            return

        if self._exit_early:
            task.delivery = DeliveryStatus.SUPPRESSED
            self._notify("on_delivered", target, None)
            return

        task.delivery = DeliveryStatus.DELIVERED
        self._notify("on_delivered", target, result.resource)

        resource = result.resource
        if not is_usable(resource):
            resource = self._failure_placeholder
            if resource is None:
                return
            self._render(target, resource, fade=False)
        else:
            self._render(target, resource, fade=self._fade_in)
        self._notify("on_rendered", target, resource)

    def _show_placeholder(self, target: Any) -> None:
        if self._renderer is None:
            return
        try:
            self._renderer.show_placeholder(target, self._placeholder)
        except Exception as e:
            logger.exception("%s Placeholder rendering failed: %s", TAG_WORKER, e)

    def _render(self, target: Any, resource: Any, fade: bool) -> None:
        if self._renderer is None:
            return
        try:
            self._renderer.render(target, resource, fade, self._placeholder)
        except Exception as e:
            logger.exception("%s Rendering failed: %s", TAG_WORKER, e)

    def _notify(self, event: str, *args: Any) -> None:
        observer = self._observer
        if observer is None:
            return
        try:
            getattr(observer, event)(*args)
        except Exception as e:
            logger.exception("%s Observer %s raised: %s", TAG_WORKER, event, e)


def create_image_worker(
    settings: SettingsManager,
    producer: ImageProducer,
    renderer: Optional[TargetRenderer] = None,
    observer: Optional[LoadObserver] = None,
    thread_manager: Optional[ThreadManager] = None,
) -> ImageWorker:
    """
    Build an ImageWorker whose cache tiers and pools are sized from settings.

    The fade-in flag follows later changes to 'loader.fade_in'.
    """
    memory = MemoryImageCache(
        max_memory_bytes=settings.get_int('cache.max_memory_mb') * 1024 * 1024,
        max_items=settings.get_int('cache.max_items'),
    )

    store = None
    if settings.get_bool('cache.disk_enabled', True):
        disk_dir = settings.get('cache.disk_dir', '') or None
        try:
            store = DiskImageStore(
                cache_dir=Path(disk_dir) if disk_dir else None,
                max_size_bytes=settings.get_int('cache.disk_max_mb') * 1024 * 1024,
                image_format=str(settings.get('cache.disk_format', 'PNG')),
                quality=settings.get_int('cache.disk_quality', 90),
            )
        except OSError as e:
            logger.warning("%s Disk cache unavailable, continuing memory-only: %s", TAG_WORKER, e)

    if renderer is None:
        from rendering.target_renderer import LabelTargetRenderer
        renderer = LabelTargetRenderer(fade_in_ms=settings.get_int('loader.fade_in_ms'))

    thread_config = {
        ThreadPoolType.IO: settings.get_int('threads.io_workers'),
        ThreadPoolType.COMPUTE: settings.get_int('threads.compute_workers'),
    }
    worker = ImageWorker(
        producer,
        cache=ImageCache(memory, store),
        renderer=renderer,
        thread_manager=thread_manager,
        observer=observer,
        thread_config=thread_config,
    )
    worker.follow_settings(settings)
    logger.info("%s ImageWorker created (disk cache=%s)", TAG_WORKER,
                store.cache_dir if store is not None else "disabled")
    return worker
