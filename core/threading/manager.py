"""
Thread Manager for the image worker.

Centralized thread management with specialized pools for IO and compute
operations, plus dispatch of completion work back onto the Qt UI thread.
"""
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from PySide6.QtCore import QObject, QThread, QCoreApplication, Signal

from core.constants import DEFAULT_IO_WORKERS
from core.logging.logger import get_logger, is_verbose_logging
from core.logging.tags import TAG_THREADING

logger = get_logger(__name__)


# UI-thread invoker for reliable main thread dispatch
class _UiInvoker(QObject):
    invoke = Signal(object, object, object)

    def __init__(self):
        super().__init__()
        self.invoke.connect(self._on_invoke)

    def _on_invoke(self, func, args, kwargs):
        try:
            func(*args, **(kwargs or {}))
        except Exception as e:
            logger.exception("UI invoker callable raised: %s", e)


_ui_invoker: Optional[_UiInvoker] = None
_ui_invoker_lock = threading.Lock()


def _ensure_ui_invoker(app: QCoreApplication) -> _UiInvoker:
    global _ui_invoker
    with _ui_invoker_lock:
        if _ui_invoker is None:
            inv = _UiInvoker()
            inv.moveToThread(app.thread())
            _ui_invoker = inv
        return _ui_invoker


class ThreadPoolType(Enum):
    """Thread pool types for image worker workloads"""
    IO = "io"               # Disk cache reads/writes
    COMPUTE = "compute"     # Decode and scale


@dataclass
class TaskResult:
    """Container for task execution results"""
    success: bool
    result: Any = None
    error: Optional[Exception] = None
    execution_time: float = 0.0
    task_id: Optional[str] = None


class Task:
    """Wrapper for executable tasks with metadata"""
    def __init__(self, func: Callable, *args, task_id: str = None, **kwargs):
        self.func = func
        self.args = args
        self.kwargs = kwargs
        self.task_id = task_id or f"task_{id(self)}"
        self.created_at = time.time()
        self.future: Optional[Future] = None
        self.pool_type: Optional[ThreadPoolType] = None


class ThreadManager:
    """
    Centralized thread manager.

    Features:
    - Separate IO and COMPUTE thread pools
    - Task result callbacks (invoked on the worker thread)
    - Per-pool statistics
    - UI thread dispatch utilities
    """
    def __init__(self, config: Optional[Dict[ThreadPoolType, int]] = None):
        """
        Initialize thread manager.

        Args:
            config: Dictionary mapping ThreadPoolType to max_workers count
        """
        self._shutdown = False
        self._lock = threading.Lock()

        cpu_count = os.cpu_count() or 1
        compute_workers = max(1, cpu_count - 1)
        default_config = {
            ThreadPoolType.IO: DEFAULT_IO_WORKERS,
            ThreadPoolType.COMPUTE: compute_workers,
        }
        self.config = {**default_config, **(config or {})}

        self._executors: Dict[ThreadPoolType, ThreadPoolExecutor] = {}
        self._active_tasks: Dict[str, Task] = {}
        self._stats = {pool_type: {'submitted': 0, 'completed': 0, 'failed': 0, 'cancelled': 0}
                       for pool_type in ThreadPoolType}

        self._initialize_pools()

        logger.info("%s ThreadManager initialized with IO=%d, COMPUTE=%d workers",
                    TAG_THREADING, self.config[ThreadPoolType.IO],
                    self.config[ThreadPoolType.COMPUTE])

    def _initialize_pools(self):
        """Initialize thread pools based on configuration."""
        for pool_type, max_workers in self.config.items():
            try:
                self._executors[pool_type] = ThreadPoolExecutor(
                    max_workers=max(1, int(max_workers)),
                    thread_name_prefix=f"{pool_type.value}_pool"
                )
                logger.debug(f"Initialized {pool_type.value} pool with {max_workers} workers")
            except Exception as e:
                logger.error(f"Failed to initialize {pool_type.value} pool: %s", e)
                self.shutdown()
                raise RuntimeError(f"Failed to initialize {pool_type.value} thread pool") from e

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def submit_task(self, pool_type: ThreadPoolType, func: Callable, *args,
                    task_id: str = None,
                    callback: Callable[[TaskResult], None] = None, **kwargs) -> str:
        """
        Submit a task to the specified thread pool.

        Args:
            pool_type: Which thread pool to use
            func: Function to execute
            *args: Positional arguments for func
            task_id: Optional unique identifier
            callback: Optional callback for result, run on the worker thread
            **kwargs: Keyword arguments for func

        Returns:
            str: Task ID for tracking
        """
        if self._shutdown:
            raise RuntimeError("Thread manager is shut down")

        task = Task(func, *args, task_id=task_id, **kwargs)
        task.pool_type = pool_type
        executor = self._executors[pool_type]

        def wrapped_func():
            start_time = time.time()
            try:
                result = task.func(*task.args, **task.kwargs)
                task_result = TaskResult(
                    success=True,
                    result=result,
                    execution_time=time.time() - start_time,
                    task_id=task.task_id
                )
                self._record(pool_type, 'completed')
            except Exception as e:
                task_result = TaskResult(
                    success=False,
                    error=e,
                    execution_time=time.time() - start_time,
                    task_id=task.task_id
                )
                logger.error(f"Task {task.task_id} failed: {e}")
                self._record(pool_type, 'failed')
            finally:
                with self._lock:
                    self._active_tasks.pop(task.task_id, None)

            if callback:
                try:
                    callback(task_result)
                except Exception as e:
                    logger.exception(f"Callback for task {task.task_id} failed: {e}")

            return task_result

        with self._lock:
            self._active_tasks[task.task_id] = task
            self._stats[pool_type]['submitted'] += 1
        task.future = executor.submit(wrapped_func)

        if is_verbose_logging():
            logger.debug(f"Submitted task {task.task_id} to {pool_type.value} pool")
        return task.task_id

    def cancel_task(self, task_id: str) -> bool:
        """Pull a task that has not started yet out of its pool.

        A pulled task never runs, so its callback is never invoked.

        Returns:
            True if the task was still queued and is now cancelled
        """
        with self._lock:
            task = self._active_tasks.get(task_id)
        if task and task.future:
            cancelled = task.future.cancel()
            if cancelled:
                with self._lock:
                    self._active_tasks.pop(task_id, None)
                    if task.pool_type is not None:
                        self._stats[task.pool_type]['cancelled'] += 1
                logger.debug(f"Cancelled task {task_id}")
            return cancelled
        return False

    def get_pool_stats(self) -> Dict[str, Dict[str, int]]:
        """Get statistics for all thread pools"""
        with self._lock:
            return {pool_type.value: stats.copy()
                    for pool_type, stats in self._stats.items()}

    def shutdown(self, wait: bool = True):
        """
        Shutdown all thread pools.

        Args:
            wait: Whether to wait for running tasks. Queued tasks are
                cancelled when False.
        """
        if self._shutdown:
            return
        self._shutdown = True
        logger.info("%s Shutting down thread manager...", TAG_THREADING)

        for pool_type, executor in self._executors.items():
            try:
                executor.shutdown(wait=wait, cancel_futures=not wait)
            except Exception as e:
                logger.error(f"Error shutting down {pool_type.value} pool: {e}")

        self._executors.clear()
        with self._lock:
            self._active_tasks.clear()

        logger.info("%s Thread manager shut down complete", TAG_THREADING)

    def _record(self, pool_type: ThreadPoolType, kind: str) -> None:
        with self._lock:
            self._stats[pool_type][kind] += 1

    # UI dispatch utilities ----------------------------------------------
    @staticmethod
    def run_on_ui_thread(func: Callable, *args, **kwargs) -> None:
        """Dispatch a callable to the Qt UI thread.

        Without a QCoreApplication there is no UI thread to marshal to and
        the callable runs inline on the calling thread.
        """
        app = QCoreApplication.instance()
        if app is None:
            func(*args, **kwargs)
            return

        if QThread.currentThread() is app.thread():
            func(*args, **kwargs)
            return

        inv = _ensure_ui_invoker(app)
        inv.invoke.emit(func, args, kwargs)
