"""
Target → task binding.

Each display target carries at most one binding marker naming the task
allowed to deliver into it. Binding a new task overwrites the marker, which
is how a recycled target stops an older task from painting a stale image:
only the last task bound to a target can deliver, whatever order the tasks
finish in.

Targets are held weakly and must be hashable and weak-referenceable (every
QWidget is). All operations are serialized by one lock.
"""
from __future__ import annotations

import itertools
import threading
import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Tuple

if TYPE_CHECKING:
    from engine.image_task import ImageTask


@dataclass(frozen=True)
class BindingMarker:
    task: "ImageTask"
    generation: int


class TargetBinding:
    def __init__(self) -> None:
        self._markers: "weakref.WeakKeyDictionary[Any, BindingMarker]" = weakref.WeakKeyDictionary()
        self._generations = itertools.count(1)
        self._lock = threading.Lock()

    def _install_locked(self, target: Any, task: "ImageTask") -> Optional["ImageTask"]:
        previous = self._markers.get(target)
        generation = next(self._generations)
        task.generation = generation
        self._markers[target] = BindingMarker(task, generation)
        return previous.task if previous is not None else None

    def bind(self, target: Any, task: "ImageTask") -> Optional["ImageTask"]:
        """Install task as the owner of target.

        Returns:
            The task previously bound to target, so the caller can cancel it
        """
        with self._lock:
            return self._install_locked(target, task)

    def bind_unless_duplicate(self, target: Any, task: "ImageTask") -> Tuple[bool, Optional["ImageTask"]]:
        """Install task unless an active task for the same key already owns target.

        Returns:
            (installed, previous). When installed is False, previous is the
            in-flight task doing the same work and nothing changed.
        """
        with self._lock:
            marker = self._markers.get(target)
            if marker is not None:
                current = marker.task
                if current.key == task.key and current.is_active():
                    return False, current
            return True, self._install_locked(target, task)

    def current_task(self, target: Any) -> Optional["ImageTask"]:
        with self._lock:
            marker = self._markers.get(target)
            return marker.task if marker is not None else None

    def is_current_owner(self, target: Any, task: "ImageTask") -> bool:
        if target is None:
            return False
        with self._lock:
            marker = self._markers.get(target)
            return marker is not None and marker.task is task

    def clear(self, target: Any) -> Optional["ImageTask"]:
        """Remove target's marker, returning the task it named."""
        with self._lock:
            marker = self._markers.pop(target, None)
            return marker.task if marker is not None else None

    def release(self, target: Any, task: "ImageTask") -> bool:
        """Remove target's marker only if it still names task.

        Returns:
            True if task was the owner
        """
        if target is None:
            return False
        with self._lock:
            marker = self._markers.get(target)
            if marker is None or marker.task is not task:
                return False
            del self._markers[target]
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._markers)
