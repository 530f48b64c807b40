"""Image loading engine: tasks, target binding and the ImageWorker orchestrator."""

from .image_task import DeliveryStatus, ImageTask, ProductionResult, TaskState
from .image_worker import ImageWorker, create_image_worker
from .target_binding import TargetBinding

__all__ = [
    'DeliveryStatus',
    'ImageTask',
    'ImageWorker',
    'ProductionResult',
    'TargetBinding',
    'TaskState',
    'create_image_worker',
]
