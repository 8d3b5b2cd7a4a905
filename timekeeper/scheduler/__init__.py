"""Persistent task scheduling — models, storage, waiting and recovery."""

from timekeeper.scheduler.engine import SchedulerEngine
from timekeeper.scheduler.models import TaskKey, TaskRecord
from timekeeper.scheduler.recovery import reconcile_tasks
from timekeeper.scheduler.store import TaskStore
from timekeeper.scheduler.waiter import Waiter

__all__ = [
    "TaskKey",
    "TaskRecord",
    "TaskStore",
    "Waiter",
    "SchedulerEngine",
    "reconcile_tasks",
]
