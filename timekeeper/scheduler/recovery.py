"""Startup reconciliation — re-arm every persisted task."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from timekeeper.scheduler.models import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from timekeeper.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


async def reconcile_tasks(
    store: TaskStore,
    arm: Callable[[str, str, datetime], None],
) -> int:
    """Arm a waiter for every stored task with its current completion time.

    Tasks whose completion passed while the process was down are armed with
    their past snapshot and therefore fire as soon as the scheduler runs.

    Returns the number of tasks armed (useful for testing).
    """
    tasks = await store.list_tasks()
    now = utcnow()
    overdue = 0

    for task in tasks:
        if task.completion <= now:
            overdue += 1
            logger.info(
                "Task %s was due at %s while offline, firing now",
                task.key,
                task.completion.isoformat(),
            )
        arm(task.group, task.id, task.completion)

    logger.info("Reconciled %d task(s), %d overdue", len(tasks), overdue)
    return len(tasks)
