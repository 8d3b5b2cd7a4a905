"""Waiter — validates, fires and reschedules a task when its time comes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from timekeeper.events.emitter import TaskCompleted
from timekeeper.scheduler.models import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from timekeeper.events.emitter import CompletionEmitter
    from timekeeper.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


class Waiter:
    """Runs the wake-up half of the per-task protocol.

    The sleep itself is owned by whoever calls *arm* (the engine arms a
    date job per generation). When a job comes due, :meth:`wake` runs with
    the completion snapshot the job was armed with:

    1. the record is gone → the task was cancelled, stop;
    2. the stored completion differs from the snapshot → a newer generation
       owns the task, stop;
    3. otherwise emit ``TaskCompleted`` and wait for the emitter to return;
    4. repeating tasks move to ``now + repeat`` and are re-armed, one-shot
       tasks are deleted.

    Args:
        store: TaskStore holding the records.
        emitter: CompletionEmitter to publish on.
        arm: Callable ``(group, task_id, snapshot)`` that schedules another
            :meth:`wake` at *snapshot*.
    """

    def __init__(
        self,
        store: TaskStore,
        emitter: CompletionEmitter,
        arm: Callable[[str, str, datetime], None],
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._arm = arm
        self._in_flight: set[tuple[str, str, datetime]] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def wake(self, group: str, task_id: str, snapshot: datetime) -> bool:
        """Handle a due generation. Returns True if a completion was emitted."""
        generation = (group, task_id, snapshot)
        if generation in self._in_flight:
            logger.debug("Wake for %s/%s already in flight, skipping", group, task_id)
            return False

        self._in_flight.add(generation)
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
        try:
            return await self._fire(group, task_id, snapshot)
        finally:
            self._in_flight.discard(generation)
            self._tasks.discard(task)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for running wakes to finish. Returns False if some were still
        running when *timeout* expired."""
        pending = {task for task in self._tasks if task is not asyncio.current_task()}
        if not pending:
            return True
        logger.info("Waiting for %d in-flight wake(s) to finish", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                "%d wake(s) still running after %.1fs; they will be repeated on next start",
                len(still_running),
                timeout,
            )
        return not still_running

    async def _fire(self, group: str, task_id: str, snapshot: datetime) -> bool:
        record = await self._store.get_task(group, task_id)
        if record is None:
            logger.debug("Task %s/%s no longer exists, waiter stopped", group, task_id)
            return False
        if record.completion != snapshot:
            logger.debug(
                "Task %s/%s was rescheduled (%s != %s), stale waiter stopped",
                group,
                task_id,
                record.completion.isoformat(),
                snapshot.isoformat(),
            )
            return False

        logger.info("Task completed: %s/%s", group, task_id)
        await self._emitter.emit(TaskCompleted(id=task_id, group=group))

        if record.repeat is not None:
            next_completion = utcnow() + record.repeat
            moved = await self._store.set_completion(
                group, task_id, next_completion, expected=snapshot
            )
            if moved:
                self._arm(group, task_id, next_completion)
                logger.debug(
                    "Rescheduled %s/%s for %s", group, task_id, next_completion.isoformat()
                )
            else:
                logger.debug("Task %s/%s changed during emission, not re-armed", group, task_id)
        else:
            await self._store.delete(group, task_id, expected=snapshot)
        return True
