"""SchedulerEngine — task registration, queries and APScheduler lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from timekeeper.config import settings
from timekeeper.scheduler.models import TaskRecord, to_utc, utcnow
from timekeeper.scheduler.recovery import reconcile_tasks
from timekeeper.scheduler.waiter import Waiter

if TYPE_CHECKING:
    from apscheduler.job import Job

    from timekeeper.events.emitter import CompletionEmitter
    from timekeeper.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

Schedule = datetime | timedelta


def _as_ids(ids: str | Iterable[str]) -> list[str]:
    if isinstance(ids, str):
        return [ids]
    return list(ids)


class SchedulerEngine:
    """Public task API. Arms one date job per task generation on an
    APScheduler ``AsyncIOScheduler``.

    Args:
        store: TaskStore for persistence (must be open before use).
        emitter: CompletionEmitter that receives completion events.
        timezone: IANA timezone used for naive registration dates
            (default from settings).
        default_group: Group used when a call omits one (default from settings).
    """

    def __init__(
        self,
        store: TaskStore,
        emitter: CompletionEmitter,
        timezone: str | None = None,
        default_group: str | None = None,
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._timezone = timezone or settings.scheduler_timezone
        self._default_group = default_group or settings.default_group
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._waiter = Waiter(store, emitter, self._arm)
        self._running = False
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def default_group(self) -> str:
        return self._default_group

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Re-arm every stored task, then start the scheduler."""
        if self._running:
            return
        count = await reconcile_tasks(self._store, self._arm)
        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started with %d task(s) (tz=%s)", count, self._timezone)

    async def stop(self, drain_timeout: float | None = None) -> None:
        """Drop all pending jobs, let running wakes finish, then shut down.

        Wakes already emitting are awaited (up to *drain_timeout* seconds) so
        their records are deleted or advanced before the store is closed.
        Records stay in the store, so the next start resumes them.
        """
        if self._running:
            self._stopping = True
            try:
                self._scheduler.remove_all_jobs()
                await self._waiter.drain(drain_timeout)
                self._scheduler.shutdown(wait=False)
            finally:
                self._stopping = False
            self._running = False
            logger.info("Scheduler stopped")

    # -- Registration / cancellation -------------------------------------------

    async def register(
        self,
        task_id: str,
        schedule: Schedule,
        group: str | None = None,
    ) -> bool:
        """Create a task and arm its waiter.

        *schedule* is either an absolute datetime (one-shot) or a timedelta
        (repeat interval, first firing at now + interval). Returns False
        without touching the store if the key is taken or the date is not
        in the future.
        """
        group = self._default_group if group is None else group
        now = utcnow()

        if isinstance(schedule, timedelta):
            if schedule <= timedelta(0):
                msg = f"Repeat interval must be positive, got {schedule}"
                raise ValueError(msg)
            record = TaskRecord(id=task_id, group=group, completion=now + schedule, repeat=schedule)
        elif isinstance(schedule, datetime):
            completion = to_utc(schedule, self._timezone)
            if completion <= now:
                logger.info(
                    "Ignoring task %s/%s: date %s is not in the future",
                    group,
                    task_id,
                    completion.isoformat(),
                )
                return False
            record = TaskRecord(id=task_id, group=group, completion=completion)
        else:
            msg = f"Schedule must be a datetime or timedelta, got {type(schedule).__name__}"
            raise TypeError(msg)

        if not await self._store.put_if_absent(record):
            logger.info("Ignoring task %s/%s: already registered", group, task_id)
            return False

        self._arm(record.group, record.id, record.completion)
        logger.info(
            "Registered task %s (completion=%s, repeat=%s)",
            record.key,
            record.completion.isoformat(),
            record.repeat,
        )
        return True

    async def cancel(self, ids: str | Iterable[str], group: str | None = None) -> int:
        """Delete the given tasks. Absent ids are skipped. Returns the count removed.

        A waiter still pending for a cancelled task finds the record gone when
        it wakes and stops without firing.
        """
        group = self._default_group if group is None else group
        removed = 0
        for task_id in _as_ids(ids):
            if await self._store.delete(group, task_id):
                removed += 1
                logger.info("Cancelled task: %s/%s", group, task_id)
        return removed

    # -- Queries ---------------------------------------------------------------

    async def _records(
        self, ids: str | Iterable[str], group: str | None
    ) -> list[TaskRecord | None]:
        group = self._default_group if group is None else group
        return [await self._store.get_task(group, task_id) for task_id in _as_ids(ids)]

    async def exists(self, ids: str | Iterable[str], group: str | None = None) -> list[bool]:
        return [record is not None for record in await self._records(ids, group)]

    async def is_repeating(
        self, ids: str | Iterable[str], group: str | None = None
    ) -> list[bool]:
        return [
            record is not None and record.is_repeating
            for record in await self._records(ids, group)
        ]

    async def repeat_intervals(
        self, ids: str | Iterable[str], group: str | None = None
    ) -> list[timedelta | None]:
        """Repeat interval per requested id; None for one-shot or unknown ids."""
        return [
            record.repeat if record is not None else None
            for record in await self._records(ids, group)
        ]

    async def completion_dates(
        self, ids: str | Iterable[str], group: str | None = None
    ) -> list[datetime | None]:
        """Next completion per requested id; None for unknown ids."""
        return [
            record.completion if record is not None else None
            for record in await self._records(ids, group)
        ]

    async def list_ids(self, group: str | None = None) -> set[str]:
        return await self._store.list_ids(self._default_group if group is None else group)

    async def list_groups(self) -> set[str]:
        return await self._store.list_groups()

    # -- Internal --------------------------------------------------------------

    def _arm(self, group: str, task_id: str, snapshot: datetime) -> Job | None:
        """Add a date job that wakes the waiter for this generation.

        While stopping nothing is armed; the next start reconciles the record.

        Jobs are keyed by generation, so arming the same snapshot twice
        replaces the pending job instead of adding a second one. Past
        snapshots run immediately (no misfire grace limit).
        """
        if self._stopping:
            logger.debug("Not arming %s/%s while stopping", group, task_id)
            return None
        return self._scheduler.add_job(
            self._waiter.wake,
            trigger=DateTrigger(run_date=snapshot, timezone=self._timezone),
            id=f"{group!r}:{task_id!r}@{snapshot.isoformat()}",
            name=f"{group}/{task_id}",
            args=[group, task_id, snapshot],
            misfire_grace_time=None,
            replace_existing=True,
        )
