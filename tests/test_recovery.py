"""Tests for startup reconciliation of persisted tasks."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

from timekeeper.events.emitter import CompletionEmitter, TaskCompleted
from timekeeper.scheduler.engine import SchedulerEngine
from timekeeper.scheduler.models import TaskRecord, utcnow
from timekeeper.scheduler.recovery import reconcile_tasks
from timekeeper.scheduler.store import TaskStore

if TYPE_CHECKING:
    from pathlib import Path


async def _seed(db_path: Path, *records: TaskRecord) -> None:
    """Write records the way a previous process would have left them."""
    async with TaskStore(db_path=db_path) as previous:
        for record in records:
            await previous.put_if_absent(record)


async def test_reconcile_arms_every_task(store: TaskStore) -> None:
    past = utcnow() - timedelta(minutes=5)
    future = utcnow() + timedelta(minutes=5)
    await store.put_if_absent(TaskRecord(id="old", group="g", completion=past))
    await store.put_if_absent(
        TaskRecord(id="new", group="h", completion=future, repeat=timedelta(seconds=9))
    )
    arm = MagicMock()

    count = await reconcile_tasks(store, arm)

    assert count == 2
    arm.assert_any_call("g", "old", past)
    arm.assert_any_call("h", "new", future)


async def test_reconcile_empty_store(store: TaskStore) -> None:
    arm = MagicMock()
    assert await reconcile_tasks(store, arm) == 0
    arm.assert_not_called()


async def test_overdue_tasks_fire_once_after_restart(
    store: TaskStore, emitter: CompletionEmitter, recorder, eventually
) -> None:
    repeat = timedelta(minutes=10)
    await store.put_if_absent(
        TaskRecord(id="once", group="g", completion=utcnow() - timedelta(hours=1))
    )
    await store.put_if_absent(
        TaskRecord(id="loop", group="g", completion=utcnow() - timedelta(hours=1), repeat=repeat)
    )
    await store.put_if_absent(
        TaskRecord(id="later", group="g", completion=utcnow() + timedelta(hours=1))
    )

    engine = SchedulerEngine(store=store, emitter=emitter, timezone="UTC")
    started = utcnow()
    await engine.start()
    try:
        received = {(await recorder.next()).id, (await recorder.next()).id}
        assert received == {"once", "loop"}

        async def settled() -> bool:
            loop = await store.get_task("g", "loop")
            return (
                await store.exists("g", "once") is False
                and loop is not None
                and loop.completion > utcnow()
            )

        await eventually(settled)

        loop = await store.get_task("g", "loop")
        assert loop is not None
        assert loop.completion >= started + repeat

        await asyncio.sleep(0.2)
        assert len(recorder.events) == 2
        assert await store.exists("g", "later") is True
    finally:
        await engine.stop()


async def test_in_progress_task_resumes_remaining_wait(
    db_path: Path, emitter: CompletionEmitter, recorder
) -> None:
    await _seed(
        db_path, TaskRecord(id="t1", group="g", completion=utcnow() + timedelta(seconds=0.3))
    )

    async with TaskStore(db_path=db_path) as store:
        engine = SchedulerEngine(store=store, emitter=emitter, timezone="UTC")
        await engine.start()
        try:
            await asyncio.sleep(0.1)
            assert recorder.events == []

            assert await recorder.next() == TaskCompleted(id="t1", group="g")
            await asyncio.sleep(0.05)
        finally:
            await engine.stop()


async def test_restart_between_generations(
    db_path: Path, emitter: CompletionEmitter, recorder
) -> None:
    interval = timedelta(seconds=0.2)

    async with TaskStore(db_path=db_path) as store:
        first = SchedulerEngine(store=store, emitter=emitter, timezone="UTC")
        await first.start()
        await first.register("tick", interval, group="g")
        await recorder.next()
        await asyncio.sleep(0.05)
        await first.stop()

    async with TaskStore(db_path=db_path) as store:
        second = SchedulerEngine(store=store, emitter=emitter, timezone="UTC")
        await second.start()
        try:
            await recorder.next()
            await asyncio.sleep(0.05)
            assert await second.exists("tick", group="g") == [True]
        finally:
            await second.stop()


async def test_stop_waits_for_emitting_wake_before_restart(
    db_path: Path, emitter: CompletionEmitter, recorder
) -> None:
    release = asyncio.Event()

    async def block_listener(event: TaskCompleted) -> None:
        await release.wait()

    emitter.subscribe(block_listener)

    async with TaskStore(db_path=db_path) as store:
        first = SchedulerEngine(store=store, emitter=emitter, timezone="UTC")
        await first.start()
        await first.register("t", utcnow() + timedelta(seconds=0.1), group="g")
        await recorder.next()

        stopping = asyncio.create_task(first.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()

        release.set()
        await stopping
        assert await store.exists("g", "t") is False

    async with TaskStore(db_path=db_path) as store:
        second = SchedulerEngine(store=store, emitter=emitter, timezone="UTC")
        await second.start()
        try:
            await asyncio.sleep(0.3)
        finally:
            await second.stop()

    assert [event.id for event in recorder.events] == ["t"]
