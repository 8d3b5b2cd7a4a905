"""Tests for CompletionEmitter."""

import logging

from timekeeper.events.emitter import CompletionEmitter, TaskCompleted

EVENT = TaskCompleted(id="t1", group="g")


def test_singleton() -> None:
    assert CompletionEmitter.get() is CompletionEmitter.get()


def test_event_to_dict() -> None:
    assert EVENT.to_dict() == {"id": "t1", "group": "g"}


async def test_sync_and_async_listeners() -> None:
    emitter = CompletionEmitter.get()
    received: list[tuple[str, TaskCompleted]] = []

    def on_sync(event: TaskCompleted) -> None:
        received.append(("sync", event))

    async def on_async(event: TaskCompleted) -> None:
        received.append(("async", event))

    emitter.subscribe(on_sync)
    emitter.subscribe(on_async)

    assert await emitter.emit(EVENT) == 2
    assert received == [("sync", EVENT), ("async", EVENT)]


async def test_group_filter() -> None:
    emitter = CompletionEmitter.get()
    only_g: list[TaskCompleted] = []
    everything: list[TaskCompleted] = []
    emitter.subscribe(only_g.append, group="g")
    emitter.subscribe(everything.append)

    await emitter.emit(EVENT)
    await emitter.emit(TaskCompleted(id="t2", group="other"))

    assert only_g == [EVENT]
    assert len(everything) == 2


async def test_unsubscribe() -> None:
    emitter = CompletionEmitter.get()
    received: list[TaskCompleted] = []
    unsubscribe = emitter.subscribe(received.append)
    assert emitter.listener_count == 1

    unsubscribe()
    unsubscribe()  # second call is harmless

    assert emitter.listener_count == 0
    assert await emitter.emit(EVENT) == 0
    assert received == []


async def test_failing_listener_does_not_block_others(caplog) -> None:
    emitter = CompletionEmitter.get()
    received: list[TaskCompleted] = []

    async def broken(event: TaskCompleted) -> None:
        raise RuntimeError("boom")

    emitter.subscribe(broken)
    emitter.subscribe(received.append)

    with caplog.at_level(logging.ERROR, logger="timekeeper.events.emitter"):
        delivered = await emitter.emit(EVENT)

    assert delivered == 1
    assert received == [EVENT]
    assert "Completion listener failed for g/t1" in caplog.text
