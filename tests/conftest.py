"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import pytest

from timekeeper.events.emitter import CompletionEmitter, TaskCompleted
from timekeeper.scheduler.engine import SchedulerEngine
from timekeeper.scheduler.store import TaskStore

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path


class EventRecorder:
    """Listener that keeps every event it receives, with its arrival time."""

    def __init__(self) -> None:
        self.events: list[TaskCompleted] = []
        self.times: list[float] = []
        self._queue: asyncio.Queue[TaskCompleted] = asyncio.Queue()

    def __call__(self, event: TaskCompleted) -> None:
        self.events.append(event)
        self.times.append(time.monotonic())
        self._queue.put_nowait(event)

    async def next(self, timeout: float = 2.0) -> TaskCompleted:
        return await asyncio.wait_for(self._queue.get(), timeout)


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Reset singletons before and after each test."""
    TaskStore._reset()
    CompletionEmitter._reset()
    yield
    TaskStore._reset()
    CompletionEmitter._reset()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
async def store(db_path: Path):
    """An open TaskStore backed by a temp database."""
    s = TaskStore(db_path=db_path)
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def emitter() -> CompletionEmitter:
    return CompletionEmitter.get()


@pytest.fixture
def recorder(emitter: CompletionEmitter) -> EventRecorder:
    rec = EventRecorder()
    emitter.subscribe(rec)
    return rec


@pytest.fixture
async def engine(store: TaskStore, emitter: CompletionEmitter):
    eng = SchedulerEngine(store=store, emitter=emitter, timezone="UTC", default_group="default")
    yield eng
    await eng.stop()


@pytest.fixture
def eventually() -> Callable[[Callable[[], Awaitable[bool]]], Awaitable[None]]:
    """Poll an async predicate until it holds, failing after a timeout."""

    async def _wait(check: Callable[[], Awaitable[bool]], timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while not await check():
            if time.monotonic() > deadline:
                pytest.fail("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
