"""Timekeeper entry point.

Opens the task store, reconciles persisted tasks and then serves JSON-line
commands from stdin. Every completion is written to stdout as a JSON line::

    $ echo '{"op": "register", "id": "t1", "every": 5}' | python -m timekeeper.main
    {"registered": true}
    {"event": "completed", "id": "t1", "group": "default"}
"""

import asyncio
import json
import logging
import sys

from timekeeper.commands import execute_command
from timekeeper.config import settings
from timekeeper.events.emitter import CompletionEmitter, TaskCompleted
from timekeeper.scheduler.engine import SchedulerEngine
from timekeeper.scheduler.store import TaskStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def _print_event(event: TaskCompleted) -> None:
    print(json.dumps({"event": "completed", **event.to_dict()}), flush=True)


async def _serve_commands(engine: SchedulerEngine) -> None:
    """Execute stdin commands until EOF."""
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            logger.info("stdin closed, no more commands will be read")
            return
        line = line.strip()
        if not line:
            continue
        result = await execute_command(engine, line)
        print(result.to_content(), flush=True)


async def run() -> None:
    """Run the scheduler until cancelled."""
    store = TaskStore.get()
    emitter = CompletionEmitter.get()
    emitter.subscribe(_print_event)

    await store.open()
    engine = SchedulerEngine(store=store, emitter=emitter)
    try:
        await engine.start()
        await _serve_commands(engine)
        # Keep firing already-registered tasks after stdin is exhausted.
        await asyncio.Event().wait()
    finally:
        # Running wakes finish before the store closes.
        await engine.stop(drain_timeout=settings.shutdown_timeout)
        await store.close()


def main() -> None:
    """Start Timekeeper with the configured database."""
    logger.info("Starting Timekeeper with database %s...", settings.database_path)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
