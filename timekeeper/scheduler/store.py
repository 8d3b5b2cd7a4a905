"""TaskStore — aiosqlite persistence for task records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from timekeeper.db import get_connection
from timekeeper.scheduler.models import TaskRecord, format_timestamp

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS tasks (
    task_group TEXT NOT NULL,
    task_id TEXT NOT NULL,
    completion TEXT NOT NULL,
    repeat_us INTEGER,
    PRIMARY KEY (task_group, task_id)
)
"""

_COLUMNS = "task_group, task_id, completion, repeat_us"


class TaskStore:
    """Persists task records in SQLite, keyed by (group, id).

    Singleton accessed via ``TaskStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    The store holds one connection between :meth:`open` and :meth:`close`.
    aiosqlite runs every statement on a single worker thread, so each
    mutation below is one atomic statement followed by a commit.
    """

    _instance: TaskStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    @classmethod
    def get(cls) -> TaskStore:
        """Return the shared TaskStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Lifecycle -------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._db is not None:
            return
        db = await get_connection(self._db_path)
        await db.execute(_CREATE_TABLE)
        await db.commit()
        self._db = db
        logger.info("TaskStore opened (%d task(s))", await self.count_tasks())

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("TaskStore closed")

    async def __aenter__(self) -> TaskStore:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -- Internal helpers ------------------------------------------------------

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            msg = "TaskStore is not open — call open() first"
            raise RuntimeError(msg)
        return self._db

    async def _write(self, sql: str, params: tuple) -> int:
        db = self._conn()
        cursor = await db.execute(sql, params)
        await db.commit()
        return cursor.rowcount

    # -- Reads -----------------------------------------------------------------

    async def exists(self, group: str, task_id: str) -> bool:
        cursor = await self._conn().execute(
            "SELECT 1 FROM tasks WHERE task_group = ? AND task_id = ?",
            (group, task_id),
        )
        return await cursor.fetchone() is not None

    async def get_task(self, group: str, task_id: str) -> TaskRecord | None:
        """Fetch a record by key, or None if not found."""
        cursor = await self._conn().execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_group = ? AND task_id = ?",
            (group, task_id),
        )
        row = await cursor.fetchone()
        return TaskRecord.from_row(row) if row else None

    async def list_tasks(self) -> list[TaskRecord]:
        """Return every stored record, ordered by group then id."""
        cursor = await self._conn().execute(
            f"SELECT {_COLUMNS} FROM tasks ORDER BY task_group, task_id"
        )
        rows = await cursor.fetchall()
        return [TaskRecord.from_row(row) for row in rows]

    async def list_ids(self, group: str) -> set[str]:
        cursor = await self._conn().execute(
            "SELECT task_id FROM tasks WHERE task_group = ?", (group,)
        )
        return {row[0] for row in await cursor.fetchall()}

    async def list_groups(self) -> set[str]:
        """Return the groups that currently own at least one task."""
        cursor = await self._conn().execute("SELECT DISTINCT task_group FROM tasks")
        return {row[0] for row in await cursor.fetchall()}

    async def count_tasks(self) -> int:
        cursor = await self._conn().execute("SELECT COUNT(*) FROM tasks")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # -- Writes ----------------------------------------------------------------

    async def put_if_absent(self, record: TaskRecord) -> bool:
        """Insert *record* unless its key is taken. Returns True if inserted."""
        inserted = await self._write(
            f"INSERT OR IGNORE INTO tasks ({_COLUMNS}) VALUES (?, ?, ?, ?)",
            record.to_row(),
        ) > 0
        if inserted:
            logger.debug("Stored task %s (completion=%s)", record.key, record.completion)
        return inserted

    async def set_completion(
        self,
        group: str,
        task_id: str,
        completion: datetime,
        *,
        expected: datetime | None = None,
    ) -> bool:
        """Move a task's completion time. Returns True if a row was updated.

        With *expected*, the update only applies while the stored completion
        still equals it.
        """
        sql = "UPDATE tasks SET completion = ? WHERE task_group = ? AND task_id = ?"
        params: tuple = (format_timestamp(completion), group, task_id)
        if expected is not None:
            sql += " AND completion = ?"
            params += (format_timestamp(expected),)
        return await self._write(sql, params) > 0

    async def delete(
        self,
        group: str,
        task_id: str,
        *,
        expected: datetime | None = None,
    ) -> bool:
        """Delete a task. Returns True if a row was removed.

        With *expected*, only the generation whose completion equals it is
        removed.
        """
        sql = "DELETE FROM tasks WHERE task_group = ? AND task_id = ?"
        params: tuple = (group, task_id)
        if expected is not None:
            sql += " AND completion = ?"
            params += (format_timestamp(expected),)
        deleted = await self._write(sql, params) > 0
        if deleted:
            logger.debug("Deleted task %s/%s", group, task_id)
        return deleted
