"""SQLite connection helper over aiosqlite.

Connections are opened in WAL mode with ``synchronous=FULL`` so that a
committed write survives an abrupt process stop, and with a busy timeout so
a second process reading the same file does not fail immediately.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite

from timekeeper.config import settings

if TYPE_CHECKING:
    from pathlib import Path

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=FULL",
    "PRAGMA busy_timeout=5000",
)


async def get_connection(path_override: Path | None = None) -> aiosqlite.Connection:
    """Return an open aiosqlite connection.

    If *path_override* is given (test isolation), it takes priority over
    ``settings.database_path``.
    """
    path = path_override or settings.database_path
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(path))
    for pragma in _PRAGMAS:
        await db.execute(pragma)
    return db
