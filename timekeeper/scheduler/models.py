"""TaskRecord data model and timestamp helpers."""

from __future__ import annotations

import zoneinfo
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from timekeeper.config import settings

_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True)
class TaskKey:
    """Composite identity of a task: its group and its id within the group."""

    group: str
    id: str

    def __str__(self) -> str:
        return f"{self.group}/{self.id}"


@dataclass
class TaskRecord:
    """A persisted task.

    Attributes:
        id: Task identifier, unique within its group.
        group: Task group name.
        completion: Aware UTC datetime of the next (or only) firing.
        repeat: Interval for repeating tasks, None for one-shot tasks.
    """

    id: str
    group: str
    completion: datetime
    repeat: timedelta | None = None

    # -- Convenience properties ------------------------------------------------

    @property
    def key(self) -> TaskKey:
        return TaskKey(group=self.group, id=self.id)

    @property
    def is_repeating(self) -> bool:
        return self.repeat is not None

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.group,
            self.id,
            format_timestamp(self.completion),
            self.repeat // _MICROSECOND if self.repeat is not None else None,
        )

    @classmethod
    def from_row(cls, row: tuple) -> TaskRecord:
        """Deserialize from a SQLite row tuple."""
        return cls(
            group=row[0],
            id=row[1],
            completion=parse_timestamp(row[2]),
            repeat=timedelta(microseconds=row[3]) if row[3] is not None else None,
        )


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_utc(value: datetime, timezone: str | None = None) -> datetime:
    """Convert *value* to aware UTC.

    Naive datetimes are interpreted in *timezone* (default
    ``settings.scheduler_timezone``).
    """
    if value.tzinfo is None:
        tz = zoneinfo.ZoneInfo(timezone or settings.scheduler_timezone)
        value = value.replace(tzinfo=tz)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).isoformat()


def parse_timestamp(value: str) -> datetime:
    # Stored values are always written by format_timestamp, so always UTC.
    return to_utc(datetime.fromisoformat(value), "UTC")
