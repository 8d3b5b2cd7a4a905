"""Command surface — parse request payloads and run them against the engine."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

if TYPE_CHECKING:
    from timekeeper.scheduler.engine import SchedulerEngine

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a command. Carries either *data* or an *error*."""

    data: dict[str, Any] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """Serialize as a single JSON line."""
        if self.error:
            return json.dumps({"error": self.error})
        return json.dumps(self.data or {})


# -- Request models ------------------------------------------------------------


class RegisterTask(BaseModel):
    op: Literal["register"]
    id: str = Field(min_length=1, description="Task id, unique within its group")
    group: str | None = Field(default=None, description="Task group (default group if omitted)")
    at: datetime | None = Field(
        default=None,
        description="ISO 8601 completion date for a one-shot task",
    )
    every: timedelta | None = Field(
        default=None,
        description="Repeat interval (seconds or ISO 8601 duration) for a repeating task",
    )

    @model_validator(mode="after")
    def _one_schedule(self) -> RegisterTask:
        if (self.at is None) == (self.every is None):
            msg = "exactly one of 'at' or 'every' is required"
            raise ValueError(msg)
        if self.every is not None and self.every <= timedelta(0):
            msg = "'every' must be a positive interval"
            raise ValueError(msg)
        return self


class CancelTasks(BaseModel):
    op: Literal["cancel"]
    ids: list[str] = Field(min_length=1)
    group: str | None = None


class QueryTasks(BaseModel):
    op: Literal["exists", "repeatable", "repeat_intervals", "completion_dates", "ids", "groups"]
    ids: list[str] = Field(default_factory=list)
    group: str | None = None


Command = Annotated[RegisterTask | CancelTasks | QueryTasks, Field(discriminator="op")]

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(payload: dict[str, Any] | str) -> RegisterTask | CancelTasks | QueryTasks:
    """Validate a dict or JSON string into a command model."""
    if isinstance(payload, str):
        return _command_adapter.validate_json(payload)
    return _command_adapter.validate_python(payload)


# -- Execution -----------------------------------------------------------------


async def execute_command(
    engine: SchedulerEngine, payload: dict[str, Any] | str
) -> CommandResult:
    """Run one command. Validation problems are returned as errors; store
    faults propagate."""
    try:
        command = parse_command(payload)
    except ValidationError as exc:
        logger.debug("Rejected command: %s", exc)
        return CommandResult(error=f"Invalid command: {exc.errors(include_url=False)}")

    if isinstance(command, RegisterTask):
        schedule = command.at if command.at is not None else command.every
        created = await engine.register(command.id, schedule, group=command.group)
        return CommandResult(data={"registered": created})

    if isinstance(command, CancelTasks):
        removed = await engine.cancel(command.ids, group=command.group)
        return CommandResult(data={"cancelled": removed})

    return await _run_query(engine, command)


async def _run_query(engine: SchedulerEngine, query: QueryTasks) -> CommandResult:
    if query.op == "groups":
        return CommandResult(data={"groups": sorted(await engine.list_groups())})
    if query.op == "ids":
        return CommandResult(data={"ids": sorted(await engine.list_ids(query.group))})
    if not query.ids:
        return CommandResult(error=f"'{query.op}' requires at least one id")

    if query.op == "exists":
        values: list[Any] = await engine.exists(query.ids, query.group)
    elif query.op == "repeatable":
        values = await engine.is_repeating(query.ids, query.group)
    elif query.op == "repeat_intervals":
        values = [
            interval.total_seconds() if interval is not None else None
            for interval in await engine.repeat_intervals(query.ids, query.group)
        ]
    else:
        values = [
            date.isoformat() if date is not None else None
            for date in await engine.completion_dates(query.ids, query.group)
        ]
    return CommandResult(data={"ids": query.ids, query.op: values})
