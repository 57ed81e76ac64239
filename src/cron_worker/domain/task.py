from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field

from cron_worker.context import ExecutionContext
from cron_worker.errors import ScheduleValidationError

# A unit of work. Coroutine functions run on the event loop, plain functions
# in a worker thread. Raising TaskExecutionError reports a failure; any other
# exception is treated as a panic.
TaskFunc = Callable[[ExecutionContext], Union[Awaitable[None], None]]

CRON_FIELDS = 6
MIN_INTERVAL = timedelta(minutes=1)


def validate_cron_schedule(
    expression: str,
    now: Optional[datetime] = None,
    min_interval: timedelta = MIN_INTERVAL,
) -> None:
    """
    Validate a six-field cron expression (seconds first).

    The first firing may be less than ``min_interval`` away, but the schedule
    must not repeat more often than once per ``min_interval``.

    Raises:
        ScheduleValidationError: If the expression does not parse or its
            recurring interval is shorter than ``min_interval``.
    """
    fields = expression.split()
    if len(fields) != CRON_FIELDS:
        raise ScheduleValidationError(expression, f"expected {CRON_FIELDS} fields with seconds first, got {len(fields)}")

    now = now or datetime.now(timezone.utc)
    try:
        cron = croniter(expression, now, second_at_beginning=True)
        next1 = cron.get_next(datetime)
        next2 = cron.get_next(datetime)
    except (ValueError, KeyError) as e:
        raise ScheduleValidationError(expression, str(e)) from e

    interval = next2 - next1
    if interval < min_interval:
        raise ScheduleValidationError(
            expression,
            f"schedule interval must be at least {min_interval.total_seconds():g}s, got {interval.total_seconds():g}s",
        )


def next_fire_time(expression: str, after: datetime) -> datetime:
    return croniter(expression, after, second_at_beginning=True).get_next(datetime)


class CronTask(BaseModel):
    """
    A named recurring task registered with the worker.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Unique task name")
    schedule: str = Field(..., description="Six-field cron expression, seconds first")
    handle: str = Field(..., description="Engine entry id assigned on registration")
    func: Any = Field(..., exclude=True, description="Task function invoked on every firing")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Registration timestamp with UTC timezone"
    )

    @property
    def readable_string(self) -> str:
        return f"Task Name: '{self.name}'\nScheduled to recur with cron expression: {self.schedule}"
