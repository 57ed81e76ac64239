"""
Background Task Worker

This package runs recurring and ad-hoc background work inside a service process.

Core Concepts:

Cron task:
    A named unit of work registered with a six-field cron expression (seconds first).
    The recurring interval of a schedule may not be shorter than one minute.

Run:
    A single execution of a task: one cron firing, one background launch or one
    timeout-bounded call. Failures and crashes of a run are recorded and logged,
    never propagated into the scheduler.

Distributed mode:
    When the worker is given a lock backend shared by all replicas of the service,
    each cron firing takes a lock keyed by the task name, so only one replica runs it.

Relationships:
    - A Worker owns the cron engine, the task registry and every run it starts.
    - ``Worker.stop()`` waits for every run, cron firings included.
"""

from .context import ExecutionContext
from .errors import (
    WorkerError,
    ScheduleValidationError,
    DuplicateTaskError,
    TaskNotFoundError,
    TaskExecutionError,
    TaskPanicError,
    TaskTimeoutError,
    ContextCancelledError,
    DeadlineExceededError,
    LockBackendError,
)
from .domain import CronTask, TaskFunc, TaskRun, RunKind, RunStatus, validate_cron_schedule
from .locks import LockBackend, InMemoryLockBackend, LeaseLockBackend, PostgresAdvisoryLockBackend, LockMode
from .settings import WorkerSettings
from .worker import Worker

__all__ = [
    "ExecutionContext",
    "Worker",
    "WorkerSettings",
    "CronTask",
    "TaskFunc",
    "TaskRun",
    "RunKind",
    "RunStatus",
    "validate_cron_schedule",
    "LockBackend",
    "InMemoryLockBackend",
    "LeaseLockBackend",
    "PostgresAdvisoryLockBackend",
    "LockMode",
    "WorkerError",
    "ScheduleValidationError",
    "DuplicateTaskError",
    "TaskNotFoundError",
    "TaskExecutionError",
    "TaskPanicError",
    "TaskTimeoutError",
    "ContextCancelledError",
    "DeadlineExceededError",
    "LockBackendError",
]
