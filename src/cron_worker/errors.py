from typing import Optional


class WorkerError(Exception):
    """Base for all cron_worker exceptions."""


class ScheduleValidationError(WorkerError, ValueError):
    """Cron expression is malformed or fires more often than allowed."""

    def __init__(self, expression: str, reason: str):
        super().__init__(f"invalid cron schedule '{expression}': {reason}")
        self.expression = expression
        self.reason = reason


class DuplicateTaskError(WorkerError):
    def __init__(self, name: str):
        super().__init__(f"task '{name}' already scheduled")
        self.name = name


class TaskNotFoundError(WorkerError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"task '{name}' not found")
        self.name = name


class TaskExecutionError(WorkerError):
    """
    Failure outcome of a task body.

    Task functions raise this (or a subclass) to report an expected failure.
    The task name is filled in by the execution wrapper when omitted.
    """

    def __init__(self, message: str, task_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.task_name = task_name

    def __str__(self) -> str:
        if self.task_name:
            return f"task '{self.task_name}': {self.message}"
        return self.message


class TaskPanicError(TaskExecutionError):
    """An unexpected exception escaped a task body and was recovered."""

    def __init__(self, task_name: str, payload: BaseException):
        super().__init__(f"panicked: {payload!r}", task_name=task_name)
        self.payload = payload


class TaskTimeoutError(WorkerError, TimeoutError):
    def __init__(self, task_name: str, timeout: float, cause: Optional[BaseException] = None):
        reason = "timed out" if cause is None or isinstance(cause, DeadlineExceededError) else "cancelled"
        super().__init__(f"task '{task_name}' {reason} after {timeout}s")
        self.task_name = task_name
        self.timeout = timeout
        self.cause = cause


class ContextCancelledError(WorkerError):
    def __init__(self, message: str = "context cancelled"):
        super().__init__(message)


class DeadlineExceededError(ContextCancelledError):
    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class LockBackendError(WorkerError):
    """The lock backend could not complete an acquire or release."""
