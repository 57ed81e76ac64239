from .task import CronTask, TaskFunc, validate_cron_schedule
from .run import TaskRun, RunKind, RunStatus

__all__ = ["CronTask", "TaskFunc", "validate_cron_schedule", "TaskRun", "RunKind", "RunStatus"]
