import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RunKind(str, Enum):
    CRON = "cron"
    BACKGROUND = "background"
    TIMEOUT = "timeout"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


FINAL_STATUSES = (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.SKIPPED, RunStatus.CANCELLED)


class TaskRun(BaseModel):
    """
    Represents a single execution of a task: one cron firing, one background
    launch or one timeout-bounded call.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex[:8]}", description="Unique run identifier")
    task_name: str = Field(..., description="Name of the task this run belongs to")
    kind: RunKind
    status: RunStatus = RunStatus.PENDING
    error: Optional[str] = None
    exception: Optional[BaseException] = Field(default=None, exclude=True)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status in FINAL_STATUSES

    @property
    def duration(self) -> Optional[timedelta]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    def set_status(self, status: RunStatus):
        """
        Update the status of the run.
        """
        self.status = status
        if status == RunStatus.RUNNING:
            self.start_time = datetime.now(timezone.utc)
        elif status in FINAL_STATUSES:
            self.end_time = datetime.now(timezone.utc)

    def set_error(self, exc: BaseException):
        """
        Record a failed outcome.
        """
        self.exception = exc
        self.error = str(exc)
        self.set_status(RunStatus.FAILED)
