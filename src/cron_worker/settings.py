import os
from datetime import timedelta, tzinfo
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from cron_worker.locks.factory import LockMode

ENV_PREFIX = "WORKER_"


class WorkerSettings(BaseModel):
    """
    Worker configuration, usually loaded from ``WORKER_*`` environment variables.
    """
    tick_interval_seconds: float = Field(1.0, gt=0, description="How often the cron loop checks for due tasks")
    min_interval_seconds: int = Field(60, ge=1, description="Shortest allowed recurring interval of a cron schedule")
    lock_mode: LockMode = Field(LockMode.ADVISORY, description="Distributed lock backend built for lock_database_url")
    lock_database_url: Optional[str] = Field(None, description="SQLAlchemy async URL of the database shared by replicas")
    lease_ttl_seconds: int = Field(300, ge=1, description="Lifetime of a lease when lock_mode is 'lease'")
    recent_runs_limit: int = Field(20, ge=1, description="Number of runs kept in memory per task name")
    log_level: str = Field("INFO", description="Level passed to setup_logging")
    cron_timezone: str = Field("UTC", description="IANA time zone cron expressions are evaluated in")

    @field_validator("cron_timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone '{value}'") from e
        return value

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.cron_timezone)

    @property
    def min_interval(self) -> timedelta:
        return timedelta(seconds=self.min_interval_seconds)

    @property
    def lease_ttl(self) -> timedelta:
        return timedelta(seconds=self.lease_ttl_seconds)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WorkerSettings":
        """
        Build settings from environment variables; unset variables keep their defaults.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)
