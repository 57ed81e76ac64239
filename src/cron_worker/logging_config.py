"""Logging setup for the worker: console handler plus task-tagged loggers.

Call ``setup_logging()`` once at service startup. All modules use ``logging.getLogger(__name__)``;
records emitted through ``TaskLoggerAdapter`` carry the task name as ``record.task``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

CONSOLE_FMT = "%(asctime)s %(levelname)-8s %(name)s [%(task)s]: %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


class TaskContextFilter(logging.Filter):
    """Make sure every record has a ``task`` attribute for the formatter."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "task"):
            record.task = "-"
        return True


class TaskLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter tagging each record with the task it belongs to."""

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter, task: str) -> None:
        super().__init__(logger, {"task": task})

    @property
    def task(self) -> str:
        return self.extra["task"]

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("task", self.extra["task"])
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger with a single console handler.

    Args:
        level: Minimum log level, as a number or a level name such as ``"DEBUG"``.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    # pythonw.exe sets sys.stderr to None
    if sys.stderr is not None:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.addFilter(TaskContextFilter())
        handler.setFormatter(logging.Formatter(CONSOLE_FMT, datefmt=DATE_FMT))
        root.addHandler(handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger.info("Logging initialized (level=%s)", logging.getLevelName(level))
