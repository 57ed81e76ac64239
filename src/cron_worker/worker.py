import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from cron_worker.context import ExecutionContext
from cron_worker.coordinator import DistributedCoordinator
from cron_worker.domain.run import RunKind, RunStatus, TaskRun
from cron_worker.domain.task import CronTask, TaskFunc, validate_cron_schedule
from cron_worker.engine import CronEngine
from cron_worker.errors import TaskNotFoundError, TaskTimeoutError
from cron_worker.execution import InFlightTracker, execute_task
from cron_worker.locks.factory import create_lock_backend
from cron_worker.locks.protocol import LockBackend
from cron_worker.locks.sqlalchemy import LeaseLockBackend
from cron_worker.logging_config import TaskLoggerAdapter
from cron_worker.registry import TaskRegistry
from cron_worker.settings import WorkerSettings


class Worker:
    """
    Runs cron tasks and ad-hoc background work for one service instance.

    With a lock backend that supports distributed locking, each cron firing
    runs on at most one replica. Background and timeout-bounded work always
    runs locally. Every execution, cron firings included, is tracked so that
    ``stop()`` returns only after all of it has finished.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        lock_backend: Optional[LockBackend] = None,
        settings: Optional[WorkerSettings] = None,
    ):
        self.ctx = ctx
        self.settings = settings or WorkerSettings()
        self.lock_backend = lock_backend
        self._engine = CronEngine(tick_interval=self.settings.tick_interval_seconds, tz=self.settings.tz)
        self._registry = TaskRegistry()
        self._coordinator = DistributedCoordinator(lock_backend)
        self._in_flight = InFlightTracker()
        self._runs: Dict[str, Deque[TaskRun]] = {}
        self._db_engine: Optional[AsyncEngine] = None

        if self._coordinator.enabled:
            ctx.logger.info("Distributed locking enabled for worker tasks")
        elif lock_backend is not None:
            ctx.logger.warning(
                "Lock backend %s does not support distributed locking; "
                "every replica will run every cron firing",
                type(lock_backend).__name__,
            )
        else:
            ctx.logger.warning("No lock backend configured; every replica will run every cron firing")

    @classmethod
    def from_settings(cls, ctx: ExecutionContext, settings: Optional[WorkerSettings] = None) -> "Worker":
        """
        Build a worker and, when ``lock_database_url`` is set, its lock backend.

        The database engine created here is disposed by ``stop()``.
        """
        settings = settings or WorkerSettings.from_env()
        db_engine = None
        if settings.lock_database_url:
            db_engine = create_async_engine(settings.lock_database_url)
        lock_backend = create_lock_backend(db_engine, settings.lock_mode, settings.lease_ttl)
        worker = cls(ctx, lock_backend, settings)
        worker._db_engine = db_engine
        return worker

    @property
    def distributed(self) -> bool:
        return self._coordinator.enabled

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def logger(self, name: str) -> TaskLoggerAdapter:
        return TaskLoggerAdapter(self.ctx.logger, name)

    async def start(self):
        """
        Start firing scheduled cron tasks.
        """
        if isinstance(self.lock_backend, LeaseLockBackend):
            await self.lock_backend.create_tables()
        await self._engine.start()
        self.ctx.logger.info("Worker started (%d cron tasks scheduled)", len(self._registry))

    async def stop(self):
        """
        Cancel the root context, stop firing and wait for all tracked work to finish.
        """
        self.ctx.cancel()
        await self._engine.stop()
        await self._in_flight.wait()
        if self._db_engine is not None:
            await self._db_engine.dispose()
            self._db_engine = None
        self.ctx.logger.info("Worker stopped")

    async def __aenter__(self) -> "Worker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def schedule_cron(self, name: str, schedule: str, fn: TaskFunc) -> CronTask:
        """
        Schedule ``fn`` to run at the given cron intervals.

        The schedule has six fields with seconds first and is evaluated in
        ``settings.cron_timezone`` (UTC by default):
        - "0 */5 * * * *" - every 5 minutes
        - "0 0 * * * *" - every hour
        - "0 0 0 * * *" - every day at midnight

        Raises:
            ScheduleValidationError: If the schedule is invalid or repeats more often than allowed.
            DuplicateTaskError: If a task with this name is already scheduled.
        """
        validate_cron_schedule(schedule, min_interval=self.settings.min_interval)
        task = self._registry.register(
            name,
            schedule,
            fn,
            lambda: self._engine.add(schedule, lambda: self._dispatch(name, fn)),
        )
        self.logger(name).debug("Scheduled with cron expression %s", schedule)
        return task

    def remove_cron_task(self, name: str) -> None:
        """
        Remove a scheduled cron task by name. A firing already running is not interrupted.

        Raises:
            TaskNotFoundError: If no task with this name is scheduled.
        """
        self._registry.unregister(name, self._engine.remove)
        self._coordinator.forget(name)
        self.logger(name).debug("Removed from schedule")

    def get_scheduled_tasks(self) -> List[str]:
        return self._registry.names()

    def get_task(self, name: str) -> Optional[CronTask]:
        return self._registry.get(name)

    def next_run_time(self, name: str) -> Optional[datetime]:
        task = self._registry.get(name)
        if task is None:
            return None
        return self._engine.next_run(task.handle)

    def get_recent_runs(self, name: str, limit: int = 10) -> List[TaskRun]:
        """
        Most recent runs of ``name``, newest first.
        """
        runs = self._runs.get(name)
        if not runs:
            return []
        return list(reversed(runs))[:limit]

    async def trigger_cron_task(self, name: str) -> TaskRun:
        """
        Run one firing of a scheduled task now and wait for it.

        The firing takes the same local and distributed locks as a scheduled one,
        so it is skipped if the task is already running.

        Raises:
            TaskNotFoundError: If no task with this name is scheduled.
        """
        task = self._registry.get(name)
        if task is None:
            raise TaskNotFoundError(name)
        return await self._in_flight.spawn(self._fire(name, task.func), name=f"cron:{name}")

    def run_in_background(self, name: str, fn: TaskFunc) -> None:
        """
        Run ``fn`` on its own asyncio task. Failures are logged, never raised.

        Must be called while the event loop is running.
        """
        run = self._new_run(name, RunKind.BACKGROUND)
        self._in_flight.spawn(
            execute_task(name, fn, self._task_context(name), run, self.logger(name)),
            name=f"background:{name}",
        )

    async def run_with_timeout(self, name: str, timeout: Union[float, timedelta], fn: TaskFunc) -> None:
        """
        Run ``fn`` and wait for it at most ``timeout``.

        On timeout the task is not killed: it keeps running in the background
        until it returns or notices its context is done.

        Raises:
            TaskTimeoutError: If the deadline passes, or the worker is stopped, first.
            TaskExecutionError: If ``fn`` fails; a crash is raised as TaskPanicError.
        """
        seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
        log = self.logger(name)
        deadline_ctx = self.ctx.with_timeout(seconds)
        ctx = deadline_ctx.with_logger(log)
        run = self._new_run(name, RunKind.TIMEOUT)
        task = self._in_flight.spawn(
            execute_task(name, fn, ctx, run, log, log_failures=False),
            name=f"timeout:{name}",
        )

        expired = asyncio.ensure_future(ctx.wait())
        try:
            done, _ = await asyncio.wait({task, expired}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            expired.cancel()

        # A task that exits because it saw its context end finishes together
        # with the deadline; that is still a timeout.
        if task in done and not ctx.cancelled:
            deadline_ctx.cancel()
            if run.exception is not None:
                raise run.exception
            return

        task.add_done_callback(lambda _: self._log_late_outcome(run, log))
        raise TaskTimeoutError(name, seconds, ctx.error)

    def _log_late_outcome(self, run: TaskRun, log: logging.LoggerAdapter) -> None:
        if run.status == RunStatus.FAILED:
            log.error("Timed out task failed after its deadline: %s", run.error)
        else:
            log.debug("Timed out task finished with status %s", run.status.value)

    def _dispatch(self, name: str, fn: TaskFunc) -> None:
        self._in_flight.spawn(self._fire(name, fn), name=f"cron:{name}")

    async def _fire(self, name: str, fn: TaskFunc) -> TaskRun:
        log = self.logger(name)
        run = self._new_run(name, RunKind.CRON)
        async with self._coordinator.exclusive(name, log) as acquired:
            if not acquired:
                run.set_status(RunStatus.SKIPPED)
                return run
            return await execute_task(name, fn, self._task_context(name), run, log)

    def _task_context(self, name: str) -> ExecutionContext:
        return self.ctx.with_logger(self.logger(name))

    def _new_run(self, name: str, kind: RunKind) -> TaskRun:
        run = TaskRun(task_name=name, kind=kind)
        self._runs.setdefault(name, deque(maxlen=self.settings.recent_runs_limit)).append(run)
        return run
