import asyncio
import inspect
import logging
from typing import Coroutine, Optional, Set

from cron_worker.context import ExecutionContext
from cron_worker.domain.run import RunStatus, TaskRun
from cron_worker.domain.task import TaskFunc
from cron_worker.errors import ContextCancelledError, TaskExecutionError, TaskPanicError

logger = logging.getLogger(__name__)


async def invoke(fn: TaskFunc, ctx: ExecutionContext) -> None:
    """
    Call a task function with its context.

    Coroutine functions are awaited on the running loop; anything else runs in
    a worker thread so a blocking body does not stall the scheduler.
    """
    if inspect.iscoroutinefunction(fn):
        await fn(ctx)
        return
    result = await asyncio.to_thread(fn, ctx)
    if inspect.isawaitable(result):
        await result


async def execute_task(
    name: str,
    fn: TaskFunc,
    ctx: ExecutionContext,
    run: TaskRun,
    log: logging.LoggerAdapter,
    log_failures: bool = True,
) -> TaskRun:
    """
    Run ``fn`` and turn every outcome into the state of ``run``.

    Exceptions never leave this function except ``asyncio.CancelledError``,
    which marks the run cancelled and is re-raised.
    """
    run.set_status(RunStatus.RUNNING)
    try:
        await invoke(fn, ctx)
        run.set_status(RunStatus.COMPLETED)
    except asyncio.CancelledError:
        run.set_status(RunStatus.CANCELLED)
        raise
    except TaskExecutionError as e:
        if e.task_name is None:
            e.task_name = name
        run.set_error(e)
        if log_failures:
            log.error("%s task error: %s", run.kind.value.capitalize(), e)
    except ContextCancelledError as e:
        run.exception = e
        run.error = str(e)
        run.set_status(RunStatus.CANCELLED)
        log.info("%s task stopped: %s", run.kind.value.capitalize(), e)
    except Exception as e:
        panic = TaskPanicError(name, e)
        panic.__cause__ = e
        run.set_error(panic)
        if log_failures:
            log.error("%s task panicked: %r", run.kind.value.capitalize(), e, exc_info=e)
    return run


class InFlightTracker:
    """
    Set of running asyncio tasks that shutdown waits for.

    Tasks leave the set through a done-callback, whatever their outcome.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._discard)
        return task

    def _discard(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Tracked task %s crashed", task.get_name(), exc_info=task.exception())

    async def wait(self) -> None:
        """
        Block until no tracked task is left, including tasks spawned while waiting.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
