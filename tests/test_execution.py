import asyncio
import logging
import threading

import pytest

from cron_worker.context import ExecutionContext
from cron_worker.domain.run import RunKind, RunStatus, TaskRun
from cron_worker.errors import DeadlineExceededError, TaskExecutionError, TaskPanicError
from cron_worker.execution import InFlightTracker, execute_task
from cron_worker.logging_config import TaskLoggerAdapter


@pytest.fixture
def ctx() -> ExecutionContext:
    return ExecutionContext(logging.getLogger("tests.execution"))


@pytest.fixture
def log() -> TaskLoggerAdapter:
    return TaskLoggerAdapter(logging.getLogger("tests.execution"), "job")


@pytest.fixture
def run() -> TaskRun:
    return TaskRun(task_name="job", kind=RunKind.BACKGROUND)


@pytest.mark.asyncio
async def test_successful_run(ctx, log, run) -> None:
    received = []

    async def fn(task_ctx: ExecutionContext) -> None:
        received.append(task_ctx)

    result = await execute_task("job", fn, ctx, run, log)

    assert result is run
    assert run.status == RunStatus.COMPLETED
    assert run.error is None
    assert received == [ctx]


@pytest.mark.asyncio
async def test_plain_function_runs_in_thread(ctx, log, run) -> None:
    threads = []

    def fn(task_ctx: ExecutionContext) -> None:
        threads.append(threading.current_thread())

    await execute_task("job", fn, ctx, run, log)

    assert run.status == RunStatus.COMPLETED
    assert threads[0] is not threading.main_thread()


@pytest.mark.asyncio
async def test_task_error_is_recorded(ctx, log, run, caplog: pytest.LogCaptureFixture) -> None:
    async def fn(task_ctx: ExecutionContext) -> None:
        raise TaskExecutionError("quota exceeded")

    with caplog.at_level(logging.ERROR, logger="tests.execution"):
        await execute_task("job", fn, ctx, run, log)

    assert run.status == RunStatus.FAILED
    assert run.error == "task 'job': quota exceeded"
    assert not isinstance(run.exception, TaskPanicError)
    assert "Background task error: task 'job': quota exceeded" in caplog.text


@pytest.mark.asyncio
async def test_panic_is_recovered(ctx, log, run, caplog: pytest.LogCaptureFixture) -> None:
    async def fn(task_ctx: ExecutionContext) -> None:
        raise KeyError("missing")

    with caplog.at_level(logging.ERROR, logger="tests.execution"):
        await execute_task("job", fn, ctx, run, log)

    assert run.status == RunStatus.FAILED
    assert isinstance(run.exception, TaskPanicError)
    assert run.exception.__cause__ is run.exception.payload
    assert caplog.records[0].exc_info is not None
    assert caplog.records[0].task == "job"


@pytest.mark.asyncio
async def test_failures_can_be_left_unlogged(ctx, log, run, caplog: pytest.LogCaptureFixture) -> None:
    async def fn(task_ctx: ExecutionContext) -> None:
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="tests.execution"):
        await execute_task("job", fn, ctx, run, log, log_failures=False)

    assert run.status == RunStatus.FAILED
    assert caplog.records == []


@pytest.mark.asyncio
async def test_cancellation_is_propagated(ctx, log, run) -> None:
    started = asyncio.Event()

    async def fn(task_ctx: ExecutionContext) -> None:
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(execute_task("job", fn, ctx, run, log))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert run.status == RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_tracker_waits_for_tasks_spawned_while_waiting() -> None:
    tracker = InFlightTracker()
    order = []

    async def child() -> None:
        await asyncio.sleep(0.02)
        order.append("child")

    async def parent() -> None:
        await asyncio.sleep(0.01)
        tracker.spawn(child())
        order.append("parent")

    tracker.spawn(parent(), name="parent")
    assert len(tracker) == 1

    await tracker.wait()

    assert order == ["parent", "child"]
    assert len(tracker) == 0


@pytest.mark.asyncio
async def test_tracker_untracks_crashed_tasks(caplog: pytest.LogCaptureFixture) -> None:
    tracker = InFlightTracker()

    async def crash() -> None:
        raise RuntimeError("boom")

    tracker.spawn(crash(), name="crash")
    await tracker.wait()

    assert len(tracker) == 0
    assert "Tracked task crash crashed" in caplog.text


@pytest.mark.asyncio
async def test_context_error_marks_run_cancelled(log, run, caplog: pytest.LogCaptureFixture) -> None:
    ctx = ExecutionContext(logging.getLogger("tests.execution")).with_timeout(0.01)

    async def fn(task_ctx: ExecutionContext) -> None:
        await task_ctx.wait()
        task_ctx.raise_if_cancelled()

    with caplog.at_level(logging.INFO, logger="tests.execution"):
        await execute_task("job", fn, ctx, run, log)

    assert run.status == RunStatus.CANCELLED
    assert isinstance(run.exception, DeadlineExceededError)
    assert run.error == "context deadline exceeded"
    assert "Background task stopped: context deadline exceeded" in caplog.text
    assert "panicked" not in caplog.text
