import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Optional, Union

from cron_worker.errors import ContextCancelledError, DeadlineExceededError, WorkerError

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class ExecutionContext:
    """
    Cancellable execution context carrying a logger.

    A root context is created once by the hosting service and handed to the
    worker. Derived contexts (``with_timeout``, ``with_logger``) become done
    when their parent is cancelled; a timeout context also becomes done when
    its deadline passes. Cancellation is cooperative: task functions are
    expected to poll ``cancelled``, ``await wait()`` or use ``sleep()``.

    The context is bound to the event loop it is used on and is not
    thread-safe for ``cancel()``.
    """

    def __init__(
        self,
        logger: Optional[LoggerLike] = None,
        *,
        parent: Optional["ExecutionContext"] = None,
        deadline: Optional[float] = None,
    ):
        self._logger: LoggerLike = logger if logger is not None else logging.getLogger("cron_worker")
        self._parent = parent
        self._deadline = deadline
        self._done = asyncio.Event()
        self._error: Optional[WorkerError] = None
        self._children: "weakref.WeakSet[ExecutionContext]" = weakref.WeakSet()
        self._timer: Optional[asyncio.TimerHandle] = None
        self.started_at: datetime = parent.started_at if parent else datetime.now(timezone.utc)

        if parent is not None:
            if parent.cancelled:
                self._finish(parent.error)
            else:
                parent._children.add(self)

    @property
    def logger(self) -> LoggerLike:
        return self._logger

    @property
    def deadline(self) -> Optional[float]:
        """Event loop time at which this context expires, if any."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._done.is_set()

    @property
    def error(self) -> Optional[WorkerError]:
        return self._error

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    def with_timeout(self, timeout: float) -> "ExecutionContext":
        """
        Derive a child context that expires ``timeout`` seconds from now.

        The child keeps the tighter of its own and the parent's deadline.
        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        child = ExecutionContext(self._logger, parent=self, deadline=deadline)
        if not child.cancelled:
            child._timer = loop.call_at(deadline, child._expire)
        return child

    def with_logger(self, logger: LoggerLike) -> "ExecutionContext":
        return ExecutionContext(logger, parent=self, deadline=self._deadline)

    def cancel(self) -> None:
        self._finish(ContextCancelledError())

    def raise_if_cancelled(self) -> None:
        if self._error is not None:
            raise self._error

    async def wait(self) -> None:
        await self._done.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds`` or until the context is done. Returns True if done."""
        try:
            await asyncio.wait_for(self._done.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def _expire(self) -> None:
        self._timer = None
        self._finish(DeadlineExceededError())

    def _finish(self, error: Optional[WorkerError]) -> None:
        if self._done.is_set():
            return
        self._error = error if error is not None else ContextCancelledError()
        self._done.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for child in list(self._children):
            child._finish(self._error)
        self._children.clear()
        if self._parent is not None:
            self._parent._children.discard(self)
