import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from cron_worker.locks.protocol import LockBackend, lock_key

logger = logging.getLogger(__name__)


class DistributedCoordinator:
    """
    Makes sure a firing of a task runs at most once across replicas.

    Two guards are taken per firing: a process-local lock per task name, so a
    slow run is never overlapped by the next firing in the same process, and,
    in distributed mode, a non-blocking lock on the shared backend. A firing
    that cannot take either guard is skipped, not queued.
    """

    def __init__(self, lock_backend: Optional[LockBackend] = None):
        self.lock_backend = lock_backend
        self.enabled: bool = lock_backend is not None and lock_backend.supports_distributed_locking
        self._local_locks: Dict[str, asyncio.Lock] = {}

    def is_running(self, name: str) -> bool:
        lock = self._local_locks.get(name)
        return lock is not None and lock.locked()

    def forget(self, name: str) -> None:
        """
        Drop the local guard of a removed task unless a firing still holds it.
        """
        lock = self._local_locks.get(name)
        if lock is not None and not lock.locked():
            del self._local_locks[name]

    @asynccontextmanager
    async def exclusive(self, name: str, log: logging.LoggerAdapter) -> AsyncIterator[bool]:
        """
        Hold both guards for ``name`` for the duration of the block.

        Yields True when the body should run, False when this firing is skipped.
        """
        local = self._local_locks.setdefault(name, asyncio.Lock())
        if local.locked():
            log.debug("Previous run still in progress in this process, skipping")
            yield False
            return

        async with local:
            if not self.enabled:
                yield True
                return

            key = lock_key(name)
            try:
                acquired = await self.lock_backend.try_acquire(key)
            except Exception as e:
                log.warning("Failed to acquire lock: %s", e)
                acquired = False
            if not acquired:
                log.debug("Task already running on another instance, skipping")
                yield False
                return

            try:
                yield True
            finally:
                try:
                    await self.lock_backend.release(key)
                except Exception as e:
                    log.warning("Failed to release lock: %s", e)
