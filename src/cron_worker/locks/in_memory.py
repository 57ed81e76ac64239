import threading
from typing import Set

from cron_worker.errors import LockBackendError


class InMemoryLockBackend:
    """
    Process-local lock backend.

    Coordinates every worker that shares the same instance, which makes it
    useful for tests and for several workers inside one process. It does not
    coordinate separate processes.
    """

    def __init__(self):
        self._held: Set[int] = set()
        self._mutex = threading.Lock()

    @property
    def supports_distributed_locking(self) -> bool:
        return True

    def is_held(self, key: int) -> bool:
        with self._mutex:
            return key in self._held

    async def try_acquire(self, key: int) -> bool:
        with self._mutex:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    async def release(self, key: int) -> None:
        with self._mutex:
            if key not in self._held:
                raise LockBackendError(f"lock {key} is not held")
            self._held.remove(key)
