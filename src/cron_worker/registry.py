import threading
from typing import Callable, Dict, List, Optional

from cron_worker.domain.task import CronTask, TaskFunc
from cron_worker.errors import DuplicateTaskError, TaskNotFoundError


class TaskRegistry:
    """
    Mapping of task name to its engine entry, guarded against concurrent mutation.

    ``register`` and ``unregister`` run the engine side effect while holding the
    lock, so check-and-insert and lookup-and-delete are atomic with respect to
    each other.
    """

    def __init__(self):
        self._tasks: Dict[str, CronTask] = {}
        self._lock = threading.Lock()

    def register(self, name: str, schedule: str, func: TaskFunc, add_entry: Callable[[], str]) -> CronTask:
        with self._lock:
            if name in self._tasks:
                raise DuplicateTaskError(name)
            handle = add_entry()
            task = CronTask(name=name, schedule=schedule, handle=handle, func=func)
            self._tasks[name] = task
            return task

    def unregister(self, name: str, remove_entry: Callable[[str], object]) -> CronTask:
        with self._lock:
            task = self._tasks.get(name)
            if task is None:
                raise TaskNotFoundError(name)
            remove_entry(task.handle)
            del self._tasks[name]
            return task

    def get(self, name: str) -> Optional[CronTask]:
        with self._lock:
            return self._tasks.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._tasks)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
