import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable, Dict, List, Optional

from cron_worker.domain.task import next_fire_time

logger = logging.getLogger(__name__)


@dataclass
class CronEntry:
    id: str
    expression: str
    callback: Callable[[], None]
    next_run: datetime


class CronEngine:
    """
    Cron wheel driven by an asyncio polling loop.

    Every ``tick_interval`` seconds the loop calls the callback of each due
    entry and advances the entry's next run time from the current time, so
    ticks missed while the loop was busy are not replayed. Callbacks are
    synchronous and are expected to hand the actual work off to a new task.
    Expressions are evaluated in ``tz``, UTC unless configured otherwise.
    """

    def __init__(self, tick_interval: float = 1.0, tz: tzinfo = timezone.utc):
        self.tick_interval = tick_interval
        self.tz = tz
        self.scheduler_task: Optional[asyncio.Task] = None
        self.is_running: bool = False
        self._entries: Dict[str, CronEntry] = {}
        self._lock = threading.Lock()

    async def start(self):
        """
        Start the scheduler loop.

        Next run times are recomputed from the current time, so firings that
        fell due while the engine was stopped are dropped.
        """
        if not self.is_running:
            now = self._now()
            with self._lock:
                for entry in self._entries.values():
                    entry.next_run = next_fire_time(entry.expression, now)
            self.is_running = True
            self.scheduler_task = asyncio.create_task(self._scheduler_loop())
            logger.debug("CronEngine started (%d entries)", len(self._entries))

    async def stop(self):
        """
        Stop the scheduler loop. Work already handed off by callbacks is not touched.
        """
        if self.is_running:
            self.is_running = False
            if self.scheduler_task:
                self.scheduler_task.cancel()
                try:
                    await self.scheduler_task
                except asyncio.CancelledError:
                    pass
                self.scheduler_task = None
            logger.debug("CronEngine stopped")

    def add(self, expression: str, callback: Callable[[], None], now: Optional[datetime] = None) -> str:
        now = self._now() if now is None else now.astimezone(self.tz)
        entry = CronEntry(
            id=f"ent_{uuid.uuid4().hex[:8]}",
            expression=expression,
            callback=callback,
            next_run=next_fire_time(expression, now),
        )
        with self._lock:
            self._entries[entry.id] = entry
        return entry.id

    def remove(self, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None

    def next_run(self, entry_id: str) -> Optional[datetime]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.next_run if entry else None

    def _now(self) -> datetime:
        return datetime.now(self.tz)

    def entries(self) -> List[CronEntry]:
        with self._lock:
            return list(self._entries.values())

    def run_pending(self, now: Optional[datetime] = None) -> int:
        """
        Fire every entry due at ``now``. Returns the number of callbacks invoked.
        """
        now = self._now() if now is None else now.astimezone(self.tz)
        fired = 0
        for entry in self.entries():
            if entry.next_run > now:
                continue
            with self._lock:
                if entry.id not in self._entries:
                    continue
                entry.next_run = next_fire_time(entry.expression, now)
            try:
                entry.callback()
            except Exception:
                logger.exception("Error in cron callback for entry %s", entry.id)
            fired += 1
        return fired

    async def _scheduler_loop(self):
        """
        Main scheduler loop that checks for due entries.
        """
        try:
            while self.is_running:
                self.run_pending()
                await asyncio.sleep(self.tick_interval)
        except asyncio.CancelledError:
            pass
