import asyncio
from datetime import datetime, timedelta, timezone
from typing import List
from zoneinfo import ZoneInfo

import pytest

from cron_worker.engine import CronEngine

START = datetime(2024, 1, 1, 0, 0, 30, tzinfo=timezone.utc)


def at(minute: int, second: int) -> datetime:
    return START.replace(minute=minute, second=second)


def test_fires_only_when_due() -> None:
    engine = CronEngine()
    fired: List[str] = []
    entry_id = engine.add("0 * * * * *", lambda: fired.append("tick"), now=START)
    assert engine.next_run(entry_id) == at(1, 0)

    assert engine.run_pending(at(0, 59)) == 0
    assert engine.run_pending(at(1, 0)) == 1
    assert fired == ["tick"]
    assert engine.next_run(entry_id) == at(2, 0)


def test_missed_ticks_are_not_replayed() -> None:
    engine = CronEngine()
    fired: List[str] = []
    entry_id = engine.add("0 * * * * *", lambda: fired.append("tick"), now=START)

    assert engine.run_pending(at(5, 10)) == 1
    assert fired == ["tick"]
    assert engine.next_run(entry_id) == at(6, 0)


def test_removed_entry_does_not_fire() -> None:
    engine = CronEngine()
    fired: List[str] = []
    entry_id = engine.add("0 * * * * *", lambda: fired.append("tick"), now=START)

    assert engine.remove(entry_id) is True
    assert engine.remove(entry_id) is False
    assert engine.run_pending(at(1, 0)) == 0
    assert engine.next_run(entry_id) is None
    assert fired == []


def test_failing_callback_does_not_block_others() -> None:
    engine = CronEngine()
    fired: List[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    engine.add("0 * * * * *", broken, now=START)
    engine.add("0 * * * * *", lambda: fired.append("ok"), now=START)

    assert engine.run_pending(at(1, 0)) == 2
    assert fired == ["ok"]


@pytest.mark.asyncio
async def test_scheduler_loop_fires_entries() -> None:
    engine = CronEngine(tick_interval=0.05)
    fired: List[datetime] = []
    engine.add("* * * * * *", lambda: fired.append(datetime.now(timezone.utc)))

    await engine.start()
    assert engine.is_running
    await asyncio.sleep(1.5)
    await engine.stop()

    assert not engine.is_running
    assert engine.scheduler_task is None
    assert len(fired) >= 1
    count = len(fired)
    await asyncio.sleep(1.1)
    assert len(fired) == count


@pytest.mark.asyncio
async def test_start_drops_firings_missed_while_stopped() -> None:
    engine = CronEngine(tick_interval=0.01)
    fired: List[int] = []
    yesterday = datetime.now(timezone.utc) - timedelta(days=1)
    entry_id = engine.add("0 0 0 * * *", lambda: fired.append(1), now=yesterday)

    await engine.start()
    await asyncio.sleep(0.2)
    await engine.stop()

    assert fired == []
    assert engine.next_run(entry_id) > datetime.now(timezone.utc)


def test_expressions_follow_engine_timezone() -> None:
    engine = CronEngine(tz=ZoneInfo("Asia/Tokyo"))
    # 09:30 in Tokyo
    entry_id = engine.add("0 0 9 * * *", lambda: None, now=datetime(2024, 1, 1, 0, 30, tzinfo=timezone.utc))

    assert engine.next_run(entry_id) == datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)
    assert engine.run_pending(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)) == 0
    assert engine.run_pending(datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)) == 1
