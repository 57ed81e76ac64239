from typing import List

import pytest

from cron_worker.errors import DuplicateTaskError, TaskNotFoundError
from cron_worker.registry import TaskRegistry


async def noop(ctx) -> None:
    pass


@pytest.fixture
def registry() -> TaskRegistry:
    return TaskRegistry()


def test_register_records_engine_handle(registry: TaskRegistry) -> None:
    task = registry.register("report", "0 0 * * * *", noop, lambda: "ent_00000001")
    assert task.handle == "ent_00000001"
    assert registry.get("report") is task
    assert "report" in registry
    assert len(registry) == 1


def test_duplicate_does_not_touch_engine(registry: TaskRegistry) -> None:
    added: List[str] = []

    def add_entry() -> str:
        added.append("entry")
        return f"ent_{len(added)}"

    first = registry.register("report", "0 0 * * * *", noop, add_entry)
    with pytest.raises(DuplicateTaskError, match="task 'report' already scheduled"):
        registry.register("report", "0 * * * * *", noop, add_entry)

    assert added == ["entry"]
    assert registry.get("report") is first


def test_unregister_removes_engine_entry(registry: TaskRegistry) -> None:
    removed: List[str] = []
    registry.register("report", "0 0 * * * *", noop, lambda: "ent_1")

    registry.unregister("report", removed.append)

    assert removed == ["ent_1"]
    assert registry.get("report") is None
    assert registry.names() == []


def test_unregister_missing(registry: TaskRegistry) -> None:
    registry.register("report", "0 0 * * * *", noop, lambda: "ent_1")
    with pytest.raises(TaskNotFoundError, match="task 'missing' not found"):
        registry.unregister("missing", lambda handle: None)
    assert registry.names() == ["report"]


def test_names_is_a_snapshot(registry: TaskRegistry) -> None:
    registry.register("a", "0 0 * * * *", noop, lambda: "ent_a")
    names = registry.names()
    registry.register("b", "0 0 * * * *", noop, lambda: "ent_b")
    assert names == ["a"]
    assert sorted(registry.names()) == ["a", "b"]
