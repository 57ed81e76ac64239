import logging

import pytest

from cron_worker.logging_config import TaskContextFilter, TaskLoggerAdapter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_installs_console_handler(restore_root_logger: logging.Logger) -> None:
    setup_logging("debug")

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    handler = root.handlers[0]
    assert any(isinstance(f, TaskContextFilter) for f in handler.filters)
    assert "%(task)s" in handler.formatter._fmt


def test_filter_sets_default_task() -> None:
    record = logging.LogRecord("tests", logging.INFO, __file__, 1, "hello", None, None)
    assert TaskContextFilter().filter(record) is True
    assert record.task == "-"


def test_adapter_tags_records(caplog: pytest.LogCaptureFixture) -> None:
    log = TaskLoggerAdapter(logging.getLogger("tests.logging"), "nightly-report")
    assert log.task == "nightly-report"

    with caplog.at_level(logging.INFO, logger="tests.logging"):
        log.info("started")
        log.info("explicit", extra={"task": "other", "attempt": 2})

    first, second = caplog.records
    assert first.task == "nightly-report"
    assert second.task == "other"
    assert second.attempt == 2
