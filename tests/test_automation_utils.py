import asyncio
import logging

import pytest

from automation_utils import Clock, setup_logging


@pytest.fixture
def clean_loggers():
    names = ('flow', 'apscheduler')
    saved = {name: logging.getLogger(name).handlers[:] for name in names}
    for name in names:
        logging.getLogger(name).handlers = []
    yield
    for name in names:
        for handler in logging.getLogger(name).handlers:
            if handler not in saved[name]:
                handler.close()
        logging.getLogger(name).handlers = saved[name]


def test_scheduler_errors_reach_the_log_file(tmp_path, clean_loggers):
    log_file = tmp_path / "automation.log"
    setup_logging(str(log_file))

    logging.getLogger('apscheduler.executors.default').error("Job \"automationCycle\" raised an exception")
    for handler in logging.getLogger('flow').handlers:
        handler.flush()

    assert "automationCycle\" raised an exception" in log_file.read_text(encoding='utf-8')


def test_setup_logging_is_idempotent(tmp_path, clean_loggers):
    setup_logging(str(tmp_path / "a.log"))
    setup_logging(str(tmp_path / "a.log"))

    assert len(logging.getLogger('flow').handlers) == 2
    assert len(logging.getLogger('apscheduler').handlers) == 2


def test_setup_logging_without_file(clean_loggers):
    logger = setup_logging(None)
    assert [type(h) for h in logger.handlers] == [logging.StreamHandler]


def test_clock_sleep_and_time():
    clock = Clock()
    before = clock.monotonic()
    asyncio.run(clock.sleep(0))
    assert clock.monotonic() >= before
    assert clock.time_ms() > 1_600_000_000_000
