# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from aicoder.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_console_filter_keeps_app_logs_and_hides_noise() -> None:
    f = _ConsoleNoiseFilter()

    assert f.filter(_record("aicoder.core.event_loop", logging.INFO))
    assert not f.filter(_record("aicoder.llm.client", logging.INFO))
    assert f.filter(_record("aicoder.llm.client", logging.WARNING))
    assert not f.filter(_record("aicoder.tasks.shell", logging.INFO))
    assert not f.filter(_record("httpx", logging.WARNING))
    assert f.filter(_record("httpx", logging.ERROR))


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


def test_setup_logging_writes_file(tmp_path: Path, restore_root_logging) -> None:
    log_file = setup_logging(log_dir=tmp_path / "logs")
    logging.getLogger("aicoder.test").debug("hello from test")
    for h in logging.getLogger().handlers:
        h.flush()

    assert log_file == tmp_path / "logs" / "aicoder.log"
    assert "hello from test" in log_file.read_text("utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING
