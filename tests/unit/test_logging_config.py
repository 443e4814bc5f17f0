"""Unit tests for logging setup."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import pytest

from teledispatch.logging_config import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger(monkeypatch):
    monkeypatch.setenv("TELEDISPATCH_LOG_LEVEL", "INFO")
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_console_only_by_default():
    setup_logging()

    root = logging.getLogger()
    assert root.level == logging.INFO
    assert len(root.handlers) == 1
    assert logging.getLogger("httpx").level == logging.WARNING


def test_level_argument_wins(monkeypatch):
    monkeypatch.setenv("TELEDISPATCH_LOG_LEVEL", "ERROR")

    setup_logging(level="debug")

    assert logging.getLogger().level == logging.DEBUG


def test_rotating_files_in_log_dir(tmp_path):
    setup_logging(dir_path=str(tmp_path / "logs"))

    files = {h.baseFilename.rsplit("/", 1)[-1]: h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)}
    assert set(files) == {"combined.log", "error.log"}
    assert files["error.log"].level == logging.ERROR

    logging.getLogger("teledispatch.test").error("disk full")
    for handler in files.values():
        handler.flush()
    assert "disk full" in (tmp_path / "logs" / "error.log").read_text(encoding="utf-8")
