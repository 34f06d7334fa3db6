from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from pipetrace.core.logging.json_formatter import JSONFormatter, PlainFormatter
from pipetrace.core.logging.setup import configure_logging


def test_configure_logging_is_idempotent(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PIPETRACE_LOG_TO_FILE", "off")

    logger = logging.getLogger("pipetrace")
    logger.handlers = []

    configure_logging(tmp_path)
    first_count = len(logger.handlers)

    configure_logging(tmp_path)
    assert len(logger.handlers) == first_count == 1


def test_file_logging_writes_under_state_dir(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PIPETRACE_LOG_TO_FILE", "on")
    monkeypatch.setenv("PIPETRACE_LOG_MAX_BYTES", "1234")
    monkeypatch.setenv("PIPETRACE_LOG_BACKUP_COUNT", "2")

    logger = logging.getLogger("pipetrace")
    logger.handlers = []

    try:
        configure_logging(tmp_path)
        configure_logging(tmp_path)

        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 1234
        assert file_handlers[0].backupCount == 2
        assert (tmp_path / "logs").is_dir()
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers = []


def test_log_format_switch(tmp_path, monkeypatch) -> None:
    logger = logging.getLogger("pipetrace")
    logger.handlers = []

    monkeypatch.setenv("PIPETRACE_LOG_FORMAT", "text")
    configure_logging(tmp_path)
    assert isinstance(logger.handlers[0].formatter, PlainFormatter)

    monkeypatch.setenv("PIPETRACE_LOG_FORMAT", "json")
    configure_logging(tmp_path)
    assert isinstance(logger.handlers[0].formatter, JSONFormatter)
