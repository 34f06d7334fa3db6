from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .json_formatter import JSONFormatter, PlainFormatter

_LOGGER_NAME = "pipetrace"
_HANDLER_TAG = "_pipetrace_handler"


def _parse_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _is_on(name: str, default: str = "off") -> bool:
    return os.getenv(name, default).strip().casefold() == "on"


def _tagged(logger: logging.Logger, tag: str) -> logging.Handler | None:
    for handler in logger.handlers:
        if getattr(handler, _HANDLER_TAG, None) == tag:
            return handler
    return None


def _build_formatter() -> logging.Formatter:
    if os.getenv("PIPETRACE_LOG_FORMAT", "json").strip().casefold() == "text":
        return PlainFormatter()
    return JSONFormatter()


def configure_logging(state_dir: Path | None = None) -> logging.Logger:
    """Attach pipetrace's handlers to the ``pipetrace`` logger.

    Safe to call repeatedly: handlers are tagged and only added once, so
    application startup and test fixtures can both call it.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(_parse_level(os.getenv("PIPETRACE_LOG_LEVEL", "INFO")))
    logger.propagate = False

    formatter = _build_formatter()

    stdout_handler = _tagged(logger, "stdout")
    if stdout_handler is None:
        stdout_handler = logging.StreamHandler(stream=sys.stdout)
        setattr(stdout_handler, _HANDLER_TAG, "stdout")
        logger.addHandler(stdout_handler)
    stdout_handler.setFormatter(formatter)

    if _is_on("PIPETRACE_LOG_TO_FILE") and _tagged(logger, "file") is None:
        base_dir = state_dir or Path.home() / ".pipetrace"
        log_dir = Path(os.getenv("PIPETRACE_LOG_DIR") or (base_dir / "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_dir / "pipetrace.log",
            maxBytes=int(os.getenv("PIPETRACE_LOG_MAX_BYTES", "5000000")),
            backupCount=int(os.getenv("PIPETRACE_LOG_BACKUP_COUNT", "5")),
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        setattr(file_handler, _HANDLER_TAG, "file")
        logger.addHandler(file_handler)

    return logger
