"""Structured logging setup shared by all modules."""

from __future__ import annotations

import logging
import sys
from typing import Any


class StructuredFormatter(logging.Formatter):
    """Renders records as `key=value` pairs, including `extra_data` fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            log_data.update(extra_data)
        line = " ".join(f"{key}={value}" for key, value in log_data.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def get_logger(name: str) -> logging.Logger:
    """Return a logger wired to stdout with the structured formatter."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_configured_level())
        logger.propagate = False
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **fields: Any) -> None:
    logger.log(level, msg, extra={"extra_data": fields})


def _configured_level() -> int:
    from blueprint_chat.config import get_settings

    name = get_settings().LOG_LEVEL.upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO
