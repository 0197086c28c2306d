"""Logging collaborator port and its stdlib-logging adapter."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from lemwood_frp.observability.logging import PROCESS_LOGGER


class LogLevel(str, Enum):
    """Levels accepted by log sinks; SUCCESS marks positive milestones."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


_STDLIB_LEVELS: dict[LogLevel, int] = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.SUCCESS: logging.INFO,
}


class LogSink(Protocol):
    """Accepts ``(level, tag, message, config_id)`` tuples; never read back."""

    def emit(
        self,
        level: LogLevel,
        tag: str,
        message: str,
        config_id: str | None = None,
    ) -> None:
        """Record one message."""


class LoggingSink:
    """Forwards sink messages to a stdlib logger with structured extras."""

    def __init__(self, logger_name: str = PROCESS_LOGGER) -> None:
        self._logger = logging.getLogger(logger_name)

    def emit(
        self,
        level: LogLevel,
        tag: str,
        message: str,
        config_id: str | None = None,
    ) -> None:
        data: dict[str, str] = {"tag": tag}
        if config_id is not None:
            data["config_id"] = config_id
        if level is LogLevel.SUCCESS:
            data["outcome"] = "success"
        self._logger.log(_STDLIB_LEVELS[level], "[%s] %s", tag, message, extra={"data": data})


__all__ = ["LogLevel", "LogSink", "LoggingSink"]
