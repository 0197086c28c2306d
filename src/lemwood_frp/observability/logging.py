"""Launcher log formatting and the ``dictConfig`` used by the CLI.

Records may carry a ``data`` mapping (``extra={"data": {...}}``). On a
terminal it is rendered as ``key=value`` pairs after the message; under a
container runtime every record becomes one JSON object so collectors can
index ``config_id`` and friends without parsing text.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from enum import Enum
from logging.config import dictConfig
from pathlib import Path
from typing import Any

MAX_LOG_FILE_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 2
PROCESS_LOGGER = "lemwood_frp.process"

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
_MAX_VALUE_CHARS = 256
_MAX_NESTING = 6


def _json_lines_enabled() -> bool:
    return bool(os.getenv("K_SERVICE") or os.getenv("KUBERNETES_SERVICE_HOST"))


def _sanitize_for_json(value: Any, nesting: int = _MAX_NESTING) -> Any:
    """Reduce ``value`` to JSON primitives; anything unknown becomes ``str``."""

    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if nesting <= 0:
        return "..."
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize_for_json(item, nesting - 1) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_sanitize_for_json(item, nesting - 1) for item in value]
    return str(value)


def _render_pair(key: str, value: Any) -> str:
    if isinstance(value, str):
        text = value if value and " " not in value else json.dumps(value)
    else:
        text = json.dumps(value, sort_keys=True, separators=(",", ":"))
    if len(text) > _MAX_VALUE_CHARS:
        text = text[:_MAX_VALUE_CHARS] + "..."
    return f"{key}={text}"


class ExtrasFormatter(logging.Formatter):
    """Render the ``data`` extra as trailing pairs, or as JSON lines in containers."""

    def format(self, record: logging.LogRecord) -> str:
        raw = getattr(record, "data", None)
        data = _sanitize_for_json(raw) if raw else None
        if _json_lines_enabled():
            return self._format_json(record, data)
        line = super().format(record)
        if not data:
            return line
        if not isinstance(data, dict):
            return f"{line} | {_render_pair('data', data)}"
        pairs = " ".join(_render_pair(key, data[key]) for key in sorted(data))
        return f"{line} | {pairs}"

    def _format_json(self, record: logging.LogRecord, data: Any) -> str:
        stamp = time.strftime(_DATE_FORMAT, time.gmtime(record.created))
        entry: dict[str, Any] = {
            "timestamp": f"{stamp}.{int(record.msecs):03d}Z",
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if isinstance(data, dict) and "config_id" in data:
            entry["config_id"] = data["config_id"]
        if data is not None:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, sort_keys=True, separators=(",", ":"))


def _env_level(name: str, default: str) -> str:
    return os.getenv(name, default).upper()


def _routed(level: str, handlers: list[str]) -> dict[str, Any]:
    return {"level": level, "handlers": list(handlers), "propagate": False}


def build_log_config(
    *,
    root_level_env: str = "LOG_LEVEL",
    root_default: str = "INFO",
    extra_loggers: Mapping[str, dict[str, Any]] | None = None,
    log_file: Path | None = None,
) -> dict[str, Any]:
    """Return a ``dictConfig`` mapping: stdout always, a rotating file when ``log_file`` is set.

    Child process output goes to ``PROCESS_LOGGER``, which is routed to the
    same handlers but does not propagate, so frp lines are never duplicated
    by the root logger.
    """

    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "launcher",
            "stream": "ext://sys.stdout",
        },
    }
    if log_file is not None:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "launcher",
            "filename": str(log_file),
            "maxBytes": MAX_LOG_FILE_BYTES,
            "backupCount": LOG_FILE_BACKUPS,
            "encoding": "utf-8",
        }
    names = list(handlers)

    loggers = {
        "uvicorn": _routed(_env_level("UVICORN_LOG_LEVEL", "INFO"), names),
        "uvicorn.access": _routed(_env_level("UVICORN_ACCESS_LOG_LEVEL", "WARNING"), names),
        PROCESS_LOGGER: _routed(_env_level("PROCESS_LOG_LEVEL", "INFO"), names),
    }
    loggers.update(extra_loggers or {})

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "launcher": {"()": ExtrasFormatter, "format": _TEXT_FORMAT, "datefmt": _DATE_FORMAT},
        },
        "handlers": handlers,
        "root": {"level": _env_level(root_level_env, root_default), "handlers": names},
        "loggers": loggers,
    }


def configure_logging(
    *,
    root_level_env: str = "LOG_LEVEL",
    root_default: str = "INFO",
    extra_loggers: Mapping[str, dict[str, Any]] | None = None,
    log_file: Path | None = None,
) -> None:
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    dictConfig(
        build_log_config(
            root_level_env=root_level_env,
            root_default=root_default,
            extra_loggers=extra_loggers,
            log_file=log_file,
        )
    )
    logging.getLogger(__name__).debug("logging configured", extra={"data": {"log_file": log_file}})


__all__ = ["MAX_LOG_FILE_BYTES", "PROCESS_LOGGER", "ExtrasFormatter", "build_log_config", "configure_logging"]
