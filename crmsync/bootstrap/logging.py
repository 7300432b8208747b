"""Configuración de logging: tres ficheros JSONL rotativos.

* ``crmsync.log``: todo desde INFO.
* ``operational_error.log``: solo ERROR (fallos de sync que no tumban el proceso).
* ``crash.log``: solo CRITICAL (excepciones no controladas).
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from crmsync.core.observability import get_correlation_id, get_table_id

DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 10
MAIN_LOG_NAME = "crmsync.log"
OPERATIONAL_ERROR_LOG_NAME = "operational_error.log"
CRASH_LOG_NAME = "crash.log"

_CONTEXT_FIELDS = ("table_id", "incident_id")


@dataclass(frozen=True)
class _LogFile:
    name: str
    min_level: int | None = None
    max_level: int | None = None


_LOG_FILES = (
    _LogFile(MAIN_LOG_NAME),
    _LogFile(OPERATIONAL_ERROR_LOG_NAME, min_level=logging.ERROR, max_level=logging.ERROR),
    _LogFile(CRASH_LOG_NAME, min_level=logging.CRITICAL),
)


class JsonLinesFormatter(logging.Formatter):
    """Un objeto JSON por línea con el correlation_id de la operación en curso."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is None and field == "table_id":
                value = get_table_id()
            if value:
                event[field] = value

        extra = getattr(record, "extra", None)
        if isinstance(extra, dict) and extra:
            event["extra"] = extra
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


class LevelRangeFilter(logging.Filter):
    def __init__(self, min_level: int | None, max_level: int | None) -> None:
        super().__init__()
        self._min_level = min_level
        self._max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self._min_level is not None and record.levelno < self._min_level:
            return False
        return self._max_level is None or record.levelno <= self._max_level


def _max_bytes_from_env(default: int) -> int:
    try:
        return int(os.environ["CRMSYNC_LOG_MAX_BYTES"])
    except (KeyError, ValueError):
        return default


def configure_logging(
    log_dir: Path,
    *,
    max_bytes: int | None = None,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = logging.INFO,
) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    max_bytes = max_bytes or _max_bytes_from_env(DEFAULT_LOG_MAX_BYTES)
    formatter = JsonLinesFormatter()

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for log_file in _LOG_FILES:
        handler = RotatingFileHandler(log_dir / log_file.name, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        handler.setLevel(log_file.min_level or level)
        handler.setFormatter(formatter)
        handler.addFilter(LevelRangeFilter(log_file.min_level, log_file.max_level))
        root_logger.addHandler(handler)


def write_crash_log(exc_type: type[BaseException], exc: BaseException, tb: Any, log_dir: Path) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.getLogger("crmsync.crash").critical(
        "Unhandled exception",
        exc_info=(exc_type, exc, tb),
        extra={"extra": {"python": sys.version, "executable": sys.executable, "cwd": str(Path.cwd())}},
    )
    return log_dir / CRASH_LOG_NAME


def install_exception_hook(log_dir: Path) -> None:
    def _hook(exc_type, exc, tb) -> None:
        try:
            write_crash_log(exc_type, exc, tb, log_dir)
        except OSError:
            sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _hook
