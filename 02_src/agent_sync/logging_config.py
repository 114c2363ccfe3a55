"""Logging setup: JSON lines to a rotating file, JSON or text on stdout."""

import asyncio
import json
import logging
import logging.config
import logging.handlers
import os
from datetime import datetime, timezone
from pathlib import Path

from .config import DEFAULT_LOG_PATH

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(task)s] %(name)s: %(message)s"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("aiosqlite", "asyncpg", "uvicorn.access")


def _current_task_name() -> str:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return "-"
    return task.get_name() if task else "-"


class TaskNameFilter(logging.Filter):
    """Tags each record with the asyncio task that emitted it.

    Reconciler tasks are named after their reconciler, so interleaved
    output from several inboxes stays readable.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "task"):
            record.task = _current_task_name()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "task": getattr(record, "task", "-"),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # extra={"context": {...}}
        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        return json.dumps(log_data, default=str, ensure_ascii=False)


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    console_format: str | None = None,
) -> None:
    """
    Configure the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
                   Defaults to LOG_LEVEL env var or INFO.
        log_file: Rotating JSON log file. Defaults to AGENT_SYNC_LOG_FILE
                  or 04_logs/app.log; "-" disables file logging.
        console_format: "json" or "text". Defaults to LOG_FORMAT or json.
    """
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("AGENT_SYNC_LOG_FILE") or str(DEFAULT_LOG_PATH)
    console_format = (console_format or os.getenv("LOG_FORMAT", "json")).lower()

    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "text" if console_format == "text" else "json",
            "filters": ["task"],
            "stream": "ext://sys.stdout",
        },
    }
    if log_file != "-":
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "formatter": "json",
            "filters": ["task"],
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"task": {"()": TaskNameFilter}},
            "formatters": {
                "json": {"()": JSONFormatter},
                "text": {"format": TEXT_FORMAT},
            },
            "handlers": handlers,
            "loggers": {
                name: {"level": "WARNING"} for name in QUIET_LOGGERS
            },
            "root": {"level": level, "handlers": list(handlers)},
        }
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; use with __name__."""
    return logging.getLogger(name)
