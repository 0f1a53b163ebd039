"""
Logging for ES Sync.

All modules log through children of the ``es_sync`` logger. Output goes to
stderr (rich or plain) or stdout as JSON lines for log shippers, plus an
optional rotating file.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from es_sync.config import LoggingConfig


# Log output stays off stdout so result tables remain readable
console = Console(stderr=True)

logger = logging.getLogger("es_sync")

_QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler")

# Attributes passed with ``extra=`` that the JSON formatter copies out
CONTEXT_FIELDS = ("relation", "index", "cursor")

_PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    format_style: str = "rich",
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """
    Configure the ``es_sync`` logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a rotating log file
        format_style: "rich", "json", or "simple"
        max_file_size_mb: Max log file size before rotation
        backup_count: Number of rotated files to keep
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger.handlers.clear()
    logger.setLevel(log_level)
    logger.propagate = False

    handlers = [_console_handler(format_style)]
    if log_file:
        handlers.append(_file_handler(Path(log_file), max_file_size_mb, backup_count))

    for handler in handlers:
        handler.setLevel(log_level)
        logger.addHandler(handler)

    # Request and job chatter only when debugging
    third_party_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


def setup_logging_from_config(config: LoggingConfig, level: str | None = None) -> None:
    """Configure logging from the ``logging`` settings section."""
    setup_logging(
        level=level or config.level,
        log_file=config.file,
        format_style=config.format,
        max_file_size_mb=config.max_file_size_mb,
        backup_count=config.backup_count,
    )


def _console_handler(format_style: str) -> logging.Handler:
    handler: logging.Handler
    if format_style == "rich":
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    elif format_style == "json":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _file_handler(path: Path, max_file_size_mb: int, backup_count: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=max_file_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with sync context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, _DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)

