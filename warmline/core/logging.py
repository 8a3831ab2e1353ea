"""Structured JSON logging for Warmline.

Provides consistent logging across all modules with:
    - JSON lines in a rotating file (one object per record)
    - Human-readable console output
    - Context fields (user_id, item_id, trigger_id, etc.)
    - The worker thread name, so parallel decision units can be told apart

Usage:
    from warmline.core.logging import get_logger, setup_logging

    setup_logging()  # Call once at startup
    logger = get_logger(__name__)

    logger.info("Throttle blocked", extra={"context": {"user_id": "u-1"}})
"""

import json
import logging
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

ROOT_LOGGER = "warmline"
LOG_FILE_NAME = "warmline.log"

_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_BACKUP_COUNT = 5


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for file output."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as one JSON line.

        The timestamp is the time the record was created (UTC), not the
        time it was written.
        """
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for console output."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        name = record.name
        if name.startswith(ROOT_LOGGER + "."):
            name = name[len(ROOT_LOGGER) + 1 :]
        if record.threadName and record.threadName != "MainThread":
            name = f"{name}@{record.threadName}"

        message = record.getMessage()
        context = getattr(record, "context", None)
        if context:
            message += " [" + ", ".join(f"{k}={v}" for k, v in context.items()) + "]"

        return f"{timestamp} {record.levelname[:4]:4s} {name}: {message}"


_handlers: list[logging.Handler] = []
_console: Optional[logging.Handler] = None
_setup_lock = threading.Lock()


def setup_logging(
    log_dir: Optional[Path] = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """Initialize logging system.

    Safe to call more than once: later calls only adjust the console level
    (so ``--debug`` takes effect) and keep the first log directory.

    Args:
        log_dir: Directory for log files. Defaults to ~/.warmline/logs
        console_level: Minimum level for console output (default: INFO)
        file_level: Minimum level for file output (default: DEBUG)

    Returns:
        Path of the active log file
    """
    global _console

    with _setup_lock:
        if _handlers:
            if _console is not None:
                _console.setLevel(console_level)
            file_handler = next(h for h in _handlers if isinstance(h, RotatingFileHandler))
            return Path(file_handler.baseFilename)

        if log_dir is None:
            log_dir = Path.home() / ".warmline" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / LOG_FILE_NAME

        root_logger = logging.getLogger(ROOT_LOGGER)
        root_logger.setLevel(logging.DEBUG)

        _console = logging.StreamHandler()
        _console.setLevel(console_level)
        _console.setFormatter(ConsoleFormatter())

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(JSONFormatter())

        for handler in (_console, file_handler):
            root_logger.addHandler(handler)
            _handlers.append(handler)

    root_logger.info("Logging initialized", extra={"context": {"log_file": str(log_file)}})
    return log_file


def reset_logging() -> None:
    """Detach and close the handlers added by setup_logging (for testing)."""
    global _console

    with _setup_lock:
        root_logger = logging.getLogger(ROOT_LOGGER)
        for handler in _handlers:
            root_logger.removeHandler(handler)
            handler.close()
        _handlers.clear()
        _console = None


def get_logger(name: str) -> logging.Logger:
    """Get logger for module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance under the "warmline" root logger
    """
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
