"""Structured logging configuration for gitea-mirror.

Process logs are emitted as JSON (or plain text) through the standard
``logging`` module. Each mirror job also keeps its own audit log in the
store; the process log mirrors it with ``job_id`` and ``repository``
fields attached through :func:`log_context`.

Key Features:
- JSON-formatted logs for structured data
- Contextual logging with log_context() manager (thread-local, so every
  background job thread carries its own context)
- Credential redaction on every record
- Configurable log levels and output destinations
"""

import json
import logging
import re
import sys
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

ROOT_LOGGER_NAME = "gitea_mirror"

_log_context = threading.local()

# (pattern, replacement) pairs applied to every formatted message
_REDACTIONS: List[Tuple[str, str]] = [
    (r"https://[^:/@\s]+:[^@\s]+@", "https://[REDACTED]@"),
    (r"https://[^/@\s]+@", "https://[REDACTED]@"),
    (r"(authorization:\s*token\s+)\S+", r"\1[REDACTED]"),
    (r"gh[pousr]_[A-Za-z0-9_]+", "[GITHUB_TOKEN_REDACTED]"),
    (r"github_pat_[A-Za-z0-9_]+", "[GITHUB_TOKEN_REDACTED]"),
]


def redact(message: str) -> str:
    """Remove credentials from a log message.

    Args:
        message: Raw message text

    Returns:
        Message with URL credentials and GitHub tokens replaced
    """
    if not message:
        return message
    for pattern, replacement in _REDACTIONS:
        message = re.sub(pattern, replacement, message, flags=re.IGNORECASE)
    return message


def _get_context() -> Dict[str, Any]:
    """Get the current log context for this thread."""
    if not hasattr(_log_context, "data"):
        _log_context.data = {}
    data: Dict[str, Any] = _log_context.data
    return data


class JSONFormatter(logging.Formatter):
    """Formatter that outputs log records as single-line JSON.

    Fields: timestamp, level, logger, message, filename, lineno, exception
    (when present) and any extra fields passed via ``extra=`` or
    :func:`log_context`.

    Example output:
        {
            "timestamp": "2025-10-11T22:10:00.123456",
            "level": "INFO",
            "logger": "gitea_mirror.mirror_executor",
            "message": "Mirrored repository acme/api",
            "filename": "mirror_executor.py",
            "lineno": 118,
            "job_id": "5b0e...",
            "repository": "acme/api"
        }
    """

    RESERVED_FIELDS = {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "getMessage",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
            "filename": record.filename,
            "lineno": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = redact(self.formatException(record.exc_info))

        for key, value in record.__dict__.items():
            if key not in self.RESERVED_FIELDS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        return json.dumps(log_data)


class RedactingFormatter(logging.Formatter):
    """Plain-text formatter that applies credential redaction."""

    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Injects the fields given at construction time plus the current
    thread's :func:`log_context` fields into every record.

    Args:
        context: Dictionary of context fields to add to log records
    """

    def __init__(self, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.context = context or {}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            setattr(record, key, value)

        for key, value in _get_context().items():
            setattr(record, key, value)

        return True


@contextmanager
def log_context(**kwargs: Any) -> Any:
    """Context manager for adding fields to all logs within a scope.

    Context is thread-local and nests: inner contexts inherit from outer
    ones and the previous context is restored on exit.

    Example:
        with log_context(job_id=job.id):
            logger.info("Starting batch")
            with log_context(repository="acme/api"):
                logger.info("Mirroring")  # carries job_id and repository
    """
    context = _get_context()
    old_context = context.copy()

    try:
        context.update(kwargs)
        yield
    finally:
        context.clear()
        context.update(old_context)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the gitea-mirror logging system.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to use JSON formatting (True) or plain text (False)
        log_file: Optional file path to write logs to (in addition to stdout)

    Returns:
        Configured root logger for gitea-mirror
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    formatter: Union[JSONFormatter, logging.Formatter]
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = RedactingFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter())
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(ContextFilter())
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module within gitea-mirror.

    Args:
        name: Module name (without the 'gitea_mirror.' prefix)

    Returns:
        Logger named ``gitea_mirror.<name>``
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
