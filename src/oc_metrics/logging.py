"""
Structured logging for the metrics service.

Log records are emitted as JSON objects with a consistent set of fields;
anything passed through ``extra={...}`` is added to the object. All loggers
live under the ``oc_metrics`` hierarchy so a single call to
``setup_logging`` configures the whole package.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from oc_metrics.config import LoggingConfig

ROOT_LOGGER_NAME = "oc_metrics"

# plain-text layout used when json_format is off
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(
    {
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
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    Render each record as one JSON object per line.

    Each record carries ``timestamp`` (ISO 8601, UTC), ``level``, ``logger``
    and ``message``, plus ``exception`` when exc_info is set and any extra
    fields supplied by the caller.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _RESERVED_ATTRS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = True,
) -> logging.Logger:
    """
    Configure the ``oc_metrics`` logger hierarchy.

    Args:
        config: Optional LoggingConfig; when given it overrides the keyword
            arguments.
        level: Log level if no config is provided.
        json_format: Emit JSON objects rather than plain text lines.
        log_to_stdout: Whether to log to stdout; stderr is used otherwise.

    Returns:
        The package root logger.

    Example:
        >>> logger = setup_logging(level="debug", log_to_stdout=False)
        >>> logger.info("Server started", extra={"listen": "127.0.0.1:50051"})
    """
    if config is not None:
        log_level = "DEBUG" if config.debug_mode else config.level.upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # repeated calls replace the handler
    logger.handlers.clear()

    # stdout carries JSON-RPC responses in stdio mode, so logs can go to stderr
    handler = logging.StreamHandler(sys.stdout if log_to_stdout else sys.stderr)
    handler.setLevel(getattr(logging, log_level, logging.INFO))
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module, prefixed into the ``oc_metrics`` hierarchy.

    Args:
        name: Typically ``__name__`` of the calling module.

    Returns:
        A logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
