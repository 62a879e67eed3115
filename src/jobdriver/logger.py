"""Logging setup for jobdriver (structlog over stdlib logging)."""

from __future__ import annotations

import logging
import sys
from enum import IntEnum
from typing import Any

import structlog

__all__ = ["LogLevel", "configure_logging", "get_logger", "parse_log_level"]


class LogLevel(IntEnum):
    """Log levels accepted in configuration, mapped onto stdlib levels."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


def configure_logging(level: LogLevel | int = LogLevel.WARNING) -> None:
    """Configure structlog to render human-readable lines on stderr.

    Only diagnostics of jobdriver itself go through here. Job output never
    does: it is captured by the log locator at the file-descriptor level.

    Args:
        level: Minimum level to emit
    """
    shared_processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger with bound context.

    Args:
        name: Logger name (typically the module name)
        **context: Additional context to bind (e.g., job, environment)

    Returns:
        BoundLogger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def parse_log_level(value: str) -> LogLevel:
    """Parse a log level name to LogLevel."""
    try:
        return LogLevel[value.upper()]
    except KeyError as e:
        valid_levels = ", ".join(level.name for level in LogLevel)
        raise ValueError(f"Invalid log level: {value}. Valid levels: {valid_levels}") from e
