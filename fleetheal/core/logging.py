"""
Centralized Logging Module for fleetheal

Features:
    - Structured fields on every call (logger.info("msg", node="DC01"))
    - JSON output for production (orjson), console output for operators
    - Run correlation through structlog context variables

Usage:
    from fleetheal.core.logging import get_logger, configure_logging

    configure_logging(level=logging.INFO, json_format=False)

    logger = get_logger("fleetheal.retry")
    logger.warning("Attempt failed", node="DC02", attempt=1, kind="TRANSIENT")

Environment Variables (applied through fleetheal.core.config.load_config):
    FLEETHEAL_LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    FLEETHEAL_LOG_FORMAT: Set format (console, json)
"""

import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any

import orjson
import structlog

# =============================================================================
# Constants
# =============================================================================

DEFAULT_LOG_LEVEL = logging.INFO
MAX_CACHE_SIZE = 128
ROOT_LOGGER_NAME = "fleetheal"

_RESERVED_ATTRS = frozenset(
    (
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
        "asctime",
    )
)


# =============================================================================
# Run Context
# =============================================================================


def bind_run_context(**fields: Any) -> None:
    """Attach fields (run_id, scan_mode, ...) to every record of the current run."""
    structlog.contextvars.bind_contextvars(**fields)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()


def current_run_context() -> dict[str, Any]:
    return dict(structlog.contextvars.get_contextvars())


# =============================================================================
# Logger Class
# =============================================================================


class FleetLogger:
    """
    Thin wrapper over a stdlib logger that accepts structured fields.

    Keyword arguments become attributes on the LogRecord (via ``extra``),
    together with the current run context, so the JSON formatter and test
    capture both see them.

    Usage:
        >>> logger = get_logger("fleetheal.scanner")
        >>> logger.info("Scan finished", nodes=3, unreachable=0)
    """

    def __init__(self, name: str, level: int | None = None) -> None:
        self.name = name
        self.level = level
        self._logger = logging.getLogger(name)
        # Unset level defers to the "fleetheal" root configured by configure_logging.
        if level is not None:
            self._logger.setLevel(level)

    def _extra(self, fields: dict[str, Any]) -> dict[str, Any]:
        extra = current_run_context()
        for key, value in fields.items():
            if key in _RESERVED_ATTRS:
                key = f"field_{key}"
            extra[key] = value
        return extra

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, extra=self._extra(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, extra=self._extra(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, extra=self._extra(kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, extra=self._extra(kwargs))

    def critical(self, message: str, **kwargs: Any) -> None:
        self._logger.critical(message, extra=self._extra(kwargs))

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log with the active exception's traceback. Call from an except block."""
        self._logger.exception(message, extra=self._extra(kwargs))


# =============================================================================
# Formatters
# =============================================================================


def _plain(value: Any) -> Any:
    """Enums by name, sets as sorted lists; everything else unchanged."""
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return value


def _default(value: Any) -> Any:
    return str(value)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Example output:
        {"timestamp": "2026-02-17T10:30:00+00:00", "level": "WARNING",
         "logger": "fleetheal.retry", "message": "Attempt failed",
         "extra": {"node": "DC02", "attempt": 1, "kind": "TRANSIENT"}}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # orjson would emit Enum values, not names, so convert before dumping.
        extra_fields = {
            k: _plain(v) for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(log_data, default=_default).decode()


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines with structured fields appended as key=value."""

    def __init__(self, include_timestamp: bool = True) -> None:
        fmt = (
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            if include_timestamp
            else "%(name)s - %(levelname)s - %(message)s"
        )
        super().__init__(fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = [
            f"{k}={_plain(v)}"
            for k, v in record.__dict__.items()
            if k not in _RESERVED_ATTRS
        ]
        if fields:
            line = f"{line} [{' '.join(fields)}]"
        return line


# =============================================================================
# Factory Functions
# =============================================================================


@lru_cache(maxsize=MAX_CACHE_SIZE)
def get_logger(name: str, level: int | None = None) -> FleetLogger:
    """
    Get or create a logger instance.

    Args:
        name: Logger name, under the ``fleetheal`` hierarchy
        level: Optional per-logger level override
    """
    return FleetLogger(name, level)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    include_timestamp: bool = True,
) -> None:
    """
    Configure fleetheal logging globally. Call once at startup.

    Example:
        >>> configure_logging(level=logging.DEBUG)
        >>> configure_logging(level="INFO", json_format=True)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), DEFAULT_LOG_LEVEL)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = ConsoleFormatter(include_timestamp=include_timestamp)

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    get_logger.cache_clear()


__all__ = [
    "get_logger",
    "configure_logging",
    "bind_run_context",
    "clear_run_context",
    "current_run_context",
    "FleetLogger",
    "JSONFormatter",
    "ConsoleFormatter",
]
