"""
Comfy Compiler - Logging Configuration
=======================================

Structured logging for the graph compiler.

Features:
- Structured JSON output for production
- Human-readable format for development
- Request ID tracking across operations
- Performance timing utilities

Usage:
    from comfy_compiler.logging_config import get_logger, LogContext

    logger = get_logger(__name__)
    logger.info("Imported workflow", extra={"node_count": 12})

    with LogContext("request-123"):
        logger.info("Preparing workflow")  # Includes request_id in all logs
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings

__all__ = [
    "StructuredFormatter",
    "ContextFilter",
    "get_logger",
    "set_log_level",
    "set_request_id",
    "clear_request_id",
    "LogContext",
    "log_operation",
    "log_timing",
]

ROOT_LOGGER_NAME = "comfy_compiler"


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured log messages.

    Supports both text and JSON output formats.
    """

    _SKIP_KEYS = {
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
        "message",
        "asctime",
        "taskName",
    }

    def __init__(
        self, fmt: str | None = None, datefmt: str | None = None, json_output: bool = False
    ):
        super().__init__(fmt, datefmt)
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        if self.json_output:
            return self._format_json(record)
        return super().format(record)

    def _format_json(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._SKIP_KEYS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        return json.dumps(log_data)


# =============================================================================
# CONTEXT FILTER
# =============================================================================


class ContextFilter(logging.Filter):
    """Adds component and request_id to every record."""

    def __init__(self, component: str = ROOT_LOGGER_NAME):
        super().__init__()
        self.component = component
        self._request_id: str | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        record.component = self.component
        record.request_id = self._request_id or "-"
        return True

    def set_request_id(self, request_id: str):
        self._request_id = request_id

    def clear_request_id(self):
        self._request_id = None


# =============================================================================
# LOGGER MANAGEMENT
# =============================================================================

_loggers: dict = {}
_initialized: bool = False
_context_filter: ContextFilter | None = None


def _setup_logging():
    """Initialize the logging system."""
    global _initialized, _context_filter

    if _initialized:
        return

    config = get_settings().logging

    _context_filter = ContextFilter()

    if config.json_output:
        formatter = StructuredFormatter(json_output=True)
    else:
        formatter = StructuredFormatter(fmt=config.format, datefmt=config.date_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)

    file_handler = None
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    if file_handler:
        root_logger.addHandler(file_handler)
    root_logger.propagate = False

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for the given module name.

    Example:
        logger = get_logger(__name__)
        logger.info("Starting operation")
    """
    _setup_logging()

    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)

    return _loggers[name]


def set_log_level(level: str):
    """Change the log level at runtime (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""
    _setup_logging()
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.getLogger(ROOT_LOGGER_NAME).setLevel(numeric_level)
    for logger in _loggers.values():
        logger.setLevel(numeric_level)


def set_request_id(request_id: str):
    """Set the current request ID for log tracing."""
    _setup_logging()
    if _context_filter:
        _context_filter.set_request_id(request_id)


def clear_request_id():
    if _context_filter:
        _context_filter.clear_request_id()


# =============================================================================
# LOGGING CONTEXT MANAGER
# =============================================================================


class LogContext:
    """
    Context manager for request-scoped logging.

    Usage:
        with LogContext("abc123"):
            logger.info("Processing request")
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.previous_id: str | None = None

    def __enter__(self):
        _setup_logging()
        if _context_filter:
            self.previous_id = _context_filter._request_id
            _context_filter.set_request_id(self.request_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if _context_filter:
            if self.previous_id:
                _context_filter.set_request_id(self.previous_id)
            else:
                _context_filter.clear_request_id()
        return False


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def log_operation(
    logger: logging.Logger,
    operation: str,
    success: bool,
    duration_ms: float | None = None,
    **extra,
):
    """Log an operation result."""
    status = "completed" if success else "failed"
    msg = f"{operation} {status}"
    if duration_ms is not None:
        msg += f" ({duration_ms:.1f}ms)"

    level = logging.DEBUG if success else logging.WARNING
    logger.log(level, msg, extra={"operation": operation, "success": success, **extra})


@contextmanager
def log_timing(logger: logging.Logger, operation: str, **extra):
    """
    Context manager to log operation timing.

    Usage:
        with log_timing(logger, "layout_import"):
            result = import_layout(...)
    """
    start = time.perf_counter()
    success = False
    try:
        yield
        success = True
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        log_operation(logger, operation, success, duration_ms, **extra)
