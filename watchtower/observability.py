"""
Structured logging, correlation IDs and timing helpers.

Usage:
    from watchtower.observability import setup_logging, get_logger, correlation_context

    # In app startup:
    setup_logging()

    # In modules:
    logger = get_logger(__name__)

    # Around one dashboard request:
    with correlation_context(request_id):
        logger.info("Computing overview", extra={"namespace": "sales_overview"})
"""
import asyncio
import functools
import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

# Context variable for request correlation ID
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName"
}


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())[:8]


class correlation_context:
    """Context manager for setting correlation ID."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.token = None

    def __enter__(self):
        self.token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *args):
        _correlation_id.reset(self.token)


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON with:
    - timestamp, level, logger, message
    - correlation_id (if set)
    - extra fields passed via ``extra=``
    - exception info (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        log_entry.update(_extra_fields(record))

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter with correlation ID.

    Format: TIMESTAMP - LEVEL - LOGGER [CORRELATION_ID] - MESSAGE
    """

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        correlation_str = f" [{correlation_id}]" if correlation_id else ""

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        base_msg = f"{timestamp} - {record.levelname:8} - {record.name}{correlation_str} - {record.getMessage()}"

        extras = _extra_fields(record)
        if extras:
            base_msg += f" | {extras}"

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"

        return base_msg


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_libs: bool = False
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON logs; otherwise human-readable
        include_libs: If True, also log from third-party libraries
    """
    formatter = StructuredFormatter() if json_format else HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    # Quiet down noisy libraries unless explicitly included
    if not include_libs:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("redis").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMING
# ═══════════════════════════════════════════════════════════════════════════════

class Timer:
    """
    Context manager for timing operations.

    Usage:
        with Timer("column_store_query", logger) as t:
            rows = conn.execute(sql).fetchall()
        print(f"Query took {t.elapsed_ms}ms")
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None, warn_threshold_ms: float = 1000):
        self.name = name
        self.logger = logger
        self.warn_threshold_ms = warn_threshold_ms
        self.start_time: float = 0
        self.end_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()
        self.elapsed_ms = (self.end_time - self.start_time) * 1000

        if self.logger:
            level = logging.WARNING if self.elapsed_ms > self.warn_threshold_ms else logging.DEBUG
            self.logger.log(
                level,
                f"{self.name} completed",
                extra={"duration_ms": round(self.elapsed_ms, 2)}
            )


def timed(name: Optional[str] = None, warn_threshold_ms: float = 1000):
    """
    Decorator for timing function execution.

    Args:
        name: Operation name (defaults to function name)
        warn_threshold_ms: Log at WARNING level if exceeds this threshold
    """
    def decorator(func: Callable) -> Callable:
        operation_name = name or func.__name__
        func_logger = get_logger(func.__module__)

        def _log(start: float) -> None:
            elapsed_ms = (time.perf_counter() - start) * 1000
            level = logging.WARNING if elapsed_ms > warn_threshold_ms else logging.DEBUG
            func_logger.log(
                level,
                f"{operation_name} completed",
                extra={"duration_ms": round(elapsed_ms, 2)}
            )

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log(start)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _log(start)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
