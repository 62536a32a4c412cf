"""
Structured logging utilities.

Provides:
- Structured JSON logging
- Operation and key tracking through context variables
- Performance logging around engine operations
"""

import json
import logging
import time
from contextvars import ContextVar
from typing import Any

operation_var: ContextVar[str] = ContextVar("operation", default="")
key_var: ContextVar[str] = ContextVar("key", default="")

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per line with:
    - timestamp, level, logger, message
    - operation and key (when inside an engine operation)
    - any fields passed through ``extra=``
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        key = key_var.get()
        if key:
            log_data["key"] = key

        for name, value in record.__dict__.items():
            if name not in _RECORD_ATTRIBUTES and not name.startswith("_"):
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """
    Async context manager logging an operation's duration and outcome.

    Example:
        async with PerformanceLogger("get", logger=logger, key="users.42"):
            value = await collection.find_one({"key": "users.42"})
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger,
        key: str = "",
        level: int = logging.DEBUG,
        **context: Any
    ):
        self.operation = operation
        self.logger = logger
        self.key = key
        self.level = level
        self.context = context
        self.start_time = 0.0
        self.duration_ms = 0.0
        self._tokens = ()

    async def __aenter__(self):
        self.start_time = time.perf_counter()
        self._tokens = (operation_var.set(self.operation), key_var.set(self.key))
        self.logger.log(
            self.level,
            f"Starting operation: {self.operation}",
            extra={"event": "operation_start", **self.context}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.logger.log(
                max(self.level, logging.INFO),
                f"Operation failed: {self.operation}",
                extra={
                    "event": "operation_failed",
                    "duration_ms": round(self.duration_ms, 2),
                    "error_type": exc_type.__name__,
                    "error": str(exc_val),
                    **self.context
                }
            )
        else:
            self.logger.log(
                self.level,
                f"Operation completed: {self.operation}",
                extra={
                    "event": "operation_completed",
                    "duration_ms": round(self.duration_ms, 2),
                    **self.context
                }
            )

        operation_token, key_token = self._tokens
        key_var.reset(key_token)
        operation_var.reset(operation_token)


def setup_production_logging(
    level: str = "INFO",
    format: str = "json"
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Format type ("json" or "text")
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if format.lower() == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        )

    root_logger.addHandler(handler)
