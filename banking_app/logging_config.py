"""
Structured Logging Configuration Module

JSON log lines for banking operations. Structured fields are attached to a
record through ``log_action`` and rendered by ``JSONFormatter``.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

# Record attributes copied into the JSON line when present
STRUCTURED_FIELDS = ("correlation_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.levelno >= logging.ERROR:
            log_entry["location"] = f"{record.module}:{record.funcName}:{record.lineno}"
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(
    level: str = "INFO",
    logger_name: str = "banking_app",
    stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Route a logger tree to a single JSON handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Root of the logger tree to configure
        stream: Output stream, stderr by default

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Calling twice must not duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.getLevelName(level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "banking_app") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               correlation_id: Optional[str] = None, extra: Optional[dict] = None,
               exc_info: bool = False):
    """
    Log an action with structured data.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        action: Operation name, e.g. "process_transaction"
        resource: Resource acted upon, e.g. "account:<id>"
        correlation_id: Correlation ID for request tracing
        extra: Additional structured data
        exc_info: Attach the exception currently being handled
    """
    fields = {
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        logging.getLevelName(level.upper()), message,
        extra={k: v for k, v in fields.items() if v is not None},
        exc_info=exc_info
    )
