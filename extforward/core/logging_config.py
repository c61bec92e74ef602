"""
Centralized logging configuration with structured logging support.
"""
import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from extforward.core.config import settings

# Context variable for request ID correlation across async tasks.
# Set by RequestLoggingMiddleware so every entry logged while a request is
# in flight (including forwarding decisions) carries the same request_id.
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Structured fields copied from ``extra=`` into JSON entries when present
_EXTRA_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_host",
    "peer_host",
    "forwarded_for",
    "scheme",
)

# Loggers that trace per-request forwarding decisions
_REQUEST_HANDLING_LOGGERS = ("extforward.middleware", "extforward.forwarding")


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for production logging.

    Produces structured log entries with consistent fields for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_context.get()
        if request_id:
            log_entry["request_id"] = request_id

        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        # Add source location for error-level logs
        if record.levelno >= logging.ERROR:
            log_entry["source"] = f"{record.pathname}:{record.lineno}"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging() -> None:
    """
    Configure application-wide logging with structured output.

    Configures:
    - Log levels based on environment
    - JSON formatting for production (structured for log aggregators)
    - Human-readable format for development
    - DEBUG tracing of forwarding decisions when LOG_REQUEST_HANDLING is set
    """
    log_level_name = getattr(settings, "LOG_LEVEL", "INFO")
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)

    is_production = settings.ENV == "production"
    handling_level = logging.DEBUG if settings.LOG_REQUEST_HANDLING else log_level

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": logging.DEBUG,
                "formatter": "json" if is_production else "default",
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
        "loggers": {
            "extforward": {
                "level": log_level,
            },
            "uvicorn.access": {
                "level": logging.WARNING if settings.DEBUG else logging.INFO,
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    for name in _REQUEST_HANDLING_LOGGERS:
        logging_config["loggers"][name] = {"level": handling_level}

    logging.config.dictConfig(logging_config)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
