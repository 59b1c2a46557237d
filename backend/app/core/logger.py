"""Structured logging for the TechRec API.

Every record carries the request id and, once the bearer token has been
checked, the developer id. LOG_FORMAT=json switches to one JSON object per
line for log shippers.
"""

import logging
import sys
import json
from datetime import datetime, timezone

from app.config import load_settings
from app.core.request_context import developer_id_var, request_id_var

# Third-party loggers that are chatty at INFO (one line per HTTP call)
_NOISY_LOGGERS = ("httpx", "httpcore", "stripe", "botocore", "urllib3", "langfuse")


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "request_id": request_id_var.get(),
            "developer_id": developer_id_var.get(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")
        context = request_id_var.get()
        developer = developer_id_var.get()
        if developer != "-":
            context = f"{context} {developer}"
        line = f"{color}{timestamp} [{record.levelname:8s}]{self.RESET} [{context}] {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logger(name: str = "techrec") -> logging.Logger:
    """Set up and return the application logger."""
    settings = load_settings()
    _logger = logging.getLogger(name)
    _logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    if _logger.handlers:
        return _logger

    console = logging.StreamHandler(sys.stdout)
    if settings.log_format.lower() == "json":
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(ConsoleFormatter())
    _logger.addHandler(console)
    _logger.propagate = False

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return _logger


logger = setup_logger()
