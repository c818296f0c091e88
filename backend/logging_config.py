"""
Structured Logging Configuration for SprintSense

Every record is tagged with the correlation ID of the HTTP request that
produced it and, inside a live or offline run, the run ID. Production gets
one JSON object per line; development gets colored single-line output.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
run_id_var: ContextVar[str] = ContextVar("run_id", default="")

# Chatty third-party loggers
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "absl", "mediapipe", "multipart")

# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName", "correlation_id", "run_id",
}


def get_correlation_id() -> str:
    """Current correlation ID, minting one for code running outside a request"""
    cid = correlation_id_var.get()
    if not cid:
        cid = uuid.uuid4().hex[:8]
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def set_run_id(run_id: Optional[str]) -> None:
    """Tag subsequent records in this context with a run ID (None clears it)"""
    run_id_var.set(run_id or "")


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through ``extra=`` on the logging call"""
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class ContextFilter(logging.Filter):
    """Copy the correlation and run IDs onto each record"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.run_id = getattr(record, "run_id", None) or run_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregators"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        run_id = getattr(record, "run_id", "")
        if run_id:
            entry["run_id"] = run_id

        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.filename}:{record.lineno} in {record.funcName}"

        entry.update(record_extras(record))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Colored single-line output for development"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        clock = time.strftime("%H:%M:%S", time.localtime(record.created))
        tag = getattr(record, "correlation_id", "")
        run_id = getattr(record, "run_id", "")
        if run_id:
            tag = f"{tag}/{run_id}"

        line = f"{clock} {color}{record.levelname:8}{self.RESET} [{tag}] {record.name}: {record.getMessage()}"

        extras = record_extras(record)
        if extras:
            line += " | " + " ".join(f"{k}={v}" for k, v in extras.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(logging.DEBUG)
    handler.addFilter(ContextFilter())
    handler.setFormatter(formatter)
    return handler


def setup_logging(level: str = "INFO", json_format: bool = False, log_file: Optional[str] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Root log level name
        json_format: JSON console output instead of colored lines
        log_file: Optional path; the file always receives JSON
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()

    root.addHandler(_handler(
        logging.StreamHandler(sys.stdout),
        JSONFormatter() if json_format else PrettyFormatter(),
    ))
    if log_file:
        root.addHandler(_handler(logging.FileHandler(log_file), JSONFormatter()))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info("Logging configured", extra={"level": level, "json_format": json_format, "log_file": log_file})


def setup_logging_from_settings(settings) -> None:
    """JSON output is forced in production"""
    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.LOG_JSON or settings.is_production,
        log_file=settings.LOG_FILE or None,
    )


class StructuredLogger:
    """
    Logger with bound context fields.
    RunSession binds its run ID so lifecycle lines stay attributable after the
    run's context has been left (e.g. a late stop from another task).
    """

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(name)
        self.context = context or {}

    def log(self, level: int, message: str, exc_info: bool = False, **fields):
        self.logger.log(level, message, exc_info=exc_info, extra={**self.context, **fields})

    def debug(self, message: str, **fields):
        self.log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self.log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self.log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields):
        self.log(logging.ERROR, message, exc_info=exc_info, **fields)


class LogTimer:
    """Time a block; slow blocks log at WARNING, failures at ERROR"""

    def __init__(self, logger: logging.Logger, operation: str, slow_ms: float = 1000.0, **fields):
        self.logger = logger
        self.operation = operation
        self.slow_ms = slow_ms
        self.fields = fields
        self.duration_ms = 0.0
        self._start = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._start) * 1000
        fields = {**self.fields, "duration_ms": round(self.duration_ms, 2)}

        if exc_type is not None:
            self.logger.error(f"{self.operation} failed after {self.duration_ms:.1f}ms: {exc_val}", extra=fields)
        elif self.duration_ms > self.slow_ms:
            self.logger.warning(f"{self.operation} slow: {self.duration_ms:.1f}ms", extra=fields)
        else:
            self.logger.info(f"{self.operation} took {self.duration_ms:.1f}ms", extra=fields)
        return False
