"""
Centralized logging configuration.

Structured records for cache rebuilds, backfill runs, period archival and
reconciliation audits. Keyword context passed to a ``StructuredLogger`` call
ends up as top-level keys of the JSON record.
"""
import enum
import json
import logging
import logging.config
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# logger name -> level used when the root level is more verbose
_MANAGED_LOGGERS: Dict[str, Optional[str]] = {
    "smart_cache": None,
    "uvicorn": "INFO",
    "sqlalchemy.engine": "WARNING",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_entry.update(extra_data)

        log_entry["process_id"] = record.process
        return json.dumps(log_entry, ensure_ascii=False, default=_json_default)


class StructuredLogger:
    """
    Wrapper around a standard logger accepting keyword context.

    ``logger.info("Period stored", client_id=3, period_id="2024-03-04")``
    attaches the keywords to the record as ``extra_data``; ``None`` values
    are dropped.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, **kwargs):
        exc_info = bool(kwargs.pop("exc_info", False))
        extra_data = {k: v for k, v in kwargs.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={"extra_data": extra_data})

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)


def _level_for(name: str, log_level: str) -> str:
    floor = _MANAGED_LOGGERS.get(name)
    if floor is None:
        return log_level
    return floor if logging.getLevelName(floor) > logging.getLevelName(log_level) else log_level


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    json_console: bool = False,
) -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating JSON log file
        enable_console: Whether to log to stdout
        json_console: Emit JSON on stdout as well (batch jobs shipped to a collector)
    """
    log_level = log_level.upper()
    handlers: Dict[str, Dict[str, Any]] = {}

    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "json" if json_console else "standard",
            "level": log_level,
        }

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "level": log_level,
        }

    handler_names = list(handlers)
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": JSONFormatter},
                "standard": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": handlers,
            "loggers": {
                name: {"level": _level_for(name, log_level), "handlers": handler_names, "propagate": False}
                for name in _MANAGED_LOGGERS
            },
            "root": {"level": log_level, "handlers": handler_names},
        }
    )


def configure_logging_from_env(default_level: str = "INFO") -> None:
    """``setup_logging`` driven by LOG_LEVEL, LOG_FILE and LOG_FORMAT (``json`` or ``text``)."""
    setup_logging(
        log_level=os.getenv("LOG_LEVEL", default_level),
        log_file=os.getenv("LOG_FILE"),
        json_console=os.getenv("LOG_FORMAT", "text").lower() == "json",
    )


def get_logger(name: str) -> StructuredLogger:
    """Structured logger under the ``smart_cache`` namespace."""
    if name.startswith("smart_cache"):
        return StructuredLogger(name)
    return StructuredLogger(f"smart_cache.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    client_id: Optional[int] = None,
    platform: Optional[str] = None,
    request_id: Optional[str] = None,
) -> None:
    """
    Log an audit-trail event (``cache_rebuilt``, ``backfill_completed``,
    ``period_archived``, ``reconciliation_completed`` ...).
    """
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        client_id=client_id,
        platform=platform,
        request_id=request_id,
        **details,
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None,
) -> None:
    data = {"duration_ms": round(duration_ms, 2)}
    if additional_data:
        data.update(additional_data)
    get_logger("performance").info(f"Performance: {operation}", operation=operation, **data)
