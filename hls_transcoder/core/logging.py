"""
Structured logging configuration.

Both processes (dispatcher and worker) run as containers whose stdout is
shipped to a log aggregator, so the default output is one JSON object per
line. Set LOG_JSON=false for a human readable console format.
"""
import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

# Attributes present on every LogRecord; anything else came in via `extra=`.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Fields stamped on every record from package loggers (see log_context)
_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Attach `fields` to every record logged through get_logger() loggers
    inside this block, including from tasks and threads started in it.

    Usage:
        with log_context(video_id="1737282645123-9f2c1a7e"):
            logger.info("[worker] Downloading source")  # includes video_id
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


class LogContextFilter(logging.Filter):
    """Copy the current log_context fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


_context_filter = LogContextFilter()


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Example output:
    {
        "timestamp": "2025-01-19T10:30:45.123456+00:00",
        "level": "INFO",
        "logger": "hls_transcoder.services.worker",
        "message": "[worker] Job completed",
        "video_id": "1737282645123-9f2c1a7e"
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process_id": record.process,
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = self._serialize_value(value)

        return json.dumps(log_entry, default=str, ensure_ascii=False)

    def _serialize_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError:
                return f"<binary data: {len(value)} bytes>"
        if isinstance(value, BaseException):
            return {"type": type(value).__name__, "message": str(value)}
        return value


class ContextualLogger:
    """
    Wrapper for logger that adds contextual information to all log messages.

    Usage:
        logger = ContextualLogger(logging.getLogger(__name__))
        logger.set_context(video_id="1737282645123-9f2c1a7e")
        logger.info("[worker] Downloading source")  # includes video_id
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.context: Dict[str, Any] = {}

    def set_context(self, **kwargs):
        self.context.update(kwargs)

    def clear_context(self):
        self.context.clear()

    def _log_with_context(self, level: int, msg: str, *args, **kwargs):
        extra = dict(self.context)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log_with_context(logging.ERROR, msg, *args, **kwargs)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None,
) -> logging.Logger:
    """
    Configure a logger (root by default) with a single stdout handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSONFormatter instead of the console format
        logger_name: Name of logger to configure (None for root logger)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    logger.addHandler(handler)

    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(max(logger.level, logging.INFO))
    logging.getLogger("urllib3").setLevel(max(logger.level, logging.INFO))

    return logger


def get_logger(name: str, with_context: bool = False):
    """
    Get a package logger that carries the current log_context fields,
    optionally wrapped in a ContextualLogger.

    Args:
        name: Logger name (typically __name__)
        with_context: Whether to return ContextualLogger wrapper
    """
    logger = logging.getLogger(name)
    if _context_filter not in logger.filters:
        logger.addFilter(_context_filter)
    if with_context:
        return ContextualLogger(logger)
    return logger
