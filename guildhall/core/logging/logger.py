"""
Guildhall Logging Subsystem

Purpose
-------
Structured, non-blocking logging for the guild engine:

- Records are handed to a bounded queue and written by a background
  ``QueueListener``, so handlers never run on the event loop.
- Every record carries the guild operation context (``user_id``,
  ``guild_id``, ``operation``, ``correlation_id``) taken from a ContextVar
  that ``LogContext`` binds.
- Console output is JSON in production and human text elsewhere; an
  optional size-rotated JSON file mirrors it (``LOG_TO_FILE``).

Notes
-----
Importing this module never touches the root logger. Host applications call
``setup_logging()`` once; library consumers keep their own configuration.
Fields passed as ``extra={...}`` end up under ``"extra"`` in JSON output.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from guildhall.core.config.config import Config

CONTEXT_FIELDS = ("user_id", "guild_id", "operation", "correlation_id", "component")
MISSING = "N/A"

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s (guild=%(guild_id)s op=%(operation)s)"
TEXT_DATE_FORMAT = "%H:%M:%S"

LOG_FILE_NAME = "guildhall.json.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 3
QUEUE_CAPACITY = 10_000

_log_context: ContextVar[Dict[str, Any]] = ContextVar("guildhall_log_context", default={})

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


class LogSettings(NamedTuple):
    environment: str
    level: int
    json_output: bool
    colors: bool
    to_file: bool
    logs_dir: Path


def current_settings() -> LogSettings:
    """Snapshot of the logging switches in ``Config``."""
    environment = str(Config.ENVIRONMENT).lower()
    production = environment == "production"
    json_output = production if Config.LOG_JSON is None else bool(Config.LOG_JSON)
    return LogSettings(
        environment=environment,
        level=getattr(logging, str(Config.LOG_LEVEL).upper(), logging.INFO),
        json_output=json_output,
        colors=not json_output and bool(Config.LOG_COLORS) and sys.stdout.isatty(),
        to_file=bool(Config.LOG_TO_FILE),
        logs_dir=Path(Config.LOGS_DIR).resolve(),
    )


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copies the bound guild context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get()
        for field in CONTEXT_FIELDS:
            # extra={...} given at the call site wins.
            if field not in record.__dict__:
                setattr(record, field, context.get(field, MISSING))
        if record.component == MISSING:
            record.component = record.name.partition(".")[0]
        return True


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: "\033[90m",
        logging.INFO: "\033[36m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        text = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        return f"{color}{text}{self.RESET}" if color else text


class JSONFormatter(logging.Formatter):
    """One JSON object per line: core fields, context fields, then ``extra``."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            {
                field: record.__dict__[field]
                for field in CONTEXT_FIELDS
                if record.__dict__.get(field, MISSING) not in (None, MISSING)
            }
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
            and key not in CONTEXT_FIELDS
            and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, ensure_ascii=False, default=str)


class DroppingQueueHandler(QueueHandler):
    """QueueHandler that drops (and counts) records when the queue is full."""

    dropped = 0

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            DroppingQueueHandler.dropped += 1


# ============================================================================
# Setup / Teardown
# ============================================================================

_listener: Optional[QueueListener] = None
_installed_handler: Optional[logging.Handler] = None


def _output_handlers(settings: LogSettings) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    if settings.json_output:
        console.setFormatter(JSONFormatter())
    else:
        formatter_cls = ColoredFormatter if settings.colors else logging.Formatter
        console.setFormatter(formatter_cls(fmt=TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT))
    handlers: List[logging.Handler] = [console]

    if settings.to_file:
        settings.logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.logs_dir / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(settings.level)
    return handlers


def setup_logging() -> None:
    """Attach the queue-backed handler to the root logger. Safe to call twice."""
    global _listener, _installed_handler

    if _listener is not None:
        return

    settings = current_settings()
    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(QUEUE_CAPACITY)

    _listener = QueueListener(log_queue, *_output_handlers(settings), respect_handler_level=True)
    _listener.start()

    # Filter on the handler, not the logger, so child loggers are enriched too.
    _installed_handler = DroppingQueueHandler(log_queue)
    _installed_handler.setLevel(settings.level)
    _installed_handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.setLevel(settings.level)
    root.addHandler(_installed_handler)

    for noisy in ("sqlalchemy.engine", "aiosqlite", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": logging.getLevelName(settings.level),
            "json": settings.json_output,
            "to_file": settings.to_file,
        },
    )


def shutdown_logging() -> None:
    """Flush pending records and detach the handler installed by setup_logging."""
    global _listener, _installed_handler

    if _listener is None:
        return

    logging.getLogger(__name__).info("Shutting down logging")
    _listener.stop()
    for handler in _listener.handlers:
        handler.close()
    _listener = None

    if _installed_handler is not None:
        logging.getLogger().removeHandler(_installed_handler)
        _installed_handler.close()
        _installed_handler = None


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Bind guild operation context for the duration of a block.

    Usable with ``with`` and ``async with``; nested blocks inherit and
    override the outer context::

        async with LogContext(user_id=actor_id, guild_id=guild_id, operation="invite"):
            ...
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        guild_id: Optional[str] = None,
        operation: Optional[str] = None,
        component: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        bound = {
            "user_id": user_id,
            "guild_id": guild_id,
            "operation": operation,
            "component": component,
        }
        self.context: Dict[str, Any] = dict(_log_context.get())
        self.context.update({k: str(v) for k, v in bound.items() if v is not None})
        self.context["correlation_id"] = correlation_id or uuid.uuid4().hex[:8]
        self.context.update(extra)
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def set_log_context(**fields: Any) -> None:
    """Merge fields into the current context (None values are ignored)."""
    merged = dict(_log_context.get())
    merged.update({k: v for k, v in fields.items() if v is not None})
    _log_context.set(merged)


def clear_log_context() -> None:
    _log_context.set({})
