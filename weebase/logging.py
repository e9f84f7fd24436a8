"""weebase — Structured logging configuration.

Uses structlog for structured, levelled logging with consistent key names
across all layers.  All log entries include:
    - timestamp (ISO-8601)
    - level
    - logger (Python logger name)
    - session_id / connection_id (bound via context variables when available)
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

# Bound into every log record while set.
_ctx_session_id: ContextVar[str | None] = ContextVar("session_id", default=None)
_ctx_connection_id: ContextVar[str | None] = ContextVar("connection_id", default=None)


def bind_request_context(
    session_id: str | None = None,
    connection_id: str | None = None,
) -> None:
    """Bind request context to the current thread / task."""
    if session_id is not None:
        _ctx_session_id.set(session_id)
    if connection_id is not None:
        _ctx_connection_id.set(connection_id)


def clear_request_context() -> None:
    _ctx_session_id.set(None)
    _ctx_connection_id.set(None)


# ---------------------------------------------------------------------------
# DSN redaction
# ---------------------------------------------------------------------------

_KV_PASSWORD = re.compile(r"(password\s*=\s*)(\S+)", re.IGNORECASE)
_URL_PASSWORD = re.compile(r"(://[^:/@\s]*:)([^@\s]*)(@)")
_MYSQL_PASSWORD = re.compile(r"^([^:@/\s]*:)(.*)(@[a-z]*\()")


def redact_dsn(dsn: str) -> str:
    """Mask the password in any of the DSN forms built by :mod:`weebase.dsn`."""
    out = _KV_PASSWORD.sub(r"\1***", dsn)
    out = _URL_PASSWORD.sub(r"\1***\3", out)
    out = _MYSQL_PASSWORD.sub(r"\1***\3", out)
    return out


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


def _inject_context_vars(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    """Add ContextVar values to every log record."""
    if (session_id := _ctx_session_id.get()) is not None:
        event_dict["session_id"] = session_id
    if (connection_id := _ctx_connection_id.get()) is not None:
        event_dict["connection_id"] = connection_id
    return event_dict


def _redact_dsn_fields(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    """Never let a raw DSN reach a log sink."""
    for key in ("dsn", "url"):
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = redact_dsn(value)
    return event_dict


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Call once at startup, before any log statements.

    Args:
        level:    One of debug, info, warning, error, critical.
        format:   ``"console"`` for human-readable output, ``"json"`` for
                  machine-readable structured logs.
        log_file: Optional path to write logs to in addition to stderr.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_vars,
        _redact_dsn_fields,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = []

    # stderr keeps CLI result output on stdout clean.
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level.upper())

    # Silence noisy third-party loggers.
    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger for *name*.

    Usage::

        log = get_logger(__name__)
        log.info("row_deleted", table="users", connection_id="abc123")
    """
    return structlog.get_logger(name)
