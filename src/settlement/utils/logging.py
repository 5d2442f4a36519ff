"""Logging configuration for the settlement service.

Standard library handlers carry the output; structlog sits in front of them
and adds the key/value context every handler logs with. The environment
(``PROTEAN_ENV``) picks the level and the renderer: coloured console
output with rich tracebacks while developing, JSON lines in production.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog

_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_JSON_ENVIRONMENTS = {"production", "staging"}

# Chatty third-party loggers kept at WARNING regardless of the root level
_QUIET_LOGGERS = ("protean", "sqlalchemy.engine", "sqlalchemy.pool", "uvicorn.access")

_MAX_LOG_BYTES = 10 * 1024 * 1024


def _environment() -> str:
    return (os.getenv("ENV") or os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").lower()


def get_log_level() -> str:
    """LOG_LEVEL if set, otherwise the level for the current environment."""
    return os.getenv("LOG_LEVEL", _LEVELS.get(_environment(), "INFO"))


def _rotating_handler(path: Path, level) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(log_dir: Path | None = None) -> None:
    """Route stdlib logging to stdout, and to rotating files under ``log_dir`` when given.

    ``settlement.log`` receives everything at the configured level,
    ``settlement_error.log`` only errors.
    """
    level = get_log_level()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = []

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    root.addHandler(console)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(_rotating_handler(log_dir / "settlement.log", level))
        root.addHandler(_rotating_handler(log_dir / "settlement_error.log", logging.ERROR))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _renderer(env: str):
    if env in _JSON_ENVIRONMENTS:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=4),
    )


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", "settlement")
    return event_dict


def setup_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _add_service,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(_environment()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(log_dir: Path | None = None) -> None:
    """Configure stdlib handlers and structlog. Called once at process start."""
    setup_stdlib_logging(log_dir)
    setup_structlog()


def add_context(**kwargs: Any) -> None:
    """Bind values (request id, path) to every log line written from this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
