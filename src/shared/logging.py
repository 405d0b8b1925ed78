"""Logging for the marketplace core and the adapter processes.

structlog is bridged onto the standard library so uvicorn, protean and
SQLAlchemy records share handlers with our own events. Credentials never
reach a handler: ``redact_secrets`` masks them before rendering.

Environment:
    LOG_LEVEL     explicit level; otherwise derived from ENVIRONMENT/PROTEAN_ENV
    LOG_FORMAT    ``json`` or ``console``; production and staging default to json
    LOG_DIR       when set, also write ``{service}.log`` and ``{service}_error.log`` there
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog

_LEVELS_BY_ENVIRONMENT = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "sqlalchemy.engine", "protean")

SECRET_KEYS = frozenset(
    {"api_key", "raw_key", "secret", "token", "authorization", "x-circles-service-key", "x-admin-key"}
)
REDACTED = "***"


def _environment() -> str:
    return (os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").strip().lower()


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL") or _LEVELS_BY_ENVIRONMENT.get(_environment(), "INFO")


def _wants_json() -> bool:
    explicit = (os.getenv("LOG_FORMAT") or "").strip().lower()
    if explicit:
        return explicit == "json"
    return _environment() in ("production", "staging")


def redact_secrets(_logger, _method_name: str, event_dict: dict) -> dict:
    """Mask credential-bearing keys, including inside a nested ``headers`` dict."""
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in SECRET_KEYS else value for name, value in headers.items()
        }
    return event_dict


def _rotating_handler(path: Path, level: int | str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(service_name: str) -> None:
    log_level = get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_rotating_handler(directory / f"{service_name}.log", log_level))
        root_logger.addHandler(_rotating_handler(directory / f"{service_name}_error.log", logging.ERROR))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_structlog(service_name: str) -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets,
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
    ]

    if _wants_json():
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=3),
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)


def configure_logging(service_name: str = "market") -> None:
    """Configure stdlib and structlog logging for one service process."""
    setup_stdlib_logging(service_name)
    setup_structlog(service_name)


def add_context(**kwargs: Any) -> None:
    """Bind key/values onto every event logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context(*keys: str) -> None:
    """Drop ``keys`` from the logging context, or everything when none are given."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
