"""Logging configuration for the storefront API.

stdlib logging carries the records; structlog formats them. Development gets
a readable console renderer, production and staging get one JSON object per line.
Request handlers bind ``user_id`` through contextvars so every event of a
request carries it.
"""

import logging
import logging.handlers
import sys
from typing import Any, List

import structlog

import config

# Third-party loggers that are chatty at DEBUG/INFO.
QUIET_LOGGERS = {"pymongo": logging.WARNING, "passlib": logging.ERROR}


def _handlers() -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.LOG_FILE:
        handlers.append(logging.handlers.RotatingFileHandler(
            config.LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8",
        ))
    return handlers


def setup_stdlib_logging() -> None:
    root = logging.getLogger()
    root.setLevel(config.LOG_LEVEL)
    root.handlers = []
    for handler in _handlers():
        handler.setLevel(config.LOG_LEVEL)
        root.addHandler(handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def shared_processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def renderer_processors(json_output: bool) -> List[Any]:
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    # ConsoleRenderer prints tracebacks itself.
    return [structlog.dev.ConsoleRenderer(colors=False)]


def setup_structlog(json_output: bool = config.LOG_JSON) -> None:
    structlog.configure(
        processors=shared_processors() + renderer_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging() -> None:
    """Configure stdlib handlers and structlog; called once when the app module loads."""
    setup_stdlib_logging()
    setup_structlog()


def add_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
