"""
Structured logging setup.

Services log through ``structlog.get_logger`` with key/value fields;
lower-level modules use ``logging.getLogger`` and %-style messages. Both
end up on stdout: JSON lines in production, a colored console in
development.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from src.config.settings import get_settings

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "playwright", "uvicorn.access")


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Overrides ``LOG_LEVEL`` (the CLI passes DEBUG for ``--debug``).
    """
    settings = get_settings()
    level = level or settings.log_level

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Tag every following log line of the current task (job name, run id)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context(*keys: str) -> None:
    """Drop the given context keys, or all of them when none are named."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
