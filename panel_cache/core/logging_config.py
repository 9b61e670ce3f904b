"""
Logging Setup

Structured logging configuration shared by the cache core and its callers.
Routes structlog through stdlib logging so module loggers created with
``logging.getLogger(__name__)`` and ``structlog.get_logger()`` end up in the
same handlers.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import get_settings

_configured = False


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        level: Log level name (defaults to settings.LOG_LEVEL)
        json_logs: Render JSON instead of console output (defaults to settings.LOG_JSON)
    """
    global _configured

    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    json_logs = settings.LOG_JSON if json_logs is None else json_logs

    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
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

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    _configured = True
    logging.getLogger(__name__).debug(
        "Logging configured", extra={"level": level, "json": json_logs}
    )


def is_configured() -> bool:
    """Check whether configure_logging() has run."""
    return _configured
