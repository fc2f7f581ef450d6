"""
Structured logging setup.

Every module logs through structlog.get_logger(__name__) with snake_case
event names and keyword context. configure_logging() is called once when the
application is built; until then structlog's defaults apply, which keeps
library use and tests quiet and dependency free.
"""

from __future__ import annotations

import logging
import sys

import structlog


# PUBLIC_INTERFACE
def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Route structlog through the stdlib logging module.

    Args:
        level: Stdlib level name (DEBUG, INFO, ...).
        json_logs: Render JSON lines instead of the human-readable console format.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
