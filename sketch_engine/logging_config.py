"""
Structured logging configuration
"""
import logging
import sys
from typing import Optional

import structlog

from config import settings


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None):
    """
    Configure structlog on top of stdlib logging.

    Args:
        level: Log level name (defaults to LOG_LEVEL)
        fmt: "json" for machine-readable lines, "console" for local development
            (defaults to LOG_FORMAT)
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if (fmt or settings.LOG_FORMAT) == "console"
        else structlog.processors.JSONRenderer()
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("sketch_engine")


# Global logger instance
logger = setup_logging()
