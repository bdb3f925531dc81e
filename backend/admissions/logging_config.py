"""
Structured Logging — JSON log lines via structlog.
"""
import logging

import structlog

from admissions.config import get_settings


def configure_logging(level: str | None = None) -> None:
    """Configure structlog once for the process."""
    level_name = (level or get_settings().LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
