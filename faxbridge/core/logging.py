"""
Structured logging setup shared by the worker CLI and the admin app.

Produces JSON in production (for log aggregation) and a readable console
rendering in development.
"""

import logging

import structlog

from faxbridge.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structlog and the stdlib root logger from settings."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),  # ISO 8601 timestamps
            structlog.stdlib.add_log_level,  # Add log level to output
            structlog.processors.StackInfoRenderer(),  # Stack traces when needed
            structlog.processors.format_exc_info,  # Format exceptions
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
