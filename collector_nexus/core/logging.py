"""
Logging configuration for the application.
"""
import logging
import sys

import structlog

from collector_nexus.core.config import settings


def setup_logging(debug: bool | None = None):
    """
    Configure structured logging for the application.

    Args:
        debug: Override for the debug flag. Defaults to ``settings.api_debug``.
    """
    debug = settings.api_debug if debug is None else debug
    log_level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
            if debug
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # Provider HTTP calls are logged by the adapters themselves
    quiet = {
        "httpx": logging.WARNING,
        "httpcore": logging.WARNING,
        "celery": logging.INFO if debug else logging.WARNING,
        "sqlalchemy.engine": logging.INFO if debug else logging.WARNING,
    }
    for name, level in quiet.items():
        logging.getLogger(name).setLevel(level)
