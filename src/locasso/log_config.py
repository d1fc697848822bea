"""Structlog configuration.

Learn: Every module does `logger = structlog.get_logger()` and logs
dot-namespaced events with keyword context. This module wires structlog
on top of stdlib logging once, at app startup:

- contextvars are merged, so the request_id bound by RequestIdMiddleware
  shows up on every entry for that request
- exceptions are rendered with full tracebacks
- JSON in production, pretty console output everywhere else
"""

import logging
from typing import Optional

import structlog

from locasso.config import settings


def configure_logging(
    log_level: Optional[str] = None,
    json_output: Optional[bool] = None,
) -> None:
    """Configure structlog + stdlib logging. Safe to call more than once."""
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    as_json = settings.is_production if json_output is None else json_output

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if as_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=level, force=True)
    # SQL echo is controlled by settings.debug on the engine, keep the
    # sqlalchemy logger from doubling it up
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
