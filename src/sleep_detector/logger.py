"""Structured logging configuration using *structlog*."""

from __future__ import annotations

import logging
import sys

import structlog

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx")


def setup_logging(level: str = "INFO", *, json_output: bool | None = None) -> None:
    """Configure *structlog* processors and stdlib integration.

    Call once at application startup.  Detection events are emitted with
    dotted names (``controller.status_changed``, ``storage.read_failed``) and
    key/value context, so the JSON output can be filtered per component.

    *json_output* defaults to JSON when stderr is not a terminal.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = not sys.stderr.isatty()

    logging.basicConfig(level=numeric_level, stream=sys.stderr, format="%(message)s")
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="sleep-detector")
