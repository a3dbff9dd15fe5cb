"""Logging helpers: secret masking and process-wide log configuration."""

from __future__ import annotations

import logging

import structlog


def mask_sensitive(value: str | None, keep: int = 4) -> str:
    """Return *value* with everything but the first *keep* characters masked.

    >>> mask_sensitive("abcdef123456", 4)
    'abcd********'
    """
    if not value:
        return ""
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "*" * min(len(value) - keep, 8)


def setup_logging(level: str | int = "INFO") -> None:
    """Route stdlib logging through structlog's formatter.

    Context bound with :mod:`structlog.contextvars` (for example the request
    correlation id) is merged into every record, including records emitted by
    plain ``logging.getLogger`` loggers.
    """
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            # whitelisted fields injected by remote_oauth.log_utils
            structlog.stdlib.ExtraAdder(),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
