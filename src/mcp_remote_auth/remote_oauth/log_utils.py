"""Structured logging helpers for remote OAuth components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``session_id``     – Pending-authorization identifier (first 6 chars kept)
- ``server_id``      – Identifier of the remote server being connected
- ``board_id``       – Owning entity, opaque to the core
- ``correlation_id`` – Request correlation identifier set by the HTTP layer

Usage
-----
>>> from mcp_remote_auth.remote_oauth.log_utils import get_auth_logger
>>> log = get_auth_logger(session_id="5f0c0d8b9a1e4d2c", server_id="linear")
>>> log.info("Starting OAuth flow")
INFO mcp-remote-auth.remote_oauth session_id=5f0c0d server_id=linear ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("session_id", "server_id", "board_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "session_id":
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "mcp-remote-auth.remote_oauth",
    session_id: str | None = None,
    server_id: str | None = None,
    board_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {
            "session_id": session_id,
            "server_id": server_id,
            "board_id": board_id,
            "correlation_id": correlation_id,
        },
    )
