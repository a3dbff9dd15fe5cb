"""Clock abstraction for testable time handling in the remote OAuth core.

All time-based decisions inside :mod:`mcp_remote_auth.remote_oauth` (state
freshness, pending-authorization expiry, token ``expires_at``) MUST depend on
an injected ``Clock`` rather than calling ``time.time()`` directly, so that
tests can pin "now" to a fixed value.

Example
-------
>>> from mcp_remote_auth.remote_oauth.clock import default_clock, to_millis
>>> isinstance(default_clock(), float)
True
>>> to_millis(lambda: 1.5)
1500
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()


def to_millis(clock: Clock) -> int:
    """Return the clock's current reading in whole milliseconds."""
    return int(clock() * 1000)
