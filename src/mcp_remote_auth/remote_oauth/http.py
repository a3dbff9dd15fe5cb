"""Outbound HTTP helpers with a per-call timeout guard.

Every request made by the remote OAuth core goes through :func:`send`, which
never raises for network problems: a ``requests.Timeout`` becomes
:class:`~mcp_remote_auth.remote_oauth.errors.TransportTimeout` and any other
``requests.RequestException`` becomes an :class:`HttpError`.  Callers decide
how those map onto their own failure type.

A ``requests.Session`` (or anything exposing the same ``request`` method) can
be injected; otherwise a short-lived session is used for the single call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final, Protocol

import requests

from mcp_remote_auth.remote_oauth.errors import TransportTimeout

_LOG = logging.getLogger("mcp-remote-auth.remote_oauth.http")

JSON_ACCEPT: Final[dict[str, str]] = {"Accept": "application/json"}
FORM_CONTENT_TYPE: Final[str] = "application/x-www-form-urlencoded"


class HttpSession(Protocol):
    """The subset of :class:`requests.Session` used by the core."""

    def request(self, method: str, url: str, **kwargs: Any) -> Any: ...


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Status code plus decoded JSON body (``None`` when not JSON)."""

    status_code: int
    body: Any = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json_object(self) -> dict[str, Any] | None:
        """Return the body if it is a JSON object, else ``None``."""
        return self.body if isinstance(self.body, dict) else None


@dataclass(frozen=True, slots=True)
class HttpError:
    """Connection-level failure (DNS, refused connection, TLS…)."""

    url: str
    message: str


def send(
    method: str,
    url: str,
    *,
    timeout: float,
    operation: str,
    session: HttpSession | None = None,
    **kwargs: Any,
) -> HttpResponse | HttpError | TransportTimeout:
    """Perform one HTTP request bounded by *timeout* seconds."""
    headers = {**JSON_ACCEPT, **(kwargs.pop("headers", None) or {})}
    owned = session is None
    client: HttpSession = requests.Session() if owned else session
    try:
        resp = client.request(method, url, headers=headers, timeout=timeout, **kwargs)
    except requests.Timeout:
        _LOG.warning("%s request to %s timed out after %ss", operation, url, timeout)
        return TransportTimeout(
            message=f"{operation.capitalize()} request timed out after {timeout:g}s",
            operation=operation,
            url=url,
        )
    except requests.RequestException as exc:
        _LOG.debug("%s request to %s failed: %s", operation, url, exc)
        return HttpError(url=url, message=str(exc) or type(exc).__name__)
    finally:
        if owned:
            client.close()  # type: ignore[attr-defined]

    try:
        body = resp.json()
    except ValueError:
        body = None
    return HttpResponse(status_code=resp.status_code, body=body, text=(resp.text or "")[:200])
