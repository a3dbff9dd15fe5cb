"""Test doubles shared across the suite.

The fake session routes ``(method, url)`` pairs to canned responses so that
no test ever touches the network.  A route may be a ``FakeResponse``, an
exception instance to raise (e.g. ``requests.Timeout()``), a callable taking
the recorded call and returning either of those, or a list consumed one
entry per request.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

SERVER_URL = "https://mcp.example.com/mcp"
SERVER_ORIGIN = "https://mcp.example.com"
AUTH_SERVER = "https://auth.example.com"
AUTHORIZE_ENDPOINT = f"{AUTH_SERVER}/authorize"
TOKEN_ENDPOINT = f"{AUTH_SERVER}/token"
REGISTRATION_ENDPOINT = f"{AUTH_SERVER}/register"
PRM_URL = f"{SERVER_ORIGIN}/.well-known/oauth-protected-resource"
AS_METADATA_URL = f"{AUTH_SERVER}/.well-known/oauth-authorization-server"
REDIRECT_URI = "http://localhost:8000/oauth/callback"
STATE_SECRET = "test-state-secret"
NOW = 1_700_000_000.0

_NO_JSON = object()


class FakeResponse:
    """Just enough of :class:`requests.Response` for the HTTP helper."""

    def __init__(self, status_code: int = 200, json_data: Any = _NO_JSON, text: str = "") -> None:
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self) -> Any:
        if self._json is _NO_JSON:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeSession:
    """Stand-in for ``requests.Session`` that never opens a socket."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[SimpleNamespace] = []

    def add(
        self,
        url: str,
        response: Any = None,
        *,
        method: str = "GET",
        status: int = 200,
        json: Any = _NO_JSON,
    ) -> None:
        if response is None:
            response = FakeResponse(status, json)
        self.routes[(method.upper(), url)] = response

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        call = SimpleNamespace(method=method.upper(), url=url, **kwargs)
        self.calls.append(call)
        route = self.routes.get((call.method, url))
        if isinstance(route, list):
            route = route.pop(0) if route else None
        if callable(route) and not isinstance(route, FakeResponse):
            route = route(call)
        if route is None:
            return FakeResponse(404, {"error": "not_found"})
        if isinstance(route, BaseException):
            raise route
        return route

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def urls(self, method: str | None = None) -> list[str]:
        return [c.url for c in self.calls if method is None or c.method == method.upper()]

    def last(self, method: str, url: str) -> SimpleNamespace:
        matches = [c for c in self.calls if c.method == method.upper() and c.url == url]
        assert matches, f"no {method} {url} recorded"
        return matches[-1]


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def as_metadata_document(**overrides: Any) -> dict[str, Any]:
    """Authorization server metadata; pass ``field=None`` to drop a field."""
    doc: dict[str, Any] = {
        "issuer": AUTH_SERVER,
        "authorization_endpoint": AUTHORIZE_ENDPOINT,
        "token_endpoint": TOKEN_ENDPOINT,
        "registration_endpoint": REGISTRATION_ENDPOINT,
        "scopes_supported": ["read", "write"],
        "code_challenge_methods_supported": ["S256"],
    }
    doc.update(overrides)
    return {k: v for k, v in doc.items() if v is not None}


def token_response(**overrides: Any) -> FakeResponse:
    body: dict[str, Any] = {
        "access_token": "at-1",
        "refresh_token": "rt-1",
        "expires_in": 3600,
        "token_type": "Bearer",
        "scope": "read write",
    }
    body.update(overrides)
    return FakeResponse(200, {k: v for k, v in body.items() if v is not None})


OTHER_ORIGIN = "https://other.example.com"
OTHER_SERVER_URL = f"{OTHER_ORIGIN}/mcp"


def add_self_hosted_server(session: FakeSession, origin: str = OTHER_ORIGIN) -> None:
    """Serve root-level metadata for a server that is its own authorization server."""
    session.add(
        f"{origin}/.well-known/oauth-authorization-server",
        json=as_metadata_document(
            issuer=origin,
            authorization_endpoint=f"{origin}/authorize",
            token_endpoint=f"{origin}/token",
            registration_endpoint=f"{origin}/register",
        ),
    )
    session.add(f"{origin}/register", method="POST", status=201, json={"client_id": "other-client"})
