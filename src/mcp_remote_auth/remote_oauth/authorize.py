"""Authorization request URL construction (RFC 6749 §4.1.1 + RFC 7636)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Final
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mcp_remote_auth.remote_oauth.models import OAuthMetadata

# Parameters owned by this module; same-named ones on the endpoint are replaced.
_MANAGED_PARAMS: Final[frozenset[str]] = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "state",
        "code_challenge",
        "code_challenge_method",
        "scope",
        "resource",
    }
)


def resolve_scope(metadata: OAuthMetadata, scopes: Sequence[str] | None) -> str | None:
    """Caller scopes, else every advertised scope, else ``None``."""
    if scopes:
        return " ".join(scopes)
    if metadata.scopes_supported:
        return " ".join(metadata.scopes_supported)
    return None


def build_authorization_url(
    metadata: OAuthMetadata,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scopes: Sequence[str] | None = None,
    include_resource: bool = False,
) -> str:
    """Return the authorization endpoint URL for a PKCE authorization request.

    The RFC 8707 ``resource`` parameter is left out unless *include_resource*
    is set, because many third-party servers reject requests carrying it.
    """
    parts = urlsplit(metadata.authorization_endpoint)
    query: list[tuple[str, str]] = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k not in _MANAGED_PARAMS
    ]
    query += [
        ("response_type", "code"),
        ("client_id", client_id),
        ("redirect_uri", redirect_uri),
        ("state", state),
        ("code_challenge", code_challenge),
        ("code_challenge_method", "S256"),
    ]

    scope = resolve_scope(metadata, scopes)
    if scope:
        query.append(("scope", scope))
    if include_resource and metadata.resource:
        query.append(("resource", metadata.resource))

    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))
