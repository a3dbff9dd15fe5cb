"""Token endpoint calls: authorization-code exchange and refresh.

Both grants are form-encoded POSTs to ``metadata.token_endpoint`` with a
30 second timeout, longer than discovery because authorization servers may
validate synchronously against downstream identity providers.  The RFC 8707
``resource`` parameter is only sent when the caller passes one.

No token material is logged and nothing is retained after returning.
"""

from __future__ import annotations

import logging
from typing import Any, Final

from mcp_remote_auth.remote_oauth.clock import Clock, default_clock
from mcp_remote_auth.remote_oauth.errors import (
    ExchangeFailure,
    RefreshFailure,
    TransportTimeout,
    oauth_error_message,
)
from mcp_remote_auth.remote_oauth.http import FORM_CONTENT_TYPE, HttpError, HttpSession, send
from mcp_remote_auth.remote_oauth.models import OAuthMetadata, TokenSet

_LOG = logging.getLogger("mcp-remote-auth.remote_oauth.tokens")

TOKEN_TIMEOUT: Final[float] = 30.0


def _expires_at(expires_in: Any, now: float) -> float | None:
    if isinstance(expires_in, bool):
        return None
    try:
        seconds = float(expires_in)
    except (TypeError, ValueError):
        return None
    return now + seconds if seconds > 0 else None


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _post_token_request(
    metadata: OAuthMetadata,
    form: dict[str, str],
    *,
    failure_type: type[ExchangeFailure],
    operation: str,
    default_message: str,
    session: HttpSession | None,
    timeout: float,
    clock: Clock,
) -> tuple[dict[str, Any], float] | ExchangeFailure | TransportTimeout:
    result = send(
        "POST",
        metadata.token_endpoint,
        data=form,
        headers={"Content-Type": FORM_CONTENT_TYPE},
        timeout=timeout,
        operation=operation,
        session=session,
    )
    if isinstance(result, TransportTimeout):
        return result
    if isinstance(result, HttpError):
        return failure_type(message=f"{default_message}: {result.message}")

    data = result.json_object()
    if not result.ok:
        error = _optional_str((data or {}).get("error"))
        description = _optional_str((data or {}).get("error_description"))
        _LOG.warning(
            "Token endpoint %s returned HTTP %s (%s)",
            metadata.token_endpoint,
            result.status_code,
            error or "no error code",
        )
        return failure_type(
            message=oauth_error_message(
                error, description, f"{default_message} (HTTP {result.status_code})"
            ),
            error=error,
            error_description=description,
            status_code=result.status_code,
        )

    if data is None or not _optional_str(data.get("access_token")):
        return failure_type(
            message="Token response missing access_token",
            status_code=result.status_code,
        )
    return data, clock()


def exchange_code(
    metadata: OAuthMetadata,
    *,
    code: str,
    code_verifier: str,
    client_id: str,
    redirect_uri: str,
    client_secret: str | None = None,
    resource: str | None = None,
    session: HttpSession | None = None,
    timeout: float = TOKEN_TIMEOUT,
    clock: Clock = default_clock,
) -> TokenSet | ExchangeFailure | TransportTimeout:
    """Exchange an authorization *code* plus its PKCE verifier for tokens."""
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "code_verifier": code_verifier,
        "client_id": client_id,
        "redirect_uri": redirect_uri,
    }
    if client_secret:
        form["client_secret"] = client_secret  # noqa: S105
    if resource:
        form["resource"] = resource

    outcome = _post_token_request(
        metadata,
        form,
        failure_type=ExchangeFailure,
        operation="token exchange",
        default_message="Token exchange failed",
        session=session,
        timeout=timeout,
        clock=clock,
    )
    if not isinstance(outcome, tuple):
        return outcome

    data, now = outcome
    token_set = TokenSet(
        access_token=data["access_token"],
        refresh_token=_optional_str(data.get("refresh_token")),
        expires_at=_expires_at(data.get("expires_in"), now),
        scope=_optional_str(data.get("scope")),
        token_type=_optional_str(data.get("token_type")) or "Bearer",
    )
    _LOG.info(
        "Exchanged authorization code at %s (refresh token: %s)",
        metadata.token_endpoint,
        token_set.refresh_token is not None,
    )
    return token_set


def refresh_token(
    metadata: OAuthMetadata,
    *,
    refresh_token: str,
    client_id: str,
    client_secret: str | None = None,
    resource: str | None = None,
    session: HttpSession | None = None,
    timeout: float = TOKEN_TIMEOUT,
    clock: Clock = default_clock,
) -> TokenSet | RefreshFailure | TransportTimeout:
    """Obtain a new access token with a stored refresh token.

    A refresh token issued in the response replaces the supplied one.  When
    the server does not rotate, the supplied refresh token is carried over.
    """
    form = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client_id,
    }
    if client_secret:
        form["client_secret"] = client_secret  # noqa: S105
    if resource:
        form["resource"] = resource

    outcome = _post_token_request(
        metadata,
        form,
        failure_type=RefreshFailure,
        operation="token refresh",
        default_message="Token refresh failed",
        session=session,
        timeout=timeout,
        clock=clock,
    )
    if not isinstance(outcome, tuple):
        return outcome  # type: ignore[return-value]

    data, now = outcome
    rotated = _optional_str(data.get("refresh_token"))
    token_set = TokenSet(
        access_token=data["access_token"],
        refresh_token=rotated or refresh_token,
        expires_at=_expires_at(data.get("expires_in"), now),
        scope=_optional_str(data.get("scope")),
        token_type=_optional_str(data.get("token_type")) or "Bearer",
    )
    _LOG.info(
        "Refreshed access token at %s (rotated refresh token: %s)",
        metadata.token_endpoint,
        rotated is not None,
    )
    return token_set
