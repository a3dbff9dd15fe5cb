"""Dynamic client registration (RFC 7591).

Registers this application as a **public** client (``token_endpoint_auth_method
= none``) with the authorization code and refresh token grants.  A server that
does not advertise a registration endpoint yields a distinct
``registration_unsupported`` failure so the caller can fall back to a
pre-configured client id.
"""

from __future__ import annotations

import logging
from typing import Final

from mcp_remote_auth.remote_oauth.errors import (
    RegistrationFailure,
    TransportTimeout,
    oauth_error_message,
)
from mcp_remote_auth.remote_oauth.http import HttpError, HttpSession, send
from mcp_remote_auth.remote_oauth.models import ClientRegistration, OAuthMetadata

_LOG = logging.getLogger("mcp-remote-auth.remote_oauth.registration")

REGISTRATION_TIMEOUT: Final[float] = 10.0
DEFAULT_CLIENT_NAME: Final[str] = "MCP Remote Auth Client"


def register_client(
    metadata: OAuthMetadata,
    redirect_uri: str,
    client_name: str = DEFAULT_CLIENT_NAME,
    *,
    session: HttpSession | None = None,
    timeout: float = REGISTRATION_TIMEOUT,
) -> ClientRegistration | RegistrationFailure | TransportTimeout:
    """Register a public OAuth client at ``metadata.registration_endpoint``."""
    if not metadata.registration_endpoint:
        return RegistrationFailure(
            message="Server does not support dynamic client registration",
            code="registration_unsupported",
        )

    registration_request = {
        "redirect_uris": [redirect_uri],
        "client_name": client_name,
        "token_endpoint_auth_method": "none",
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
    }

    _LOG.info("Registering OAuth client at %s", metadata.registration_endpoint)
    result = send(
        "POST",
        metadata.registration_endpoint,
        json=registration_request,
        timeout=timeout,
        operation="registration",
        session=session,
    )
    if isinstance(result, TransportTimeout):
        return result
    if isinstance(result, HttpError):
        return RegistrationFailure(message=f"Client registration failed: {result.message}")

    data = result.json_object() or {}
    if not result.ok:
        error = data.get("error") if isinstance(data.get("error"), str) else None
        description = (
            data.get("error_description") if isinstance(data.get("error_description"), str) else None
        )
        return RegistrationFailure(
            message=oauth_error_message(
                error, description, f"Client registration failed (HTTP {result.status_code})"
            ),
            error=error,
            error_description=description,
        )

    client_id = data.get("client_id")
    if not isinstance(client_id, str) or not client_id:
        return RegistrationFailure(
            message="Registration response missing client_id",
            code="invalid_registration_response",
        )

    client_secret = data.get("client_secret")
    _LOG.info(
        "Registered client %s (public: %s)", client_id, not isinstance(client_secret, str)
    )
    return ClientRegistration(
        client_id=client_id,
        client_secret=client_secret if isinstance(client_secret, str) and client_secret else None,
    )
