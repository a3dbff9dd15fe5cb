"""Remote OAuth core package.

This namespace hosts the **HTTP-framework-agnostic** building blocks used to
connect to a remote MCP server that is protected by OAuth 2.0: metadata
discovery, dynamic client registration, PKCE authorization and token
lifecycle.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
pkce
    Proof-Key for Code Exchange helpers.
state
    HMAC-signed ``state`` parameter encoding / validation.
discovery
    RFC 9728 / RFC 8414 metadata discovery and the metadata cache.
registration
    RFC 7591 dynamic client registration.
authorize
    Authorization URL construction.
tokens
    Code exchange and refresh against the token endpoint.
models
    Dataclasses for metadata, pending authorizations and credentials.
errors
    Typed failure values returned (never raised) by the operations above.
store
    Persistence contract plus a JSON-file implementation.
service
    ``RemoteOAuthService`` orchestrating the whole connection lifecycle.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .pkce import code_challenge_s256, generate_code_verifier, generate_pkce_pair  # noqa: F401
from .state import decode_state, encode_state  # noqa: F401
from .discovery import DiscoveryResolver, MetadataCache, discover  # noqa: F401
from .registration import register_client  # noqa: F401
from .authorize import build_authorization_url  # noqa: F401
from .tokens import exchange_code, refresh_token  # noqa: F401
from .models import (  # noqa: F401
    AuthorizationRequest,
    ClientRegistration,
    ConnectionState,
    OAuthMetadata,
    PendingAuthorization,
    ServerCredential,
    StatePayload,
    TokenSet,
)
from .errors import (  # noqa: F401
    DiscoveryFailure,
    ExchangeFailure,
    NeedsReauth,
    OAuthFailure,
    RefreshFailure,
    RegistrationFailure,
    StateInvalid,
    TransportTimeout,
    is_failure,
)
from .log_utils import get_auth_logger  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    # pkce
    "generate_code_verifier",
    "code_challenge_s256",
    "generate_pkce_pair",
    # state
    "encode_state",
    "decode_state",
    # discovery / registration / authorize / tokens
    "discover",
    "DiscoveryResolver",
    "MetadataCache",
    "register_client",
    "build_authorization_url",
    "exchange_code",
    "refresh_token",
    # models
    "AuthorizationRequest",
    "ClientRegistration",
    "ConnectionState",
    "OAuthMetadata",
    "PendingAuthorization",
    "ServerCredential",
    "StatePayload",
    "TokenSet",
    # errors
    "OAuthFailure",
    "DiscoveryFailure",
    "RegistrationFailure",
    "StateInvalid",
    "ExchangeFailure",
    "RefreshFailure",
    "TransportTimeout",
    "NeedsReauth",
    "is_failure",
    # logging helpers
    "get_auth_logger",
]
