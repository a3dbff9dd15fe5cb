"""Typed, immutable records used by the remote OAuth core."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Final

from mcp_remote_auth.remote_oauth.clock import Clock, default_clock

# A pending authorization is never exchanged after this many seconds.
PENDING_TTL_SECONDS: Final[int] = 600


class ConnectionState(str, enum.Enum):
    """Lifecycle of one remote server connection, as seen by the caller."""

    UNDISCOVERED = "undiscovered"
    DISCOVERING = "discovering"
    DISCOVERED = "discovered"
    REGISTERING = "registering"
    CLIENT_READY = "client_ready"
    AUTHORIZING = "authorizing"
    CODE_RECEIVED = "code_received"
    EXCHANGING = "exchanging"
    CONNECTED = "connected"
    REFRESHING = "refreshing"
    NEEDS_REAUTH = "needs_reauth"


@dataclass(frozen=True, slots=True)
class OAuthMetadata:
    """Combined protected-resource and authorization-server metadata."""

    resource: str
    authorization_server: str
    authorization_endpoint: str
    token_endpoint: str
    scopes_supported: list[str] | None = None
    registration_endpoint: str | None = None
    revocation_endpoint: str | None = None
    code_challenge_methods_supported: list[str] | None = None
    cached_at: float = field(default_factory=default_clock)

    def supports_s256(self) -> bool:
        return "S256" in (self.code_challenge_methods_supported or ())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthMetadata:
        return cls(**data)


@dataclass(frozen=True, slots=True)
class StatePayload:
    """Values carried inside a signed ``state`` string."""

    session_id: str
    nonce: str
    # Milliseconds since the UNIX epoch
    timestamp: int


@dataclass(frozen=True, slots=True)
class PendingAuthorization:
    """One in-flight connection attempt, created right before the redirect."""

    session_id: str
    server_id: str
    server_url: str
    client_id: str
    redirect_uri: str
    code_verifier: str
    state: str
    resource: str
    board_id: str = "default"
    client_secret: str | None = None
    scopes: str | None = None
    created_at: float = field(default_factory=default_clock)
    expires_at: float = 0.0

    def __post_init__(self) -> None:
        if not self.expires_at:
            object.__setattr__(self, "expires_at", self.created_at + PENDING_TTL_SECONDS)

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once the fixed authorization window has passed."""
        return clock() >= self.expires_at


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Result of a code exchange or refresh.

    ``expires_at`` is ``None`` when the server did not state a lifetime; such a
    token is assumed valid until a call made with it fails.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None
    scope: str | None = None
    token_type: str = "Bearer"

    def is_expired(self, buffer_seconds: int = 0, *, clock: Clock = default_clock) -> bool:
        if self.expires_at is None:
            return False
        return clock() >= (self.expires_at - buffer_seconds)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        return cls(**data)


@dataclass(frozen=True, slots=True)
class ClientRegistration:
    """Client credentials returned by dynamic client registration."""

    client_id: str
    client_secret: str | None = None


@dataclass(frozen=True, slots=True)
class ServerCredential:
    """Everything persisted for one connected server.

    Overwritten wholesale after every successful exchange or refresh.
    """

    server_id: str
    client_id: str
    token_set: TokenSet
    client_secret: str | None = None
    board_id: str = "default"
    server_url: str | None = None
    updated_at: float = field(default_factory=default_clock)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerCredential:
        values = dict(data)
        values["token_set"] = TokenSet.from_dict(values["token_set"])
        return cls(**values)


@dataclass(frozen=True, slots=True)
class AuthorizationRequest:
    """What a caller needs to send the user to the authorization server."""

    url: str
    state: str
    session_id: str
    client_id: str
    expires_at: float
