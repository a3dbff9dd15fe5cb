"""RemoteOAuthService – caller-level orchestration of the connection flow.

This service drives one remote server through the connection lifecycle::

    UNDISCOVERED → DISCOVERING → DISCOVERED → (REGISTERING → CLIENT_READY)
      → AUTHORIZING → CODE_RECEIVED → EXCHANGING → CONNECTED
    CONNECTED → REFRESHING → CONNECTED | NEEDS_REAUTH

It owns the parts the stateless core leaves to its caller: caching discovered
metadata, persisting the pending authorization and the resulting credential,
and serialising refreshes for the same server.  Handlers in
``mcp_remote_auth.servers.auth`` call the thin façade methods below.

Every method returns either its success value or an
:class:`~mcp_remote_auth.remote_oauth.errors.OAuthFailure`; nothing is raised
for network or protocol problems.  **All secrets are redacted** from logs.
"""

from __future__ import annotations

import dataclasses
import hmac
import logging
import secrets
import uuid
from collections.abc import Sequence

from mcp_remote_auth.remote_oauth.authorize import build_authorization_url, resolve_scope
from mcp_remote_auth.remote_oauth.clock import Clock, default_clock
from mcp_remote_auth.remote_oauth.discovery import (
    DISCOVERY_TIMEOUT,
    DiscoveryResolver,
    MetadataCache,
)
from mcp_remote_auth.remote_oauth.errors import (
    DiscoveryFailure,
    ExchangeFailure,
    NeedsReauth,
    RefreshFailure,
    RegistrationFailure,
    StateInvalid,
    TransportTimeout,
)
from mcp_remote_auth.remote_oauth.http import HttpSession
from mcp_remote_auth.remote_oauth.log_utils import get_auth_logger
from mcp_remote_auth.remote_oauth.models import (
    AuthorizationRequest,
    ClientRegistration,
    ConnectionState,
    OAuthMetadata,
    PendingAuthorization,
    ServerCredential,
    TokenSet,
)
from mcp_remote_auth.remote_oauth.pkce import generate_pkce_pair
from mcp_remote_auth.remote_oauth.registration import (
    DEFAULT_CLIENT_NAME,
    REGISTRATION_TIMEOUT,
    register_client,
)
from mcp_remote_auth.remote_oauth.state import decode_state, encode_state
from mcp_remote_auth.remote_oauth.store import AuthStore, DiskAuthStore, default_store
from mcp_remote_auth.remote_oauth.tokens import TOKEN_TIMEOUT, exchange_code, refresh_token
from mcp_remote_auth.utils.environment import OAuthSettings

_LOG = logging.getLogger("mcp-remote-auth.remote_oauth.service")

_BASE_LOGGER = "mcp-remote-auth.remote_oauth.service"


class RemoteOAuthService:
    """Application service orchestrating OAuth connections to remote servers."""

    def __init__(
        self,
        store: AuthStore | None = None,
        *,
        state_secret: str,
        session: HttpSession | None = None,
        cache: MetadataCache | None = None,
        client_name: str = DEFAULT_CLIENT_NAME,
        default_client_id: str | None = None,
        include_resource: bool = False,
        discovery_timeout: float = DISCOVERY_TIMEOUT,
        registration_timeout: float = REGISTRATION_TIMEOUT,
        token_timeout: float = TOKEN_TIMEOUT,
        clock: Clock = default_clock,
    ) -> None:
        if not state_secret:
            raise ValueError("state_secret must not be empty")
        self.store = store or default_store()
        self.session = session
        self.client_name = client_name
        self.default_client_id = default_client_id
        self.include_resource = include_resource
        self.registration_timeout = registration_timeout
        self.token_timeout = token_timeout
        self.clock = clock
        self.resolver = DiscoveryResolver(
            cache=cache, session=session, timeout=discovery_timeout, clock=clock
        )
        self._state_secret: str = state_secret

    @classmethod
    def from_settings(
        cls,
        settings: OAuthSettings,
        *,
        store: AuthStore | None = None,
        session: HttpSession | None = None,
    ) -> RemoteOAuthService:
        return cls(
            store or DiskAuthStore(settings.storage_dir),
            state_secret=settings.state_secret,
            session=session,
            cache=MetadataCache(ttl_seconds=settings.metadata_ttl),
            client_name=settings.client_name,
            default_client_id=settings.default_client_id,
            include_resource=settings.include_resource,
            discovery_timeout=settings.discovery_timeout,
            registration_timeout=settings.registration_timeout,
            token_timeout=settings.token_timeout,
        )

    # ------------------------------------------------------------------ #
    # Discovery                                                          #
    # ------------------------------------------------------------------ #
    def discover(
        self, server_id: str, server_url: str, *, force: bool = False
    ) -> OAuthMetadata | DiscoveryFailure | TransportTimeout:
        """Return OAuth metadata for *server_id*, discovering it if needed."""
        log = get_auth_logger(base_logger_name=_BASE_LOGGER, server_id=server_id)
        log.debug("State %s", ConnectionState.DISCOVERING.value)
        result = self.resolver.resolve(server_id, server_url, force=force)
        if isinstance(result, OAuthMetadata):
            log.debug("State %s", ConnectionState.DISCOVERED.value)
        else:
            log.warning("Discovery failed for server_id=%s: %s", server_id, result)
        return result

    # ------------------------------------------------------------------ #
    # Authorization                                                      #
    # ------------------------------------------------------------------ #
    def _client_for(
        self, metadata: OAuthMetadata, redirect_uri: str, server_id: str
    ) -> ClientRegistration | RegistrationFailure | TransportTimeout:
        """Register a client, falling back to the configured client id."""
        if not metadata.registration_endpoint:
            if self.default_client_id:
                return ClientRegistration(client_id=self.default_client_id)
            return RegistrationFailure(
                message=(
                    "Server does not support dynamic client registration "
                    "and no client id is configured"
                ),
                code="registration_unsupported",
            )

        _LOG.debug("State %s server_id=%s", ConnectionState.REGISTERING.value, server_id)
        registration = register_client(
            metadata,
            redirect_uri,
            self.client_name,
            session=self.session,
            timeout=self.registration_timeout,
        )
        if isinstance(registration, ClientRegistration):
            return registration
        if self.default_client_id:
            _LOG.warning(
                "Dynamic client registration failed for server_id=%s (%s); "
                "using configured client id",
                server_id,
                registration,
            )
            return ClientRegistration(client_id=self.default_client_id)
        return registration

    def start_authorization(
        self,
        *,
        server_id: str,
        server_url: str,
        redirect_uri: str,
        board_id: str = "default",
        scopes: Sequence[str] | None = None,
    ) -> AuthorizationRequest | DiscoveryFailure | RegistrationFailure | TransportTimeout:
        """Prepare PKCE + state, store the pending record and build the URL."""
        metadata = self.discover(server_id, server_url)
        if not isinstance(metadata, OAuthMetadata):
            return metadata

        client = self._client_for(metadata, redirect_uri, server_id)
        if not isinstance(client, ClientRegistration):
            return client

        code_verifier, code_challenge = generate_pkce_pair()
        session_id = uuid.uuid4().hex
        state = encode_state(
            session_id, secrets.token_urlsafe(24), self._state_secret, clock=self.clock
        )
        pending = PendingAuthorization(
            session_id=session_id,
            server_id=server_id,
            server_url=server_url,
            board_id=board_id,
            client_id=client.client_id,
            client_secret=client.client_secret,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            state=state,
            resource=metadata.resource,
            scopes=resolve_scope(metadata, scopes),
            created_at=self.clock(),
        )
        self.store.create_pending(pending)

        url = build_authorization_url(
            metadata,
            client_id=client.client_id,
            redirect_uri=redirect_uri,
            state=state,
            code_challenge=code_challenge,
            scopes=scopes,
            include_resource=self.include_resource,
        )
        get_auth_logger(
            base_logger_name=_BASE_LOGGER,
            session_id=session_id,
            server_id=server_id,
            board_id=board_id,
        ).info("State %s", ConnectionState.AUTHORIZING.value)
        return AuthorizationRequest(
            url=url,
            state=state,
            session_id=session_id,
            client_id=client.client_id,
            expires_at=pending.expires_at,
        )

    def complete_authorization(
        self, *, code: str, state: str
    ) -> ServerCredential | StateInvalid | ExchangeFailure | DiscoveryFailure | TransportTimeout:
        """Verify *state*, consume the pending record and exchange *code*."""
        payload = decode_state(state, self._state_secret, clock=self.clock)
        if payload is None:
            return StateInvalid()

        pending = self.store.consume_pending(payload.session_id)
        if pending is None or not hmac.compare_digest(
            pending.state.encode("utf-8"), state.encode("utf-8")
        ):
            return StateInvalid()

        log = get_auth_logger(
            base_logger_name=_BASE_LOGGER,
            session_id=pending.session_id,
            server_id=pending.server_id,
            board_id=pending.board_id,
        )
        log.info("State %s", ConnectionState.CODE_RECEIVED.value)

        if pending.is_expired(clock=self.clock):
            log.warning("Pending authorization expired before code exchange")
            return ExchangeFailure(
                message="Authorization request has expired; start the connection again.",
                code="authorization_expired",
            )

        metadata = self.discover(pending.server_id, pending.server_url)
        if not isinstance(metadata, OAuthMetadata):
            return metadata

        log.debug("State %s", ConnectionState.EXCHANGING.value)
        token_set = exchange_code(
            metadata,
            code=code,
            code_verifier=pending.code_verifier,
            client_id=pending.client_id,
            client_secret=pending.client_secret,
            redirect_uri=pending.redirect_uri,
            resource=pending.resource if self.include_resource else None,
            session=self.session,
            timeout=self.token_timeout,
            clock=self.clock,
        )
        if not isinstance(token_set, TokenSet):
            log.warning("Code exchange failed: %s", token_set)
            return token_set

        credential = ServerCredential(
            server_id=pending.server_id,
            client_id=pending.client_id,
            client_secret=pending.client_secret,
            token_set=token_set,
            board_id=pending.board_id,
            server_url=pending.server_url,
            updated_at=self.clock(),
        )
        self.store.save_credential(credential)
        log.info("State %s", ConnectionState.CONNECTED.value)
        return credential

    # ------------------------------------------------------------------ #
    # Token access & refresh                                             #
    # ------------------------------------------------------------------ #
    def _refresh_credential(
        self, server_id: str, credential: ServerCredential | None
    ) -> ServerCredential | NeedsReauth | RefreshFailure | DiscoveryFailure | TransportTimeout:
        """Refresh *credential* and persist the result. Caller holds the lock."""
        if credential is None:
            return NeedsReauth(message="No stored credentials", server_id=server_id)
        if not credential.token_set.refresh_token:
            return NeedsReauth(
                message="No refresh token stored; re-authorization required",
                server_id=server_id,
            )
        if not credential.server_url:
            return NeedsReauth(message="Server URL unknown for stored credentials", server_id=server_id)

        metadata = self.discover(server_id, credential.server_url)
        if not isinstance(metadata, OAuthMetadata):
            return metadata

        _LOG.debug("State %s server_id=%s", ConnectionState.REFRESHING.value, server_id)
        refreshed = refresh_token(
            metadata,
            refresh_token=credential.token_set.refresh_token,
            client_id=credential.client_id,
            client_secret=credential.client_secret,
            resource=metadata.resource if self.include_resource else None,
            session=self.session,
            timeout=self.token_timeout,
            clock=self.clock,
        )
        if isinstance(refreshed, RefreshFailure) and refreshed.status_code in (400, 401, 403):
            # The server rejected the refresh token; keep the record but mark it unusable.
            now = self.clock()
            expires_at = credential.token_set.expires_at
            revoked = dataclasses.replace(
                credential.token_set,
                refresh_token=None,
                expires_at=now if expires_at is None else min(expires_at, now),
            )
            self.store.save_credential(
                dataclasses.replace(credential, token_set=revoked, updated_at=now)
            )
            _LOG.warning("Refresh rejected for server_id=%s: %s", server_id, refreshed)
            return NeedsReauth(message=f"Refresh rejected: {refreshed.message}", server_id=server_id)
        if not isinstance(refreshed, TokenSet):
            return refreshed

        updated = dataclasses.replace(credential, token_set=refreshed, updated_at=self.clock())
        self.store.save_credential(updated)
        _LOG.info("Refreshed access token for server_id=%s", server_id)
        return updated

    def refresh(
        self, server_id: str
    ) -> ServerCredential | NeedsReauth | RefreshFailure | DiscoveryFailure | TransportTimeout:
        """Refresh the stored credential for *server_id* now."""
        try:
            with self.store.credential_lock(server_id):
                credential = self.store.load_credential(server_id)
                return self._refresh_credential(server_id, credential)
        except TimeoutError:
            return RefreshFailure(
                message="Token refresh in progress; retry soon.",
                code="refresh_in_progress",
            )

    def get_access_token(
        self, server_id: str, *, grace_seconds: int = 60
    ) -> str | NeedsReauth | RefreshFailure | DiscoveryFailure | TransportTimeout:
        """Return a valid access token, refreshing on-demand.

        Implements single-flight behaviour: only one refresh runs at a time
        per server by leveraging the store's lock.  Callers that lose the lock
        get a ``refresh_in_progress`` failure so they can retry shortly.
        """
        credential = self.store.load_credential(server_id)
        if credential is None:
            return NeedsReauth(message="No stored credentials", server_id=server_id)
        if not credential.token_set.is_expired(grace_seconds, clock=self.clock):
            return credential.token_set.access_token

        try:
            with self.store.credential_lock(server_id):
                # Another thread/process may have refreshed while we waited.
                latest = self.store.load_credential(server_id)
                if latest and not latest.token_set.is_expired(grace_seconds, clock=self.clock):
                    return latest.token_set.access_token
                result = self._refresh_credential(server_id, latest)
        except TimeoutError:
            return RefreshFailure(
                message="Token refresh in progress; retry soon.",
                code="refresh_in_progress",
            )

        if isinstance(result, ServerCredential):
            return result.token_set.access_token
        return result

    # ------------------------------------------------------------------ #
    # Status & housekeeping                                              #
    # ------------------------------------------------------------------ #
    def connection_state(self, server_id: str) -> ConnectionState:
        credential = self.store.load_credential(server_id)
        if credential is not None:
            token_set = credential.token_set
            if token_set.is_expired(clock=self.clock) and not token_set.refresh_token:
                return ConnectionState.NEEDS_REAUTH
            return ConnectionState.CONNECTED
        if server_id in self.resolver.cache:
            return ConnectionState.DISCOVERED
        return ConnectionState.UNDISCOVERED

    def disconnect(self, server_id: str) -> None:
        """Forget stored credentials and cached metadata for *server_id*."""
        self.store.delete_credential(server_id)
        self.resolver.cache.invalidate(server_id)
        _LOG.info("Disconnected server_id=%s", server_id)

    def cleanup_expired(self) -> int:
        """Delete pending authorizations whose window has passed."""
        removed = self.store.cleanup_expired_pending()
        if removed:
            _LOG.info("Removed %d expired pending authorizations", removed)
        return removed
