"""
Unit tests for RemoteOAuthService orchestration.

Coverage:
* start_authorization: registration, fallback client id, pending record, URL
* complete_authorization: state checks, single use, expiry, persistence
* refresh / get_access_token: rotation, NeedsReauth, single-flight lock
* connection_state, disconnect, cleanup_expired and from_settings
"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from mcp_remote_auth.remote_oauth.discovery import MetadataCache
from mcp_remote_auth.remote_oauth.errors import (
    DiscoveryFailure,
    ExchangeFailure,
    NeedsReauth,
    RefreshFailure,
    RegistrationFailure,
    StateInvalid,
    TransportTimeout,
)
from mcp_remote_auth.remote_oauth.models import (
    AuthorizationRequest,
    ConnectionState,
    ServerCredential,
    TokenSet,
)
from mcp_remote_auth.remote_oauth.pkce import code_challenge_s256
from mcp_remote_auth.remote_oauth.service import RemoteOAuthService
from mcp_remote_auth.remote_oauth.state import decode_state
from mcp_remote_auth.remote_oauth.store import DiskAuthStore
from mcp_remote_auth.utils.environment import OAuthSettings
from tests.helpers import (
    AS_METADATA_URL,
    AUTH_SERVER,
    NOW,
    OTHER_ORIGIN,
    OTHER_SERVER_URL,
    REDIRECT_URI,
    REGISTRATION_ENDPOINT,
    SERVER_URL,
    STATE_SECRET,
    TOKEN_ENDPOINT,
    FakeClock,
    FakeSession,
    add_self_hosted_server,
    as_metadata_document,
    token_response,
)

SERVER_ID = "linear"


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def _start(service: RemoteOAuthService, **kwargs) -> AuthorizationRequest:
    params = {"server_id": SERVER_ID, "server_url": SERVER_URL, "redirect_uri": REDIRECT_URI}
    params.update(kwargs)
    result = service.start_authorization(**params)
    assert isinstance(result, AuthorizationRequest), result
    return result


def _connect(service: RemoteOAuthService) -> ServerCredential:
    request = _start(service)
    credential = service.complete_authorization(code="auth-code", state=request.state)
    assert isinstance(credential, ServerCredential), credential
    return credential


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


# --------------------------------------------------------------------------- #
# start_authorization                                                         #
# --------------------------------------------------------------------------- #
def test_start_authorization_builds_pkce_url(
    service: RemoteOAuthService, store: DiskAuthStore, remote_server: FakeSession
) -> None:
    request = _start(service, board_id="board-7")

    params = _query(request.url)
    assert request.url.startswith(f"{AUTH_SERVER}/authorize?")
    assert params["client_id"] == "registered-client" == request.client_id
    assert params["redirect_uri"] == REDIRECT_URI
    assert params["code_challenge_method"] == "S256"
    assert params["state"] == request.state
    assert params["scope"] == "read write"
    assert "resource" not in params

    pending = store.get_pending(request.session_id)
    assert pending is not None
    assert pending.board_id == "board-7"
    assert pending.expires_at == NOW + 600 == request.expires_at
    assert params["code_challenge"] == code_challenge_s256(pending.code_verifier)

    payload = decode_state(request.state, STATE_SECRET, clock=lambda: NOW)
    assert payload is not None and payload.session_id == request.session_id

    assert remote_server.last("POST", REGISTRATION_ENDPOINT).json["redirect_uris"] == [
        REDIRECT_URI
    ]


def test_start_authorization_with_resource_indicator(
    store: DiskAuthStore, remote_server: FakeSession, clock: FakeClock
) -> None:
    service = RemoteOAuthService(
        store,
        state_secret=STATE_SECRET,
        session=remote_server,
        cache=MetadataCache(),
        include_resource=True,
        clock=clock,
    )
    request = _start(service)
    assert _query(request.url)["resource"] == SERVER_URL


def test_start_authorization_registration_failure_without_fallback(
    service: RemoteOAuthService, store: DiskAuthStore, remote_server: FakeSession, tmp_path: Path
) -> None:
    remote_server.add(
        REGISTRATION_ENDPOINT, method="POST", status=403, json={"error": "access_denied"}
    )

    result = service.start_authorization(
        server_id=SERVER_ID, server_url=SERVER_URL, redirect_uri=REDIRECT_URI
    )

    assert isinstance(result, RegistrationFailure)
    assert result.error == "access_denied"
    assert not list((tmp_path / "pending").glob("*.json"))


def test_start_authorization_falls_back_to_configured_client(
    store: DiskAuthStore, remote_server: FakeSession, clock: FakeClock
) -> None:
    remote_server.add(REGISTRATION_ENDPOINT, requests.Timeout(), method="POST")
    service = RemoteOAuthService(
        store,
        state_secret=STATE_SECRET,
        session=remote_server,
        default_client_id="preconfigured",
        clock=clock,
    )

    request = _start(service)

    assert request.client_id == "preconfigured"


def test_start_authorization_without_registration_endpoint(
    store: DiskAuthStore, remote_server: FakeSession, clock: FakeClock
) -> None:
    remote_server.add(AS_METADATA_URL, json=as_metadata_document(registration_endpoint=None))
    service = RemoteOAuthService(
        store, state_secret=STATE_SECRET, session=remote_server, clock=clock
    )
    result = service.start_authorization(
        server_id=SERVER_ID, server_url=SERVER_URL, redirect_uri=REDIRECT_URI
    )
    assert isinstance(result, RegistrationFailure)
    assert result.code == "registration_unsupported"

    fallback = RemoteOAuthService(
        store,
        state_secret=STATE_SECRET,
        session=remote_server,
        default_client_id="preconfigured",
        clock=clock,
    )
    assert _start(fallback).client_id == "preconfigured"
    assert REGISTRATION_ENDPOINT not in remote_server.urls("POST")


def test_start_authorization_discovery_failure(
    service: RemoteOAuthService, remote_server: FakeSession
) -> None:
    remote_server.routes.clear()
    result = service.start_authorization(
        server_id=SERVER_ID, server_url=SERVER_URL, redirect_uri=REDIRECT_URI
    )
    assert isinstance(result, DiscoveryFailure)


# --------------------------------------------------------------------------- #
# complete_authorization                                                      #
# --------------------------------------------------------------------------- #
def test_complete_authorization_persists_credential(
    service: RemoteOAuthService, store: DiskAuthStore, remote_server: FakeSession
) -> None:
    request = _start(service, board_id="board-7")
    verifier = store.get_pending(request.session_id).code_verifier  # type: ignore[union-attr]

    credential = service.complete_authorization(code="auth-code", state=request.state)

    assert isinstance(credential, ServerCredential)
    assert credential.server_id == SERVER_ID
    assert credential.board_id == "board-7"
    assert credential.client_id == "registered-client"
    assert credential.token_set.access_token == "at-1"
    assert store.load_credential(SERVER_ID) == credential
    assert store.get_pending(request.session_id) is None

    form = remote_server.last("POST", TOKEN_ENDPOINT).data
    assert form["code"] == "auth-code"
    assert form["code_verifier"] == verifier
    assert form["redirect_uri"] == REDIRECT_URI
    assert "resource" not in form
    assert service.connection_state(SERVER_ID) is ConnectionState.CONNECTED


def test_complete_authorization_rejects_tampered_state(
    service: RemoteOAuthService, remote_server: FakeSession
) -> None:
    request = _start(service)
    tampered = request.state[:-1] + ("A" if request.state[-1] != "A" else "B")

    result = service.complete_authorization(code="auth-code", state=tampered)

    assert isinstance(result, StateInvalid)
    assert TOKEN_ENDPOINT not in remote_server.urls("POST")


def test_complete_authorization_is_single_use(service: RemoteOAuthService) -> None:
    request = _start(service)
    first = service.complete_authorization(code="auth-code", state=request.state)
    second = service.complete_authorization(code="auth-code", state=request.state)
    assert isinstance(first, ServerCredential)
    assert isinstance(second, StateInvalid)


def test_complete_authorization_expired_pending(
    service: RemoteOAuthService, clock: FakeClock, remote_server: FakeSession
) -> None:
    request = _start(service)
    clock.advance(600)  # state still inside its window, pending record is not

    result = service.complete_authorization(code="auth-code", state=request.state)

    assert isinstance(result, ExchangeFailure)
    assert result.code == "authorization_expired"
    assert TOKEN_ENDPOINT not in remote_server.urls("POST")


def test_complete_authorization_stale_state(
    service: RemoteOAuthService, clock: FakeClock
) -> None:
    request = _start(service)
    clock.advance(601)
    assert isinstance(
        service.complete_authorization(code="auth-code", state=request.state), StateInvalid
    )


def test_complete_authorization_exchange_failure(
    service: RemoteOAuthService, store: DiskAuthStore, remote_server: FakeSession
) -> None:
    remote_server.add(
        TOKEN_ENDPOINT,
        method="POST",
        status=400,
        json={"error": "invalid_grant", "error_description": "PKCE verification failed"},
    )
    request = _start(service)

    result = service.complete_authorization(code="auth-code", state=request.state)

    assert isinstance(result, ExchangeFailure)
    assert result.message == "invalid_grant: PKCE verification failed"
    assert store.load_credential(SERVER_ID) is None


# --------------------------------------------------------------------------- #
# refresh / get_access_token                                                  #
# --------------------------------------------------------------------------- #
def test_refresh_without_credentials(service: RemoteOAuthService) -> None:
    result = service.refresh(SERVER_ID)
    assert isinstance(result, NeedsReauth)
    assert result.server_id == SERVER_ID


def test_refresh_without_refresh_token(
    service: RemoteOAuthService, remote_server: FakeSession, store: DiskAuthStore
) -> None:
    remote_server.add(TOKEN_ENDPOINT, token_response(refresh_token=None), method="POST")
    _connect(service)
    assert isinstance(service.refresh(SERVER_ID), NeedsReauth)


def test_refresh_rotates_and_persists(
    service: RemoteOAuthService, remote_server: FakeSession, store: DiskAuthStore
) -> None:
    _connect(service)
    remote_server.add(
        TOKEN_ENDPOINT, token_response(access_token="at-2", refresh_token="rt-2"), method="POST"
    )

    result = service.refresh(SERVER_ID)

    assert isinstance(result, ServerCredential)
    assert result.token_set.refresh_token == "rt-2"
    stored = store.load_credential(SERVER_ID)
    assert stored is not None and stored.token_set.access_token == "at-2"
    assert remote_server.last("POST", TOKEN_ENDPOINT).data["refresh_token"] == "rt-1"


def test_refresh_rejected_needs_reauth(
    service: RemoteOAuthService, remote_server: FakeSession, store: DiskAuthStore
) -> None:
    _connect(service)
    remote_server.add(
        TOKEN_ENDPOINT, method="POST", status=400, json={"error": "invalid_grant"}
    )

    result = service.refresh(SERVER_ID)

    assert isinstance(result, NeedsReauth)
    assert "invalid_grant" in result.message
    stored = store.load_credential(SERVER_ID)
    assert stored is not None and stored.token_set.refresh_token is None
    assert service.connection_state(SERVER_ID) is ConnectionState.NEEDS_REAUTH


def test_refresh_timeout_keeps_credentials(
    service: RemoteOAuthService, remote_server: FakeSession, store: DiskAuthStore
) -> None:
    credential = _connect(service)
    remote_server.add(TOKEN_ENDPOINT, requests.Timeout(), method="POST")

    result = service.refresh(SERVER_ID)

    assert isinstance(result, TransportTimeout)
    assert store.load_credential(SERVER_ID) == credential


def test_refresh_server_error_is_not_reauth(
    service: RemoteOAuthService, remote_server: FakeSession
) -> None:
    _connect(service)
    remote_server.add(TOKEN_ENDPOINT, method="POST", status=503)
    result = service.refresh(SERVER_ID)
    assert isinstance(result, RefreshFailure)


def test_get_access_token_valid_without_refresh(
    service: RemoteOAuthService, remote_server: FakeSession
) -> None:
    _connect(service)
    token_calls = len(remote_server.urls("POST"))
    assert service.get_access_token(SERVER_ID) == "at-1"
    assert len(remote_server.urls("POST")) == token_calls


def test_get_access_token_refreshes_inside_grace(
    service: RemoteOAuthService, remote_server: FakeSession, clock: FakeClock
) -> None:
    _connect(service)
    remote_server.add(TOKEN_ENDPOINT, token_response(access_token="at-2"), method="POST")
    clock.advance(3600 - 30)

    assert service.get_access_token(SERVER_ID, grace_seconds=60) == "at-2"


def test_get_access_token_no_credentials(service: RemoteOAuthService) -> None:
    assert isinstance(service.get_access_token(SERVER_ID), NeedsReauth)


def test_get_access_token_lock_held(
    service: RemoteOAuthService, store: DiskAuthStore, clock: FakeClock
) -> None:
    _connect(service)
    clock.advance(7200)

    with store.credential_lock(SERVER_ID):
        result = service.get_access_token(SERVER_ID)

    assert isinstance(result, RefreshFailure)
    assert result.code == "refresh_in_progress"


# --------------------------------------------------------------------------- #
# status & housekeeping                                                       #
# --------------------------------------------------------------------------- #
def test_connection_state_transitions(service: RemoteOAuthService) -> None:
    assert service.connection_state(SERVER_ID) is ConnectionState.UNDISCOVERED
    service.discover(SERVER_ID, SERVER_URL)
    assert service.connection_state(SERVER_ID) is ConnectionState.DISCOVERED
    _connect(service)
    assert service.connection_state(SERVER_ID) is ConnectionState.CONNECTED

    service.disconnect(SERVER_ID)
    assert service.connection_state(SERVER_ID) is ConnectionState.UNDISCOVERED


def test_discover_uses_cache(service: RemoteOAuthService, remote_server: FakeSession) -> None:
    service.discover(SERVER_ID, SERVER_URL)
    service.discover(SERVER_ID, SERVER_URL)
    assert len(remote_server.calls) == 2
    service.discover(SERVER_ID, SERVER_URL, force=True)
    assert len(remote_server.calls) == 4


def test_discover_follows_server_url_change(
    service: RemoteOAuthService, remote_server: FakeSession
) -> None:
    add_self_hosted_server(remote_server)
    first = service.discover(SERVER_ID, SERVER_URL)
    second = service.discover(SERVER_ID, OTHER_SERVER_URL)

    assert first.token_endpoint == TOKEN_ENDPOINT
    assert second.token_endpoint == f"{OTHER_ORIGIN}/token"

    request = _start(service, server_url=OTHER_SERVER_URL)
    assert request.url.startswith(f"{OTHER_ORIGIN}/authorize?")
    assert _query(request.url)["client_id"] == "other-client"


def test_cleanup_expired(service: RemoteOAuthService, store: DiskAuthStore, clock: FakeClock) -> None:
    request = _start(service)
    clock.advance(601)
    assert service.cleanup_expired() == 1
    assert store.get_pending(request.session_id) is None


def test_token_set_never_logged(
    service: RemoteOAuthService, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level("DEBUG")
    _connect(service)
    service.refresh(SERVER_ID)
    assert "at-1" not in caplog.text
    assert "rt-1" not in caplog.text


def test_from_settings(tmp_path: Path) -> None:
    settings = OAuthSettings(
        state_secret="s",
        storage_dir=tmp_path / "auth",
        default_client_id="cid",
        include_resource=True,
        token_timeout=5,
    )
    service = RemoteOAuthService.from_settings(settings)

    assert isinstance(service.store, DiskAuthStore)
    assert service.store.base_dir == tmp_path / "auth"
    assert service.default_client_id == "cid"
    assert service.include_resource is True
    assert service.token_timeout == 5


def test_empty_state_secret_rejected(store: DiskAuthStore) -> None:
    with pytest.raises(ValueError):
        RemoteOAuthService(store, state_secret="")


def test_token_set_helpers() -> None:
    tokens = TokenSet(access_token="at", refresh_token="rt", expires_at=NOW)
    assert TokenSet.from_dict(tokens.to_dict()) == tokens
