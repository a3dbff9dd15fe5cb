"""Shared fixtures: fake HTTP session, pinned clock, on-disk store and service."""

from __future__ import annotations

from pathlib import Path

import pytest

from mcp_remote_auth.remote_oauth.discovery import MetadataCache
from mcp_remote_auth.remote_oauth.service import RemoteOAuthService
from mcp_remote_auth.remote_oauth.store import DiskAuthStore
from tests.helpers import (
    AS_METADATA_URL,
    AUTH_SERVER,
    PRM_URL,
    REGISTRATION_ENDPOINT,
    SERVER_URL,
    STATE_SECRET,
    TOKEN_ENDPOINT,
    FakeClock,
    FakeSession,
    as_metadata_document,
    token_response,
)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def remote_server(fake_session: FakeSession) -> FakeSession:
    """A well-behaved MCP server protected by a separate authorization server."""
    fake_session.add(
        PRM_URL,
        json={"resource": SERVER_URL, "authorization_servers": [AUTH_SERVER]},
    )
    fake_session.add(AS_METADATA_URL, json=as_metadata_document())
    fake_session.add(
        REGISTRATION_ENDPOINT,
        method="POST",
        status=201,
        json={"client_id": "registered-client"},
    )
    fake_session.add(TOKEN_ENDPOINT, token_response(), method="POST")
    return fake_session


@pytest.fixture()
def store(tmp_path: Path, clock: FakeClock) -> DiskAuthStore:
    return DiskAuthStore(base_dir=tmp_path, clock=clock)


@pytest.fixture()
def service(
    store: DiskAuthStore, remote_server: FakeSession, clock: FakeClock
) -> RemoteOAuthService:
    return RemoteOAuthService(
        store,
        state_secret=STATE_SECRET,
        session=remote_server,
        cache=MetadataCache(ttl_seconds=3600),
        clock=clock,
    )


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests against live servers",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' are always run because they drive the full
    connection flow against an in-process mock authorization server.
    """
    if not config.getoption("--integration", default=False):
        skip_integration = pytest.mark.skip(reason="Need --integration option to run")
        for item in items:
            if "integration" in item.keywords and "ci_safe" not in item.keywords:
                item.add_marker(skip_integration)
