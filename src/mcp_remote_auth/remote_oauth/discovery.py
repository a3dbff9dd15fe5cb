"""OAuth endpoint discovery for remote MCP servers.

Implements RFC 9728 (Protected Resource Metadata) and RFC 8414 / OpenID
Connect Discovery (Authorization Server Metadata) as a strict fallback chain:

1. ``/.well-known/oauth-protected-resource`` on the server origin names the
   authorization server (if it exists).
2. Authorization-server metadata is fetched from path-scoped well-known URLs
   first, then from root-level ones.  A document is only trusted when its
   ``issuer`` matches the URL it was looked up for.
3. The two documents are merged into one :class:`OAuthMetadata`.

Network problems on individual endpoints never abort the chain; only the
exhausted chain produces a failure value.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Final
from urllib.parse import urlsplit, urlunsplit

from cachetools import TTLCache

from mcp_remote_auth.remote_oauth.clock import Clock, default_clock
from mcp_remote_auth.remote_oauth.errors import DiscoveryFailure, TransportTimeout
from mcp_remote_auth.remote_oauth.http import HttpError, HttpSession, send
from mcp_remote_auth.remote_oauth.models import OAuthMetadata

_LOG = logging.getLogger("mcp-remote-auth.remote_oauth.discovery")

DISCOVERY_TIMEOUT: Final[float] = 10.0

PROTECTED_RESOURCE_PATH: Final[str] = "/.well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_PATH: Final[str] = "/.well-known/oauth-authorization-server"
OPENID_CONFIGURATION_PATH: Final[str] = "/.well-known/openid-configuration"

_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("authorization_endpoint", "token_endpoint")


# --------------------------------------------------------------------------- #
# URL helpers                                                                 #
# --------------------------------------------------------------------------- #
def normalize_server_url(server_url: str) -> str:
    """Strip a trailing slash from the path; reject non-HTTP(S) URLs."""
    parts = urlsplit(server_url.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"not an http(s) URL: {server_url!r}")
    return urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip("/"), parts.query, ""))


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _path(url: str) -> str:
    return urlsplit(url).path.rstrip("/")


def authorization_server_metadata_urls(auth_server_url: str) -> list[str]:
    """Return the well-known URLs to probe for *auth_server_url*, in order."""
    origin = _origin(auth_server_url)
    path = _path(auth_server_url)
    root_level = [
        f"{origin}{AUTHORIZATION_SERVER_PATH}",
        f"{origin}{OPENID_CONFIGURATION_PATH}",
    ]
    if not path:
        return root_level
    return [
        f"{origin}{AUTHORIZATION_SERVER_PATH}{path}",
        f"{origin}{OPENID_CONFIGURATION_PATH}{path}",
        f"{origin}{path}{OPENID_CONFIGURATION_PATH}",
        *root_level,
    ]


def _same_issuer(issuer: str, expected: str) -> bool:
    return issuer.rstrip("/") == expected.rstrip("/")


# --------------------------------------------------------------------------- #
# Fetch helpers                                                               #
# --------------------------------------------------------------------------- #
class _Attempts:
    """Counts requests and timeouts across one discovery run."""

    def __init__(self) -> None:
        self.total = 0
        self.timeouts = 0

    def all_timed_out(self) -> bool:
        return self.total > 0 and self.timeouts == self.total


def _fetch_json(
    url: str,
    *,
    attempts: _Attempts,
    session: HttpSession | None,
    timeout: float,
) -> dict[str, Any] | None:
    attempts.total += 1
    result = send("GET", url, timeout=timeout, operation="discovery", session=session)
    if isinstance(result, TransportTimeout):
        attempts.timeouts += 1
        return None
    if isinstance(result, HttpError):
        _LOG.warning("Failed to fetch %s: %s", url, result.message)
        return None
    if not result.ok:
        _LOG.debug("GET %s returned HTTP %s", url, result.status_code)
        return None
    data = result.json_object()
    if data is None:
        _LOG.warning("GET %s did not return a JSON object", url)
    return data


def fetch_protected_resource_metadata(
    origin: str,
    *,
    attempts: _Attempts,
    session: HttpSession | None = None,
    timeout: float = DISCOVERY_TIMEOUT,
) -> dict[str, Any] | None:
    return _fetch_json(
        f"{origin}{PROTECTED_RESOURCE_PATH}", attempts=attempts, session=session, timeout=timeout
    )


def fetch_authorization_server_metadata(
    auth_server_url: str,
    *,
    attempts: _Attempts,
    session: HttpSession | None = None,
    timeout: float = DISCOVERY_TIMEOUT,
) -> dict[str, Any] | None:
    """Return the first trusted metadata document for *auth_server_url*."""
    origin = _origin(auth_server_url)
    for url in authorization_server_metadata_urls(auth_server_url):
        data = _fetch_json(url, attempts=attempts, session=session, timeout=timeout)
        if data is None:
            continue

        issuer = data.get("issuer")
        if not isinstance(issuer, str) or not issuer:
            _LOG.warning("Metadata at %s has no issuer, skipping", url)
            continue
        if not (_same_issuer(issuer, auth_server_url) or _same_issuer(issuer, origin)):
            _LOG.warning(
                "Issuer mismatch at %s: expected %s, got %s", url, auth_server_url, issuer
            )
            continue

        _LOG.debug("Accepted authorization server metadata from %s", url)
        return data
    return None


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    items = [v for v in value if isinstance(v, str)]
    return items or None


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def discover(
    server_url: str,
    *,
    session: HttpSession | None = None,
    timeout: float = DISCOVERY_TIMEOUT,
    clock: Clock = default_clock,
) -> OAuthMetadata | DiscoveryFailure | TransportTimeout:
    """Discover OAuth endpoints for the remote server at *server_url*."""
    try:
        base_url = normalize_server_url(server_url)
    except ValueError as exc:
        return DiscoveryFailure(message=str(exc), code="invalid_server_url")

    origin = _origin(base_url)
    attempts = _Attempts()
    _LOG.debug("Discovering OAuth configuration for %s", base_url)

    resource_metadata = fetch_protected_resource_metadata(
        origin, attempts=attempts, session=session, timeout=timeout
    )

    candidates = [origin]
    auth_servers = _string_list((resource_metadata or {}).get("authorization_servers"))
    if auth_servers:
        advertised = auth_servers[0].rstrip("/")
        _LOG.debug("Protected resource metadata names authorization server %s", advertised)
        if advertised != origin:
            candidates.insert(0, advertised)

    auth_metadata: dict[str, Any] | None = None
    for candidate in candidates:
        auth_metadata = fetch_authorization_server_metadata(
            candidate, attempts=attempts, session=session, timeout=timeout
        )
        if auth_metadata is not None:
            break

    if auth_metadata is None:
        if attempts.all_timed_out():
            return TransportTimeout(
                message=f"OAuth discovery for {base_url} timed out",
                operation="discovery",
                url=base_url,
            )
        return DiscoveryFailure(
            message=(
                "Server does not support discoverable OAuth: no authorization "
                f"server metadata found for {base_url}"
            ),
        )

    for name in _REQUIRED_FIELDS:
        if not _optional_str(auth_metadata.get(name)):
            return DiscoveryFailure(
                message=f"Authorization server metadata missing {name}",
                code="missing_field",
                field=name,
            )

    methods = _string_list(auth_metadata.get("code_challenge_methods_supported"))
    if not methods or "S256" not in methods:
        _LOG.warning(
            "Authorization server for %s does not advertise S256 PKCE support, proceeding anyway",
            base_url,
        )

    issuer: str = auth_metadata["issuer"]
    resource_metadata = resource_metadata or {}
    metadata = OAuthMetadata(
        resource=_optional_str(resource_metadata.get("resource")) or issuer or origin,
        authorization_server=issuer,
        authorization_endpoint=auth_metadata["authorization_endpoint"],
        token_endpoint=auth_metadata["token_endpoint"],
        scopes_supported=(
            _string_list(resource_metadata.get("scopes_supported"))
            or _string_list(auth_metadata.get("scopes_supported"))
        ),
        registration_endpoint=_optional_str(auth_metadata.get("registration_endpoint")),
        revocation_endpoint=_optional_str(auth_metadata.get("revocation_endpoint")),
        code_challenge_methods_supported=methods,
        cached_at=clock(),
    )
    _LOG.info("Discovered OAuth configuration for %s (issuer %s)", base_url, issuer)
    return metadata


class MetadataCache:
    """Per-server cache of discovered metadata with a bounded lifetime.

    Entries remember the normalized server URL they were discovered from; a
    lookup for a different URL is a miss.  Instances are shared across worker
    threads; every access holds the lock.
    """

    def __init__(self, *, ttl_seconds: float = 3600, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, tuple[str, OAuthMetadata]] = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds
        )
        self._lock = threading.RLock()

    def get(self, server_id: str, server_url: str | None = None) -> OAuthMetadata | None:
        with self._lock:
            entry = self._cache.get(server_id)
        if entry is None:
            return None
        source_url, metadata = entry
        if server_url is None:
            return metadata
        try:
            wanted = normalize_server_url(server_url)
        except ValueError:
            return None
        return metadata if wanted == source_url else None

    def put(self, server_id: str, server_url: str, metadata: OAuthMetadata) -> None:
        entry = (normalize_server_url(server_url), metadata)
        with self._lock:
            self._cache[server_id] = entry

    def invalidate(self, server_id: str) -> None:
        with self._lock:
            self._cache.pop(server_id, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __contains__(self, server_id: object) -> bool:
        with self._lock:
            return server_id in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class DiscoveryResolver:
    """Discovery bound to an HTTP session, timeout and metadata cache."""

    def __init__(
        self,
        *,
        cache: MetadataCache | None = None,
        session: HttpSession | None = None,
        timeout: float = DISCOVERY_TIMEOUT,
        clock: Clock = default_clock,
    ) -> None:
        self.cache = cache if cache is not None else MetadataCache()
        self.session = session
        self.timeout = timeout
        self.clock = clock

    def resolve(
        self, server_id: str, server_url: str, *, force: bool = False
    ) -> OAuthMetadata | DiscoveryFailure | TransportTimeout:
        """Return metadata cached for *server_id* at *server_url*, or run discovery."""
        if not force:
            cached = self.cache.get(server_id, server_url)
            if cached is not None:
                return cached

        result = discover(server_url, session=self.session, timeout=self.timeout, clock=self.clock)
        if isinstance(result, OAuthMetadata):
            self.cache.put(server_id, server_url, result)
        else:
            self.cache.invalidate(server_id)
        return result
