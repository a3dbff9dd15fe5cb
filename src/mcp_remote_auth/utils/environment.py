"""Configuration for the remote OAuth service, read from environment variables."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Tuple

from mcp_remote_auth.remote_oauth.discovery import DISCOVERY_TIMEOUT
from mcp_remote_auth.remote_oauth.registration import DEFAULT_CLIENT_NAME, REGISTRATION_TIMEOUT
from mcp_remote_auth.remote_oauth.tokens import TOKEN_TIMEOUT

logger = logging.getLogger("mcp-remote-auth.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")

STATE_SECRET_ENV: Final[str] = "MCP_OAUTH_STATE_SECRET"


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive, using %s", name, raw, default)
        return default
    return value


def _state_secret() -> str:
    secret = os.getenv(STATE_SECRET_ENV)
    if secret:
        return secret
    # Ephemeral secret – suitable for single-instance dev setups only
    logger.warning(
        "Environment variable %s not set – generated transient secret. "
        "State validation will break after process restart.",
        STATE_SECRET_ENV,
    )
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class OAuthSettings:
    """Runtime settings for :class:`~mcp_remote_auth.remote_oauth.service.RemoteOAuthService`."""

    state_secret: str
    storage_dir: Path
    client_name: str = DEFAULT_CLIENT_NAME
    default_client_id: str | None = None
    include_resource: bool = False
    discovery_timeout: float = DISCOVERY_TIMEOUT
    registration_timeout: float = REGISTRATION_TIMEOUT
    token_timeout: float = TOKEN_TIMEOUT
    metadata_ttl: float = 3600
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> OAuthSettings:
        storage_dir = Path(
            os.getenv("MCP_OAUTH_STORAGE_DIR") or Path.home() / ".mcp-remote-auth" / "auth"
        ).expanduser()
        return cls(
            state_secret=_state_secret(),
            storage_dir=storage_dir,
            client_name=os.getenv("MCP_OAUTH_CLIENT_NAME") or DEFAULT_CLIENT_NAME,
            default_client_id=os.getenv("MCP_OAUTH_CLIENT_ID") or None,
            include_resource=_truthy(os.getenv("MCP_OAUTH_INCLUDE_RESOURCE")),
            discovery_timeout=_float_env("MCP_OAUTH_DISCOVERY_TIMEOUT", DISCOVERY_TIMEOUT),
            registration_timeout=_float_env("MCP_OAUTH_REGISTRATION_TIMEOUT", REGISTRATION_TIMEOUT),
            token_timeout=_float_env("MCP_OAUTH_TOKEN_TIMEOUT", TOKEN_TIMEOUT),
            metadata_ttl=_float_env("MCP_OAUTH_METADATA_TTL", 3600),
            log_level=(os.getenv("MCP_OAUTH_LOG_LEVEL") or "INFO").strip().upper(),
        )
