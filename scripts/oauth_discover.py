"""oauth_discover.py

Operator helper that runs OAuth discovery against a remote MCP server and
prints the merged metadata, optionally followed by a dynamic client
registration and a sample authorization URL.

Key features
------------
* Same discovery chain the service uses (protected-resource metadata →
  authorization-server metadata, with issuer validation)
* ``--register`` performs RFC 7591 registration for ``--redirect-uri``
* ``--authorize`` prints an authorization URL with a fresh PKCE pair
  (the verifier goes to stderr so it can be pasted into a manual exchange)
* Never prints tokens; client secrets are masked

Example
-------
    uv run python scripts/oauth_discover.py https://mcp.example.com/mcp --register \
        --redirect-uri http://localhost:8000/oauth/callback
"""
from __future__ import annotations

import argparse
import json
import os
import secrets
import sys
import uuid
from pathlib import Path
from typing import Any, Dict

import requests

from mcp_remote_auth.remote_oauth.authorize import build_authorization_url
from mcp_remote_auth.remote_oauth.discovery import DISCOVERY_TIMEOUT, discover
from mcp_remote_auth.remote_oauth.errors import is_failure
from mcp_remote_auth.remote_oauth.models import ClientRegistration, OAuthMetadata
from mcp_remote_auth.remote_oauth.pkce import generate_pkce_pair
from mcp_remote_auth.remote_oauth.registration import DEFAULT_CLIENT_NAME, register_client
from mcp_remote_auth.remote_oauth.state import encode_state
from mcp_remote_auth.utils.logging import mask_sensitive, setup_logging

# --------------------------------------------------------------------------- #
# Constants
# --------------------------------------------------------------------------- #
DEFAULT_ENV_FILE = Path("scripts/.env.script-helpers")


# --------------------------------------------------------------------------- #
# Environment helpers
# --------------------------------------------------------------------------- #
def _load_env_file(env_path: Path | None) -> None:
    """Load KEY=VALUE pairs from a .env style file into *os.environ*."""
    if env_path is None or not env_path.exists():
        return

    for raw in env_path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key and key not in os.environ:
            os.environ[key] = val.strip()


def _fail(outcome: Any) -> None:
    sys.exit(json.dumps(outcome.to_payload(), ensure_ascii=False))


# --------------------------------------------------------------------------- #
# Main
# --------------------------------------------------------------------------- #
def main() -> None:
    parser = argparse.ArgumentParser(description="Discover OAuth metadata for an MCP server.")

    parser.add_argument("server_url", help="Remote MCP server base URL")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DISCOVERY_TIMEOUT,
        help=f"Per-request timeout in seconds (default: {DISCOVERY_TIMEOUT:g})",
    )
    parser.add_argument("--register", action="store_true", help="Also register a client")
    parser.add_argument(
        "--authorize",
        action="store_true",
        help="Print an authorization URL (implies --register unless --client-id is given)",
    )
    parser.add_argument("--client-id", help="Use an existing client id instead of registering")
    parser.add_argument("--redirect-uri", help="Redirect URI used for registration/authorization")
    parser.add_argument(
        "--client-name",
        default=os.getenv("MCP_OAUTH_CLIENT_NAME", DEFAULT_CLIENT_NAME),
        help="client_name sent during registration",
    )
    parser.add_argument("--scope", action="append", help="Scope to request (repeatable)")
    parser.add_argument(
        "--env-file",
        type=Path,
        help=f"Helper env file (default: {DEFAULT_ENV_FILE})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if (args.register or args.authorize) and not args.redirect_uri:
        parser.error("--redirect-uri is required with --register/--authorize")

    env_file = (
        args.env_file
        if args.env_file
        else (DEFAULT_ENV_FILE if DEFAULT_ENV_FILE.exists() else None)
    )
    _load_env_file(env_file)
    setup_logging("DEBUG" if args.verbose else os.getenv("MCP_OAUTH_LOG_LEVEL", "WARNING"))

    with requests.Session() as session:
        metadata = discover(args.server_url, session=session, timeout=args.timeout)
        if not isinstance(metadata, OAuthMetadata):
            _fail(metadata)

        output: Dict[str, Any] = {"metadata": metadata.to_dict()}

        client_id: str | None = args.client_id
        if (args.register or args.authorize) and not client_id:
            registration = register_client(
                metadata,
                args.redirect_uri,
                args.client_name,
                session=session,
                timeout=args.timeout,
            )
            if is_failure(registration):
                _fail(registration)
            assert isinstance(registration, ClientRegistration)
            client_id = registration.client_id
            output["client"] = {
                "client_id": registration.client_id,
                "client_secret": mask_sensitive(registration.client_secret),
            }

    if args.authorize and client_id:
        verifier, challenge = generate_pkce_pair()
        secret = os.getenv("MCP_OAUTH_STATE_SECRET") or secrets.token_urlsafe(32)
        state = encode_state(uuid.uuid4().hex, secrets.token_urlsafe(24), secret)
        output["authorize_url"] = build_authorization_url(
            metadata,
            client_id=client_id,
            redirect_uri=args.redirect_uri,
            state=state,
            code_challenge=challenge,
            scopes=args.scope,
        )
        print(f"code_verifier: {verifier}", file=sys.stderr)

    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
