"""State parameter helpers for the OAuth 2.0 authorization-code flow.

The *state* parameter protects the user against CSRF and replay.  The value
handed to the authorization server carries three fields:

1. ``session_id`` – identifier of the pending authorization record
2. ``nonce`` – random value unique to this attempt
3. ``timestamp`` – milliseconds since the epoch, from an injected
   :class:`~mcp_remote_auth.remote_oauth.clock.Clock`

Format::

    base64url(json(payload)) "." base64url(hmac_sha256(secret, base64_payload))

Both halves use the URL-safe alphabet without padding, so the value contains
no characters that need escaping in a query string.  A decoded state is only
accepted when the signature matches (constant-time comparison) and the
timestamp is between 0 and 10 minutes old.

Logging
-------
Only the (truncated) ``session_id`` is ever logged; the full state string as
well as the HMAC secret are *never* written to logs.  Verification failures
are logged without their cause and :func:`decode_state` returns ``None`` for
every kind of failure.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
from hashlib import sha256
from typing import Final

from mcp_remote_auth.remote_oauth.clock import Clock, default_clock, to_millis
from mcp_remote_auth.remote_oauth.models import StatePayload

_LOG = logging.getLogger("mcp-remote-auth.remote_oauth.state")

STATE_MAX_AGE_MS: Final[int] = 10 * 60 * 1000
_SEPARATOR: Final[str] = "."


def _b64e(data: bytes) -> str:
    """Base64-URL encode *without* padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64d(data: str) -> bytes:
    """Decode base64-URL data that may lack padding."""
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len)


def _sign(message: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), msg=message.encode("ascii"), digestmod=sha256).digest()
    return _b64e(digest)


def encode_state(
    session_id: str,
    nonce: str,
    secret: str,
    *,
    clock: Clock = default_clock,
) -> str:
    """Build the signed state string for an authorization request.

    Parameters
    ----------
    session_id:
        Identifier of the pending authorization this state belongs to.
    nonce:
        Random per-attempt value.
    secret:
        Application secret used to sign the state.
    clock:
        Time source; defaults to :func:`~mcp_remote_auth.remote_oauth.clock.default_clock`.

    Returns
    -------
    str
        URL-safe ``payload.signature`` value.
    """
    if not secret:
        raise ValueError("state secret must not be empty")
    payload = {"session_id": session_id, "nonce": nonce, "timestamp": to_millis(clock)}
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    encoded = _b64e(raw)
    _LOG.debug("Built state for session_id=%s****", session_id[:6])
    return f"{encoded}{_SEPARATOR}{_sign(encoded, secret)}"


def _parse_payload(encoded: str) -> StatePayload | None:
    try:
        data = json.loads(_b64d(encoded).decode("utf-8"))
    except (ValueError, binascii.Error):
        return None
    if not isinstance(data, dict):
        return None

    session_id = data.get("session_id")
    nonce = data.get("nonce")
    timestamp = data.get("timestamp")
    if not isinstance(session_id, str) or not session_id:
        return None
    if not isinstance(nonce, str) or not nonce:
        return None
    # bool is an int subclass
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        return None
    return StatePayload(session_id=session_id, nonce=nonce, timestamp=timestamp)


def decode_state(
    state: str,
    secret: str,
    *,
    clock: Clock = default_clock,
) -> StatePayload | None:
    """Verify and decode a state received in the OAuth callback.

    Returns
    -------
    StatePayload | None
        The payload when the signature is valid and the state is fresh,
        otherwise ``None``.  The reason for a rejection is not exposed.
    """
    if not state or not secret:
        return None

    parts = state.split(_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        _LOG.debug("Rejected state")
        return None
    encoded, signature = parts

    try:
        expected = _sign(encoded, secret)
    except UnicodeEncodeError:
        _LOG.debug("Rejected state")
        return None
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        _LOG.debug("Rejected state")
        return None

    payload = _parse_payload(encoded)
    if payload is None:
        _LOG.debug("Rejected state")
        return None

    age = to_millis(clock) - payload.timestamp
    if age < 0 or age > STATE_MAX_AGE_MS:
        _LOG.debug("Rejected state for session_id=%s****", payload.session_id[:6])
        return None

    _LOG.debug("Verified state for session_id=%s****", payload.session_id[:6])
    return payload
