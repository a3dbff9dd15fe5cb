"""
Unit tests for the signed ``state`` codec.

These tests are CI-safe (no network), cover:
* Encode / decode happy path with a pinned clock
* Tampered payload or signature, wrong secret and malformed input
* Freshness window boundaries (0 .. 10 minutes, future timestamps)
"""

from __future__ import annotations

import base64
import json

import pytest

from mcp_remote_auth.remote_oauth.models import StatePayload
from mcp_remote_auth.remote_oauth.state import STATE_MAX_AGE_MS, decode_state, encode_state

SECRET = "super-secret"
SESSION_ID = "5f0c0d8b9a1e4d2c"


def fake_clock() -> float:  # frozen at 2023-01-01T00:00:00Z
    return 1_672_531_200.0


def clock_at(seconds: float):
    return lambda: seconds


def test_state_round_trip() -> None:
    state = encode_state(SESSION_ID, "nonce-1", SECRET, clock=fake_clock)
    payload = decode_state(state, SECRET, clock=fake_clock)
    assert payload == StatePayload(
        session_id=SESSION_ID, nonce="nonce-1", timestamp=1_672_531_200_000
    )


def test_state_is_url_safe() -> None:
    state = encode_state(SESSION_ID, "n+/=", SECRET, clock=fake_clock)
    encoded, signature = state.split(".")
    assert "=" not in state and "+" not in state and "/" not in state
    body = json.loads(base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)))
    assert set(body) == {"session_id", "nonce", "timestamp"}
    assert signature


def test_state_tamper_detection() -> None:
    raw_state = encode_state(SESSION_ID, "nonce-1", SECRET, clock=fake_clock)

    tampered = list(raw_state)
    tampered[-1] = "A" if tampered[-1] != "A" else "B"
    assert decode_state("".join(tampered), SECRET, clock=fake_clock) is None

    encoded, signature = raw_state.split(".")
    forged_body = base64.urlsafe_b64encode(
        json.dumps({"session_id": "other", "nonce": "nonce-1", "timestamp": 1_672_531_200_000}).encode()
    ).rstrip(b"=").decode()
    assert decode_state(f"{forged_body}.{signature}", SECRET, clock=fake_clock) is None


def test_state_wrong_secret() -> None:
    state = encode_state(SESSION_ID, "nonce-1", SECRET, clock=fake_clock)
    assert decode_state(state, "another-secret", clock=fake_clock) is None


@pytest.mark.parametrize(
    "value",
    ["", "no-separator", "a.b.c", ".sig", "payload.", "!!!.???", "ünïcode.sig"],
)
def test_state_malformed_input_returns_none(value: str) -> None:
    assert decode_state(value, SECRET, clock=fake_clock) is None


def test_state_freshness_window() -> None:
    state = encode_state(SESSION_ID, "nonce-1", SECRET, clock=fake_clock)
    issued = fake_clock()
    max_age = STATE_MAX_AGE_MS / 1000

    assert decode_state(state, SECRET, clock=clock_at(issued + max_age)) is not None
    assert decode_state(state, SECRET, clock=clock_at(issued + max_age + 0.01)) is None
    # Issued "in the future" relative to the verifier's clock
    assert decode_state(state, SECRET, clock=clock_at(issued - 1)) is None


def test_encode_state_requires_secret() -> None:
    with pytest.raises(ValueError):
        encode_state(SESSION_ID, "nonce-1", "", clock=fake_clock)
