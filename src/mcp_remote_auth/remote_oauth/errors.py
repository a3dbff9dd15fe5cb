"""Failure values returned by the remote OAuth core.

Every outbound step (discovery, registration, exchange, refresh) returns
either its success value or one of the dataclasses below.  They are plain,
immutable **values**, not exceptions: callers branch on the outcome with
``isinstance`` (or :func:`is_failure`) so that a transport fault can never
escape as an unhandled error.

Only lightweight, **data-carrying** types live here so that web/CLI layers
can transform them into HTTP responses or user-friendly messages via
:meth:`OAuthFailure.to_payload`.  Payloads never contain secrets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Final

STATE_INVALID_MESSAGE: Final[str] = "Invalid or expired authorization state."


@dataclass(frozen=True, slots=True)
class OAuthFailure:
    """Base type for every failure outcome."""

    message: str
    code: str = "oauth_failure"

    kind: ClassVar[str] = "oauth_failure"

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.kind, "code": self.code, "message": self.message}


@dataclass(frozen=True, slots=True)
class DiscoveryFailure(OAuthFailure):
    """No compliant metadata was found, or a required field is missing."""

    code: str = "discovery_unsupported"
    field: str | None = None

    kind: ClassVar[str] = "discovery_failed"

    def to_payload(self) -> dict[str, Any]:
        payload = OAuthFailure.to_payload(self)
        if self.field:
            payload["field"] = self.field
        return payload


@dataclass(frozen=True, slots=True)
class RegistrationFailure(OAuthFailure):
    """Dynamic client registration is unavailable or was refused."""

    code: str = "registration_failed"
    error: str | None = None
    error_description: str | None = None

    kind: ClassVar[str] = "registration_failed"


@dataclass(frozen=True, slots=True)
class StateInvalid(OAuthFailure):
    """The ``state`` value failed verification.

    Signature mismatch, expiry and malformed input all collapse into this
    single outcome; the cause is deliberately not exposed.
    """

    message: str = STATE_INVALID_MESSAGE
    code: str = "invalid_state"

    kind: ClassVar[str] = "invalid_state"


@dataclass(frozen=True, slots=True)
class ExchangeFailure(OAuthFailure):
    """The token endpoint refused the authorization-code grant."""

    code: str = "token_exchange_failed"
    error: str | None = None
    error_description: str | None = None
    status_code: int | None = None

    kind: ClassVar[str] = "token_exchange_failed"

    def to_payload(self) -> dict[str, Any]:
        payload = OAuthFailure.to_payload(self)
        if self.error:
            payload["oauth_error"] = self.error
        if self.error_description:
            payload["oauth_error_description"] = self.error_description
        return payload


@dataclass(frozen=True, slots=True)
class RefreshFailure(ExchangeFailure):
    """The token endpoint refused the refresh-token grant."""

    code: str = "token_refresh_failed"

    kind: ClassVar[str] = "token_refresh_failed"


@dataclass(frozen=True, slots=True)
class TransportTimeout(OAuthFailure):
    """An outbound call exceeded its timeout."""

    code: str = "timeout"
    operation: str = "request"
    url: str | None = None

    kind: ClassVar[str] = "transport_timeout"

    def to_payload(self) -> dict[str, Any]:
        payload = OAuthFailure.to_payload(self)
        payload["operation"] = self.operation
        return payload


@dataclass(frozen=True, slots=True)
class NeedsReauth(OAuthFailure):
    """Stored credentials cannot be refreshed; a new authorization is required."""

    message: str = "Re-authentication required."
    code: str = "needs_reauth"
    server_id: str = ""

    kind: ClassVar[str] = "needs_reauth"

    def to_payload(self) -> dict[str, Any]:
        payload = OAuthFailure.to_payload(self)
        payload["server_id"] = self.server_id
        return payload


def is_failure(value: object) -> bool:
    """Return *True* if *value* is any :class:`OAuthFailure`."""
    return isinstance(value, OAuthFailure)


def oauth_error_message(
    error: str | None, error_description: str | None, default: str
) -> str:
    """Render an RFC 6749 §5.2 error pair the way users see it."""
    if error and error_description:
        return f"{error}: {error_description}"
    return error_description or error or default
