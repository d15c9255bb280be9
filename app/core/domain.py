"""
Core domain models for provider authorization and webhook events.

These models represent the authorization material exchanged with
providers and are independent of any infrastructure or delivery mechanism.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthorizationStep(str, Enum):
    """Steps of a single authorization attempt."""

    IDLE = "idle"
    AWAITING_PROVIDER_REDIRECT = "awaiting_provider_redirect"
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETED = "completed"
    FAILED = "failed"


class TemporaryCredential(BaseModel):
    """
    Temporary token/secret pair from the first handshake leg.

    The secret half must never reach the end user's browser in plaintext.
    """

    token: str = Field(description="Temporary oauth_token")
    token_secret: str = Field(description="Temporary oauth_token_secret")
    issued_at: int = Field(
        default_factory=lambda: int(time.time()),
        description="Issue timestamp (Unix epoch)",
    )

    model_config = ConfigDict(frozen=True)


class CorrelationState(BaseModel):
    """
    State round-tripped through the provider redirect.

    Carries the caller's own opaque state plus the temporary token secret
    needed to sign the second handshake leg.
    """

    caller_state: str = Field(default="", description="Caller-supplied state")
    token_secret: str = Field(default="", description="Temporary token secret")
    oauth_token: Optional[str] = Field(
        default=None, description="Temporary token this state was issued with"
    )
    issued_at: int = Field(
        default_factory=lambda: int(time.time()),
        description="Issue timestamp (Unix epoch)",
    )

    model_config = ConfigDict(frozen=True)


class LongLivedCredential(BaseModel):
    """
    Durable credential issued after a successful authorization.

    Handed to a CredentialSink immediately. Only public_view() may cross
    the browser-facing boundary.
    """

    provider: str = Field(description="Provider name (garmin, strava)")
    access_token: str = Field(description="Access token")
    access_secret_or_refresh_token: Optional[str] = Field(
        default=None,
        description="OAuth1 token secret or OAuth2 refresh token",
    )
    external_user_id: Optional[str] = Field(
        default=None, description="Provider-side user identifier"
    )
    expires_at: Optional[int] = Field(
        default=None, description="Token expiration timestamp (Unix epoch)"
    )
    profile: Dict[str, Any] = Field(
        default_factory=dict, description="Public profile fields"
    )

    model_config = ConfigDict(frozen=True)

    def public_view(self) -> Dict[str, Any]:
        """Fields safe to return to the browser. Never includes secrets."""
        view: Dict[str, Any] = {
            "connected": True,
            "externalUserId": self.external_user_id,
        }
        if self.expires_at is not None:
            view["expiresAt"] = self.expires_at
        if self.profile:
            view["athlete"] = self.profile
        return view

    def __repr__(self) -> str:
        return (
            f"LongLivedCredential(provider={self.provider!r}, "
            f"external_user_id={self.external_user_id!r})"
        )

    __str__ = __repr__


class CallbackResult(BaseModel):
    """Raw OAuth1 callback values handed back to the caller untouched."""

    oauth_token: str
    oauth_verifier: str
    state: str = ""
    caller_state: Optional[str] = None


class OAuth2CallbackResult(BaseModel):
    """Raw OAuth2 callback values handed back to the caller untouched."""

    code: str
    state: str = ""
    scope: Optional[str] = None
    caller_state: Optional[str] = None


class WebhookEvent(BaseModel):
    """
    A verified inbound webhook notification.

    Verified, never mutated, by the webhook verifier. Interpretation of
    the payload belongs to downstream consumers.
    """

    raw_body: bytes = Field(exclude=True, description="Exact signed request body")
    signature_header: str = Field(exclude=True, description="Signature header value")
    timestamp: int = Field(description="Signed timestamp from the header")
    event_type: str = Field(default="unknown", description="Event type")
    event_id: Optional[str] = Field(default=None, description="Provider event ID")
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_payload(
        cls,
        raw_body: bytes,
        signature_header: str,
        timestamp: int,
        payload: Dict[str, Any],
    ) -> "WebhookEvent":
        """
        Create a WebhookEvent from a decoded payload.

        Args:
            raw_body: Raw request body the signature was computed over
            signature_header: Signature header value
            timestamp: Signed timestamp
            payload: Decoded JSON payload

        Returns:
            WebhookEvent carrying the original payload
        """
        # Signed payloads are trusted but not typed; metadata is kept as text
        event_type = payload.get("type")
        event_id = payload.get("id")
        return cls(
            raw_body=raw_body,
            signature_header=signature_header,
            timestamp=timestamp,
            event_type=str(event_type) if event_type else "unknown",
            event_id=None if event_id is None else str(event_id),
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return the original payload for serialization."""
        return self.payload
