"""
Webhook signature verification (HMAC-SHA256).

Verifies Stripe-style signature headers of the form
``t=<timestamp>,v1=<hex>[,v1=<hex>...]``. Several v1 entries may be
present while the provider rotates signing secrets; any match accepts.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Optional

from app.core.domain import WebhookEvent
from app.core.exceptions import NotConfigured, SignatureInvalid

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE = 300  # 5 minutes


def parse_signature_header(header: str) -> tuple[int, list[str]]:
    """
    Split a signature header into its timestamp and v1 signatures.

    Unknown schemes (e.g. v0 test signatures) are ignored.

    Raises:
        SignatureInvalid: If the timestamp or every v1 signature is missing
    """
    timestamp: Optional[int] = None
    signatures: list[str] = []

    for item in (header or "").split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureInvalid("Malformed signature timestamp") from None
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)

    if timestamp is None:
        raise SignatureInvalid("Signature header has no timestamp")
    if not signatures:
        raise SignatureInvalid(f"Signature header has no {SIGNATURE_SCHEME} signature")
    return timestamp, signatures


def compute_signature(timestamp: int, raw_body: bytes, signing_secret: str) -> str:
    """HMAC-SHA256 hex digest over ``timestamp + "." + raw_body``."""
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(
        signing_secret.encode("utf-8"), signed_payload, hashlib.sha256
    ).hexdigest()


def generate_signature_header(
    raw_body: bytes, signing_secret: str, timestamp: Optional[int] = None
) -> str:
    """Build a valid signature header, for tests and local tooling."""
    if timestamp is None:
        timestamp = int(time.time())
    signature = compute_signature(timestamp, raw_body, signing_secret)
    return f"t={timestamp},{SIGNATURE_SCHEME}={signature}"


def verify(
    raw_body: bytes,
    signature_header: str,
    signing_secret: str,
    current_time: Optional[int] = None,
    tolerance: int = DEFAULT_TOLERANCE,
) -> WebhookEvent:
    """
    Verify an inbound webhook and return the event.

    Args:
        raw_body: Exact request body bytes, read before any JSON parsing
        signature_header: Signature header value
        signing_secret: Webhook signing secret
        current_time: Verification time (defaults to now)
        tolerance: Replay window in seconds

    Returns:
        Verified WebhookEvent

    Raises:
        NotConfigured: If no signing secret is configured
        SignatureInvalid: On any mismatch, stale timestamp or malformed payload
    """
    if not signing_secret:
        raise NotConfigured("stripe", "Webhook signing secret is not set")
    if tolerance <= 0:
        raise ValueError("Signature tolerance must be positive")

    timestamp, signatures = parse_signature_header(signature_header)
    expected = compute_signature(timestamp, raw_body, signing_secret).encode("ascii")

    if not any(
        hmac.compare_digest(expected, candidate.encode("utf-8"))
        for candidate in signatures
    ):
        raise SignatureInvalid("No signature matches the expected signature")

    now = int(time.time()) if current_time is None else current_time
    if abs(now - timestamp) > tolerance:
        logger.warning(
            f"Webhook timestamp outside tolerance window: "
            f"current={now}, request={timestamp}, diff={abs(now - timestamp)}s"
        )
        raise SignatureInvalid("Timestamp outside the tolerance window")

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SignatureInvalid(f"Signed payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise SignatureInvalid("Signed payload is not a JSON object")

    return WebhookEvent.from_payload(raw_body, signature_header, timestamp, payload)
