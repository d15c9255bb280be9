"""
Opaque correlation state carried across provider redirects.

The state is serialized to canonical JSON (deterministic and lossless),
then sealed with Fernet symmetric encryption from the cryptography
library. Sealing keeps the temporary token secret unreadable by the
browser and the provider, and makes any substitution or tampering
detectable on decode.
"""

import json
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from app.core.domain import CorrelationState
from app.core.exceptions import NotConfigured, StateDecodeFailed

logger = logging.getLogger(__name__)

# Seconds a sealed state stays valid after begin()
DEFAULT_MAX_AGE = 600


def dump_state(state: CorrelationState) -> bytes:
    """
    Serialize a correlation state to canonical JSON bytes.

    Sorted keys and compact separators make the output deterministic.
    """
    return json.dumps(
        state.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def load_state(data: bytes) -> CorrelationState:
    """
    Inverse of dump_state.

    Raises:
        StateDecodeFailed: If the bytes are not a valid serialized state
    """
    try:
        return CorrelationState.model_validate(json.loads(data.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise StateDecodeFailed(f"Malformed state payload: {e}") from e


def generate_state_key() -> str:
    """
    Generate a new Fernet key.

    The generated key can be used as STATE_ENCRYPTION_KEY.
    """
    key_bytes = Fernet.generate_key()
    result: str = key_bytes.decode()
    return result


class StateCodec:
    """Seals and opens CorrelationState values for redirect round-trips."""

    def __init__(self, key: Optional[str], max_age: int = DEFAULT_MAX_AGE):
        """
        Initialize the codec.

        Args:
            key: URL-safe base64 32-byte Fernet key
            max_age: Maximum age in seconds accepted by decode()

        Raises:
            NotConfigured: If the key is missing or invalid
        """
        if not key:
            raise NotConfigured("state", "STATE_ENCRYPTION_KEY is not set")
        try:
            self._fernet = Fernet(key.encode())
        except ValueError as e:
            raise NotConfigured("state", f"Invalid STATE_ENCRYPTION_KEY: {e}") from e
        self.max_age = max_age

    def encode(self, state: CorrelationState) -> str:
        """Seal a state into a URL-safe opaque string."""
        return self._fernet.encrypt(dump_state(state)).decode("ascii")

    def decode(self, token: str) -> CorrelationState:
        """
        Open a sealed state.

        Raises:
            StateDecodeFailed: If the token is empty, tampered, sealed with
                another key or older than max_age
        """
        if not token:
            raise StateDecodeFailed("State is empty")
        try:
            data = self._fernet.decrypt(token.encode("utf-8"), ttl=self.max_age)
        except InvalidToken as e:
            logger.warning("Rejected redirect state: invalid, tampered or expired")
            raise StateDecodeFailed("State is invalid or expired") from e
        return load_state(data)
