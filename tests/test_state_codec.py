"""
Tests for the opaque redirect state codec.
"""

import json
import time
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from app.core.domain import CorrelationState
from app.core.exceptions import NotConfigured, StateDecodeFailed
from app.core.state_codec import (
    StateCodec,
    dump_state,
    generate_state_key,
    load_state,
)


@pytest.fixture
def codec():
    """Codec with a fresh key."""
    return StateCodec(generate_state_key())


class TestCanonicalSerialization:
    """Tests for the deterministic state serialization."""

    def test_dump_is_deterministic(self):
        """Test the same state always serializes to the same bytes."""
        state = CorrelationState(caller_state="abc", token_secret="s", issued_at=1000)
        assert dump_state(state) == dump_state(state)

    def test_dump_uses_sorted_compact_json(self):
        """Test keys are sorted and separators compact."""
        state = CorrelationState(
            caller_state="abc", token_secret="s", oauth_token="t", issued_at=1000
        )
        assert dump_state(state) == (
            b'{"caller_state":"abc","issued_at":1000,"oauth_token":"t","token_secret":"s"}'
        )

    @pytest.mark.parametrize(
        "caller_state",
        ["", "plain", "a:b|c", "x=1&y=2", "user:42|2024-01-01", "Zürich ☃", '{"nested": "json"}'],
    )
    def test_round_trip_preserves_values(self, caller_state):
        """Test delimiter and non-ASCII characters survive serialization."""
        state = CorrelationState(
            caller_state=caller_state, token_secret="sec:ret|&=", oauth_token="tok"
        )
        assert load_state(dump_state(state)) == state

    def test_load_rejects_garbage(self):
        """Test non-JSON input raises StateDecodeFailed."""
        with pytest.raises(StateDecodeFailed):
            load_state(b"not json")

    def test_load_rejects_wrong_shape(self):
        """Test JSON of the wrong shape raises StateDecodeFailed."""
        with pytest.raises(StateDecodeFailed):
            load_state(json.dumps({"caller_state": ["not", "a", "string"]}).encode())

    def test_load_rejects_invalid_utf8(self):
        """Test undecodable bytes raise StateDecodeFailed."""
        with pytest.raises(StateDecodeFailed):
            load_state(b"\xff\xfe")


class TestStateCodec:
    """Tests for sealing and opening redirect state."""

    def test_round_trip(self, codec):
        """Test decode(encode(s)) == s."""
        state = CorrelationState(caller_state="user:42|x", token_secret="tsecret")
        assert codec.decode(codec.encode(state)) == state

    def test_encoded_state_hides_secret(self, codec):
        """Test the sealed state does not expose the token secret."""
        encoded = codec.encode(CorrelationState(token_secret="very-secret-value"))
        assert "very-secret-value" not in encoded

    def test_encoded_state_is_url_safe(self, codec):
        """Test the sealed state only uses URL-safe characters."""
        encoded = codec.encode(CorrelationState(caller_state="a b&c=d/e+f"))
        assert all(c.isalnum() or c in "-_=" for c in encoded)

    def test_tampered_state_rejected(self, codec):
        """Test a modified sealed state fails to decode."""
        encoded = codec.encode(CorrelationState(caller_state="abc", token_secret="s"))
        position = len(encoded) // 2
        replacement = "A" if encoded[position] != "A" else "B"
        tampered = encoded[:position] + replacement + encoded[position + 1 :]

        with pytest.raises(StateDecodeFailed):
            codec.decode(tampered)

    def test_state_from_other_key_rejected(self, codec):
        """Test state sealed with another key fails to decode."""
        other = StateCodec(generate_state_key())
        encoded = other.encode(CorrelationState(caller_state="abc"))

        with pytest.raises(StateDecodeFailed):
            codec.decode(encoded)

    def test_empty_state_rejected(self, codec):
        """Test empty state raises StateDecodeFailed."""
        with pytest.raises(StateDecodeFailed):
            codec.decode("")

    def test_garbage_state_rejected(self, codec):
        """Test arbitrary strings raise StateDecodeFailed."""
        with pytest.raises(StateDecodeFailed):
            codec.decode("definitely-not-a-sealed-state")

    def test_expired_state_rejected(self):
        """Test state older than max_age fails to decode."""
        codec = StateCodec(generate_state_key(), max_age=60)
        issued = int(time.time()) - 3600

        with patch("cryptography.fernet.time.time", return_value=issued):
            encoded = codec.encode(CorrelationState(caller_state="abc"))

        with pytest.raises(StateDecodeFailed):
            codec.decode(encoded)

    def test_missing_key_not_configured(self):
        """Test a codec cannot be built without a key."""
        with pytest.raises(NotConfigured):
            StateCodec(None)
        with pytest.raises(NotConfigured):
            StateCodec("")

    def test_invalid_key_not_configured(self):
        """Test a malformed key is a configuration error."""
        with pytest.raises(NotConfigured, match="Invalid STATE_ENCRYPTION_KEY"):
            StateCodec("too-short")

    def test_generated_key_is_valid_fernet_key(self):
        """Test generate_state_key returns a usable Fernet key."""
        Fernet(generate_state_key().encode())
