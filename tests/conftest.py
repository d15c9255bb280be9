"""
Shared test configuration and fixtures.
"""

import os
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

# Mock Pub/Sub before importing app
with patch.dict(
    os.environ,
    {
        "GCP_PROJECT_ID": "test-project",
        "PUBSUB_TOPIC_NAME": "test-topic",
        "BASE_URL": "http://testserver",
    },
):
    from app.main import app, get_publisher_factory

from app.core.state_codec import StateCodec
from app.infrastructure.credential_sink import get_credential_sink
from app.oauth.config import (
    GARMIN_ACCESS_TOKEN_URL,
    GARMIN_AUTHORIZE_URL,
    GARMIN_REQUEST_TOKEN_URL,
    STRAVA_AUTHORIZE_URL,
    STRAVA_DEFAULT_SCOPE,
    STRAVA_TOKEN_URL,
    OAuthConfig,
    ProviderCredentialSpec,
    get_oauth_config,
)

TEST_STATE_KEY = Fernet.generate_key().decode()
TEST_WEBHOOK_SECRET = "whsec_test_secret"


def make_config(**overrides) -> OAuthConfig:
    """Build a fully configured OAuthConfig, with optional field overrides."""
    config = OAuthConfig(
        base_url="http://testserver",
        app_base_url="http://app.test",
        garmin=ProviderCredentialSpec(
            name="garmin",
            client_id="garmin-key",
            client_secret="garmin-secret",
            signature_method="HMAC-SHA1",
            request_token_url=GARMIN_REQUEST_TOKEN_URL,
            authorize_url=GARMIN_AUTHORIZE_URL,
            access_token_url=GARMIN_ACCESS_TOKEN_URL,
        ),
        strava=ProviderCredentialSpec(
            name="strava",
            client_id="12345",
            client_secret="strava-secret",
            signature_method="client_secret_post",
            authorize_url=STRAVA_AUTHORIZE_URL,
            access_token_url=STRAVA_TOKEN_URL,
            scope=STRAVA_DEFAULT_SCOPE,
        ),
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        state_encryption_key=TEST_STATE_KEY,
    )
    return replace(config, **overrides)


@pytest.fixture
def test_config():
    """Fully configured service settings."""
    return make_config()


@pytest.fixture
def state_codec():
    """State codec sharing the key used by the app under test."""
    return StateCodec(TEST_STATE_KEY)


@pytest.fixture
def mock_event_publisher():
    """
    Mock event publisher.

    Defaults to a successful publish. Tests that want to test failure
    scenarios should override publish.
    """
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value="mock-message-id-123")
    return publisher


@pytest.fixture
def sink():
    """The credential sink used by the app, emptied around each test."""
    credential_sink = get_credential_sink()
    credential_sink.clear()
    yield credential_sink
    credential_sink.clear()


@pytest.fixture
def client(test_config, mock_event_publisher, sink):
    """
    Test client wired to the test configuration and mock publisher.

    Uses FastAPI's dependency_overrides to replace real infrastructure.
    """
    app.dependency_overrides[get_oauth_config] = lambda: test_config
    app.dependency_overrides[get_publisher_factory] = lambda: lambda: mock_event_publisher

    yield TestClient(app)

    app.dependency_overrides.pop(get_oauth_config, None)
    app.dependency_overrides.pop(get_publisher_factory, None)


@pytest.fixture
def stripe_event():
    """Sample Stripe event payload."""
    return {
        "id": "evt_1",
        "type": "invoice.paid",
        "data": {"object": {"id": "in_123", "customer": "cus_456"}},
    }
