"""
Provider configuration.

Loaded once from environment variables into immutable structures that
are passed explicitly into each component. Providers without
credentials are allowed (partial configuration); their endpoints fail
closed with NotConfigured.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache

from app.core.exceptions import NotConfigured
from app.core.state_codec import DEFAULT_MAX_AGE
from app.core.webhook_verifier import DEFAULT_TOLERANCE


logger = logging.getLogger(__name__)


GARMIN_REQUEST_TOKEN_URL = (
    "https://connectapi.garmin.com/oauth-service/oauth/request_token"
)
GARMIN_ACCESS_TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/access_token"
GARMIN_AUTHORIZE_URL = "https://connect.garmin.com/oauthConfirm"

STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"
STRAVA_DEFAULT_SCOPE = "read,activity:read_all"

# Seconds per provider network leg
DEFAULT_HTTP_TIMEOUT = 10.0


@dataclass(frozen=True)
class ProviderCredentialSpec:
    """Static per-provider credentials and handshake endpoints."""

    name: str
    client_id: str | None
    client_secret: str | None
    signature_method: str
    authorize_url: str
    access_token_url: str
    request_token_url: str | None = None
    scope: str | None = None

    @property
    def is_configured(self) -> bool:
        """Check if both halves of the client credentials are present."""
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return (
            f"ProviderCredentialSpec(name={self.name!r}, "
            f"configured={self.is_configured})"
        )


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass(frozen=True)
class OAuthConfig:
    """
    Service configuration settings.

    Loaded from environment variables.
    """

    base_url: str
    garmin: ProviderCredentialSpec
    strava: ProviderCredentialSpec
    app_base_url: str = ""
    stripe_webhook_secret: str | None = field(default=None, repr=False)
    stripe_signature_tolerance: int = DEFAULT_TOLERANCE
    state_encryption_key: str | None = field(default=None, repr=False)
    state_max_age: int = DEFAULT_MAX_AGE
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    @classmethod
    def from_env(cls) -> "OAuthConfig":
        """Load configuration from environment variables."""
        base_url = os.getenv("BASE_URL", "http://localhost:8080").rstrip("/")
        return cls(
            base_url=base_url,
            app_base_url=os.getenv("APP_BASE_URL", base_url).rstrip("/"),
            garmin=ProviderCredentialSpec(
                name="garmin",
                client_id=os.getenv("GARMIN_CONSUMER_KEY"),
                client_secret=os.getenv("GARMIN_CONSUMER_SECRET"),
                signature_method="HMAC-SHA1",
                request_token_url=os.getenv(
                    "GARMIN_REQUEST_TOKEN_URL", GARMIN_REQUEST_TOKEN_URL
                ),
                authorize_url=os.getenv("GARMIN_AUTHORIZE_URL", GARMIN_AUTHORIZE_URL),
                access_token_url=os.getenv(
                    "GARMIN_ACCESS_TOKEN_URL", GARMIN_ACCESS_TOKEN_URL
                ),
            ),
            strava=ProviderCredentialSpec(
                name="strava",
                client_id=os.getenv("STRAVA_CLIENT_ID"),
                client_secret=os.getenv("STRAVA_CLIENT_SECRET"),
                signature_method="client_secret_post",
                authorize_url=STRAVA_AUTHORIZE_URL,
                access_token_url=STRAVA_TOKEN_URL,
                scope=os.getenv("STRAVA_SCOPE", STRAVA_DEFAULT_SCOPE),
            ),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            stripe_signature_tolerance=_int_env(
                "STRIPE_SIGNATURE_TOLERANCE", DEFAULT_TOLERANCE
            ),
            state_encryption_key=os.getenv("STATE_ENCRYPTION_KEY"),
            state_max_age=_int_env("STATE_MAX_AGE", DEFAULT_MAX_AGE),
            http_timeout=_float_env("PROVIDER_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        )

    def get_callback_url(self, provider: str) -> str:
        """Generate the provider callback URL on this service."""
        return f"{self.base_url}/api/auth/{provider}/callback"

    def get_completion_url(self, provider: str) -> str:
        """URL in the consuming application that receives callback values."""
        return f"{self.app_base_url}/auth/{provider}/complete"

    def get_provider(self, provider: str) -> ProviderCredentialSpec:
        """Look up a provider's credential spec by name."""
        if provider == "garmin":
            return self.garmin
        if provider == "strava":
            return self.strava
        raise KeyError(provider)

    def is_provider_configured(self, provider: str) -> bool:
        """Check if a provider has valid credentials configured."""
        if provider not in SUPPORTED_PROVIDERS:
            return False
        return self.get_provider(provider).is_configured

    def get_configured_providers(self) -> list[str]:
        """List all providers with valid configuration."""
        return [p for p in SUPPORTED_PROVIDERS if self.is_provider_configured(p)]

    def require_provider(self, provider: str) -> ProviderCredentialSpec:
        """
        Return a provider's spec, failing closed when it is not configured.

        Raises:
            NotConfigured: If the provider's credentials are missing
        """
        if not self.is_provider_configured(provider):
            logger.error(f"{provider} credentials are not configured")
            raise NotConfigured(provider, f"{provider.capitalize()} not configured on server")
        return self.get_provider(provider)


@lru_cache()
def get_oauth_config() -> OAuthConfig:
    """Get configuration singleton."""
    config = OAuthConfig.from_env()
    logger.info(
        "Provider configuration loaded",
        extra={"extra_fields": {"providers": config.get_configured_providers()}},
    )
    return config


# List of supported providers (for validation)
SUPPORTED_PROVIDERS = ["garmin", "strava"]
