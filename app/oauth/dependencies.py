"""
FastAPI dependencies for provider authorization endpoints.

Wires configuration, the state codec, token clients and the credential
sink into the authorization flows.
"""

import logging
from typing import Annotated

from fastapi import Depends

from app.core.ports import CredentialSink
from app.core.state_codec import StateCodec
from app.infrastructure.credential_sink import get_credential_sink
from app.infrastructure.oauth_providers import GarminTokenClient, StravaTokenClient
from app.oauth.config import OAuthConfig, get_oauth_config


logger = logging.getLogger(__name__)


def get_state_codec(
    config: Annotated[OAuthConfig, Depends(get_oauth_config)],
) -> StateCodec:
    """
    Provide the redirect state codec.

    Raises:
        NotConfigured: If STATE_ENCRYPTION_KEY is missing or invalid
    """
    return StateCodec(config.state_encryption_key, max_age=config.state_max_age)


def get_garmin_token_client(
    config: Annotated[OAuthConfig, Depends(get_oauth_config)],
) -> GarminTokenClient:
    """
    Provide the Garmin token client.

    Raises:
        NotConfigured: If Garmin credentials are missing (no network call made)
    """
    spec = config.require_provider("garmin")
    return GarminTokenClient(spec, timeout=config.http_timeout)


def get_strava_token_client(
    config: Annotated[OAuthConfig, Depends(get_oauth_config)],
) -> StravaTokenClient:
    """
    Provide the Strava token client.

    Raises:
        NotConfigured: If Strava credentials are missing (no network call made)
    """
    spec = config.require_provider("strava")
    return StravaTokenClient(spec, timeout=config.http_timeout)


def get_sink() -> CredentialSink:
    """Provide the credential sink dependency."""
    return get_credential_sink()


# Type aliases for cleaner dependency injection
Config = Annotated[OAuthConfig, Depends(get_oauth_config)]
Codec = Annotated[StateCodec, Depends(get_state_codec)]
GarminClient = Annotated[GarminTokenClient, Depends(get_garmin_token_client)]
StravaClient = Annotated[StravaTokenClient, Depends(get_strava_token_client)]
Sink = Annotated[CredentialSink, Depends(get_sink)]
