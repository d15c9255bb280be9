"""
Provider authorization API endpoints.

Garmin (OAuth 1.0a):
- GET  /api/auth/garmin/authorize - Leg 1, then redirect to Garmin
- GET  /api/auth/garmin/callback  - Receive Garmin redirect, hand values to the app
- POST /api/auth/garmin/token     - Leg 2, returns connection status only

Strava (OAuth2):
- GET  /api/auth/strava/authorize - Redirect to Strava
- GET  /api/auth/strava/callback  - Receive Strava redirect, hand values to the app
- POST /api/auth/strava/token     - Code exchange, returns connection status only

Raw provider tokens never appear in a response.
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from app.core.domain import AuthorizationStep
from app.core.oauth_service import GarminAuthorizationFlow, StravaAuthorizationFlow
from app.core.state_codec import StateCodec
from app.infrastructure.oauth_providers import GarminTokenClient, StravaTokenClient
from app.oauth.config import OAuthConfig
from app.oauth.dependencies import (
    Codec,
    Config,
    GarminClient,
    Sink,
    StravaClient,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["oauth"])


class GarminTokenRequest(BaseModel):
    """Request body for the Garmin token exchange."""

    oauth_token: str | None = Field(default=None, alias="oauthToken")
    oauth_verifier: str | None = Field(default=None, alias="oauthVerifier")
    state: str | None = Field(
        default=None, description="Sealed state from the authorize redirect"
    )

    model_config = ConfigDict(populate_by_name=True)


class StravaTokenRequest(BaseModel):
    """Request body for the Strava code exchange."""

    code: str | None = None


class ConnectionStatus(BaseModel):
    """Browser-safe result of a completed authorization."""

    connected: bool
    external_user_id: str | None = Field(default=None, alias="externalUserId")
    expires_at: int | None = Field(default=None, alias="expiresAt")
    athlete: dict | None = None

    model_config = ConfigDict(populate_by_name=True)


def _garmin_flow(
    config: OAuthConfig,
    codec: StateCodec,
    client: GarminTokenClient | None = None,
    step: AuthorizationStep = AuthorizationStep.IDLE,
) -> GarminAuthorizationFlow:
    return GarminAuthorizationFlow(
        token_client=client,
        codec=codec,
        authorize_url=config.garmin.authorize_url,
        callback_url=config.get_callback_url("garmin"),
        step=step,
    )


def _strava_flow(
    config: OAuthConfig,
    codec: StateCodec,
    client: StravaTokenClient | None = None,
    step: AuthorizationStep = AuthorizationStep.IDLE,
) -> StravaAuthorizationFlow:
    return StravaAuthorizationFlow(
        token_client=client,
        codec=codec,
        client_id=config.strava.client_id or "",
        authorize_url=config.strava.authorize_url,
        callback_url=config.get_callback_url("strava"),
        scope=config.strava.scope,
        step=step,
    )


def _completion_redirect(config: OAuthConfig, provider: str, params: dict) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(
        url=f"{config.get_completion_url(provider)}?{query}",
        status_code=status.HTTP_302_FOUND,
    )


# =============================================================================
# Garmin (OAuth 1.0a)
# =============================================================================


@router.get("/garmin/authorize")
async def garmin_authorize(
    config: Config,
    client: GarminClient,
    codec: Codec,
    state: str | None = None,
):
    """
    Start the Garmin authorization flow.

    Obtains temporary credentials, seals the token secret into the
    redirect state and redirects to Garmin's authorization page.

    Args:
        state: Optional caller state returned after the redirect

    Returns:
        Redirect to Garmin's authorization page
    """
    logger.info("Starting OAuth flow for provider: garmin")
    redirect_url = await _garmin_flow(config, codec, client).begin(state)
    return RedirectResponse(url=redirect_url, status_code=status.HTTP_302_FOUND)


@router.get("/garmin/callback")
async def garmin_callback(
    config: Config,
    codec: Codec,
    oauth_token: str | None = None,
    oauth_verifier: str | None = None,
    state: str | None = None,
):
    """
    Handle the redirect back from Garmin.

    Validates the token and verifier are present, then redirects into the
    consuming application with the same values. Leg 2 is not called here.
    """
    flow = _garmin_flow(config, codec, step=AuthorizationStep.AWAITING_CALLBACK)
    result = flow.callback(oauth_token, oauth_verifier, state)

    logger.info("OAuth callback received for provider: garmin")
    return _completion_redirect(
        config,
        "garmin",
        {
            "oauth_token": result.oauth_token,
            "oauth_verifier": result.oauth_verifier,
            "state": result.state,
        },
    )


@router.post("/garmin/token", response_model=ConnectionStatus, response_model_exclude_none=True)
async def garmin_token(
    body: GarminTokenRequest,
    config: Config,
    client: GarminClient,
    codec: Codec,
    sink: Sink,
):
    """
    Exchange the verified temporary token for access credentials.

    The temporary token secret is recovered from the sealed state, never
    taken from the browser. Credentials go to the credential sink; only
    the connection status is returned.
    """
    flow = _garmin_flow(config, codec, client, AuthorizationStep.COMPLETED)
    credential = await flow.finish_from_state(
        body.oauth_token or "", body.oauth_verifier or "", body.state
    )
    await sink.accept(credential)

    logger.info(
        "Successfully connected garmin",
        extra={"extra_fields": {"provider": "garmin"}},
    )
    return credential.public_view()


# =============================================================================
# Strava (OAuth2)
# =============================================================================


@router.get("/strava/authorize")
async def strava_authorize(
    config: Config,
    client: StravaClient,
    codec: Codec,
    state: str | None = None,
):
    """Redirect to Strava's authorization page with a sealed state."""
    logger.info("Starting OAuth flow for provider: strava")
    redirect_url = await _strava_flow(config, codec, client).begin(state)
    return RedirectResponse(url=redirect_url, status_code=status.HTTP_302_FOUND)


@router.get("/strava/callback")
async def strava_callback(
    config: Config,
    codec: Codec,
    code: str | None = None,
    state: str | None = None,
    scope: str | None = None,
    error: str | None = None,
):
    """
    Handle the redirect back from Strava.

    Redirects into the consuming application with the code, state and
    granted scope. The code exchange happens in the token endpoint.
    """
    flow = _strava_flow(config, codec, step=AuthorizationStep.AWAITING_CALLBACK)
    result = flow.callback(code, state, scope=scope, error=error)

    logger.info("OAuth callback received for provider: strava")
    return _completion_redirect(
        config,
        "strava",
        {"code": result.code, "state": result.state, "scope": result.scope},
    )


@router.post("/strava/token", response_model=ConnectionStatus, response_model_exclude_none=True)
async def strava_token(
    body: StravaTokenRequest,
    config: Config,
    client: StravaClient,
    codec: Codec,
    sink: Sink,
):
    """
    Exchange an authorization code for tokens.

    Returns athlete info and expiry; tokens stay server-side.
    """
    flow = _strava_flow(config, codec, client, AuthorizationStep.COMPLETED)
    credential = await flow.finish(body.code or "")
    await sink.accept(credential)

    logger.info(
        "Successfully connected strava",
        extra={"extra_fields": {"provider": "strava"}},
    )
    return credential.public_view()
