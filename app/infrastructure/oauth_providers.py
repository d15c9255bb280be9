"""
Token exchange clients for provider handshakes.

Driven adapters implementing the OAuth1TokenClient and OAuth2TokenClient
ports. Each network leg is a linear sign, call, parse sequence with an
explicit timeout and no retries.
"""

import logging
from typing import Any, Optional
from urllib.parse import parse_qsl

import httpx

from app.core import signing
from app.core.domain import LongLivedCredential, TemporaryCredential
from app.core.exceptions import (
    MissingParameters,
    NotConfigured,
    ProviderRequestRejected,
    ProviderUnreachable,
)
from app.oauth.config import DEFAULT_HTTP_TIMEOUT, ProviderCredentialSpec

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Provider bodies are logged for diagnostics, bounded in size
MAX_LOGGED_BODY = 500

# Athlete fields that may cross the browser-facing boundary
STRAVA_PUBLIC_ATHLETE_FIELDS = (
    "id",
    "username",
    "firstname",
    "lastname",
    "city",
    "country",
    "profile",
    "profile_medium",
)


class _ProviderHttpClient:
    """Shared HTTP plumbing: timeout handling and error classification."""

    def __init__(self, spec: ProviderCredentialSpec, timeout: float):
        if not spec.is_configured:
            raise NotConfigured(spec.name)
        self.spec = spec
        self.timeout = timeout

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        """
        POST to a provider endpoint.

        Raises:
            ProviderUnreachable: On timeouts and transport errors
            ProviderRequestRejected: On any non-2xx status
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling {self.spec.name} at {url}: {e}")
            raise ProviderUnreachable(
                self.spec.name, f"{self.spec.name} timed out"
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling {self.spec.name} at {url}: {e}")
            raise ProviderUnreachable(
                self.spec.name, f"{self.spec.name} is unreachable"
            ) from e

        if not response.is_success:
            body = response.text[:MAX_LOGGED_BODY]
            logger.warning(
                f"{self.spec.name} rejected request to {url}: "
                f"{response.status_code} {body}"
            )
            raise ProviderRequestRejected(
                self.spec.name,
                f"{self.spec.name} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return response


class GarminTokenClient(_ProviderHttpClient):
    """OAuth 1.0a token exchange against Garmin Connect."""

    def __init__(
        self, spec: ProviderCredentialSpec, timeout: float = DEFAULT_HTTP_TIMEOUT
    ):
        super().__init__(spec, timeout)
        if not spec.request_token_url:
            raise NotConfigured(spec.name, "Request token URL is not set")

    def _signed_headers(
        self, url: str, params: dict[str, str], token_secret: Optional[str] = None
    ) -> dict[str, str]:
        signed = signing.signed_parameters(
            "POST", url, params, self.spec.client_secret or "", token_secret
        )
        return {
            "Authorization": signing.authorization_header(signed),
            "Content-Type": FORM_CONTENT_TYPE,
        }

    def _parse_token_response(self, response: httpx.Response) -> dict[str, str]:
        fields = dict(parse_qsl(response.text, keep_blank_values=True))
        if not fields.get("oauth_token") or not fields.get("oauth_token_secret"):
            logger.warning(
                f"Invalid token response from {self.spec.name}: "
                f"{response.text[:MAX_LOGGED_BODY]}"
            )
            raise ProviderRequestRejected(
                self.spec.name,
                f"Invalid token response from {self.spec.name}",
                status_code=response.status_code,
                body=response.text[:MAX_LOGGED_BODY],
            )
        return fields

    async def request_temporary_credentials(
        self, callback_url: str
    ) -> TemporaryCredential:
        """
        Obtain temporary credentials (request token).

        Args:
            callback_url: Where the provider sends the user after consent

        Returns:
            TemporaryCredential with token and token secret

        Raises:
            ProviderUnreachable: On network errors or timeout
            ProviderRequestRejected: On error status or malformed response
        """
        url = self.spec.request_token_url or ""
        params = signing.protocol_parameters(
            self.spec.client_id or "", callback=callback_url
        )

        logger.info(f"Requesting temporary credentials from {url}")
        response = await self._post(url, headers=self._signed_headers(url, params))
        fields = self._parse_token_response(response)

        logger.info(f"Obtained temporary credentials from {self.spec.name}")
        return TemporaryCredential(
            token=fields["oauth_token"], token_secret=fields["oauth_token_secret"]
        )

    async def exchange_verifier(
        self, oauth_token: str, oauth_verifier: str, token_secret: str
    ) -> LongLivedCredential:
        """
        Exchange verified temporary credentials for access credentials.

        Args:
            oauth_token: Temporary token from leg 1
            oauth_verifier: Verifier issued by the provider at consent
            token_secret: Temporary token secret from leg 1

        Returns:
            LongLivedCredential with the access token and secret

        Raises:
            MissingParameters: If any input is empty; nothing is sent
            ProviderUnreachable: On network errors or timeout
            ProviderRequestRejected: On error status or malformed response
        """
        if not oauth_token or not oauth_verifier:
            raise MissingParameters("oauth_token and oauth_verifier are required")
        if not token_secret:
            raise MissingParameters("Temporary token secret is required for leg 2")

        url = self.spec.access_token_url
        params = signing.protocol_parameters(
            self.spec.client_id or "", token=oauth_token, verifier=oauth_verifier
        )

        logger.info(f"Exchanging temporary credentials at {url}")
        response = await self._post(
            url, headers=self._signed_headers(url, params, token_secret)
        )
        fields = self._parse_token_response(response)

        user_id = (
            fields.get("user_id") or fields.get("userId") or fields.get("oauth_user_id")
        )
        logger.info(
            f"Obtained {self.spec.name} access credentials",
            extra={"extra_fields": {"provider": self.spec.name, "user_id": user_id}},
        )
        return LongLivedCredential(
            provider=self.spec.name,
            access_token=fields["oauth_token"],
            access_secret_or_refresh_token=fields["oauth_token_secret"],
            external_user_id=user_id,
        )


class StravaTokenClient(_ProviderHttpClient):
    """OAuth2 authorization-code exchange against Strava."""

    def __init__(
        self, spec: ProviderCredentialSpec, timeout: float = DEFAULT_HTTP_TIMEOUT
    ):
        super().__init__(spec, timeout)

    async def exchange_code(self, code: str) -> LongLivedCredential:
        """
        Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the provider callback

        Returns:
            LongLivedCredential with access and refresh tokens

        Raises:
            MissingParameters: If the code is empty
            ProviderUnreachable: On network errors or timeout
            ProviderRequestRejected: On error status or malformed response
        """
        if not code:
            raise MissingParameters("Missing authorization code")

        response = await self._post(
            self.spec.access_token_url,
            json={
                "client_id": self.spec.client_id,
                "client_secret": self.spec.client_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
        )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestRejected(
                self.spec.name,
                f"Invalid token response from {self.spec.name}",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ProviderRequestRejected(
                self.spec.name,
                f"Token response from {self.spec.name} has no access token",
                status_code=response.status_code,
            )

        athlete = data.get("athlete")
        if not isinstance(athlete, dict):
            athlete = {}
        profile = {k: athlete[k] for k in STRAVA_PUBLIC_ATHLETE_FIELDS if k in athlete}
        athlete_id = athlete.get("id")

        logger.info(
            f"Obtained {self.spec.name} access credentials",
            extra={"extra_fields": {"provider": self.spec.name, "user_id": athlete_id}},
        )
        return LongLivedCredential(
            provider=self.spec.name,
            access_token=data["access_token"],
            access_secret_or_refresh_token=data.get("refresh_token"),
            external_user_id=str(athlete_id) if athlete_id is not None else None,
            expires_at=data.get("expires_at"),
            profile=profile,
        )
