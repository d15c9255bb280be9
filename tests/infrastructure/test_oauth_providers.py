"""
Unit tests for the Garmin and Strava token exchange clients.
"""

import json
from dataclasses import replace
from urllib.parse import unquote

import httpx
import pytest
from respx import MockRouter

from app.core import signing
from app.core.domain import LongLivedCredential, TemporaryCredential
from app.core.exceptions import (
    MissingParameters,
    NotConfigured,
    ProviderRequestRejected,
    ProviderUnreachable,
)
from app.infrastructure.oauth_providers import GarminTokenClient, StravaTokenClient
from app.oauth.config import (
    GARMIN_ACCESS_TOKEN_URL,
    GARMIN_AUTHORIZE_URL,
    GARMIN_REQUEST_TOKEN_URL,
    STRAVA_AUTHORIZE_URL,
    STRAVA_TOKEN_URL,
    ProviderCredentialSpec,
)

CALLBACK_URL = "http://testserver/api/auth/garmin/callback"


@pytest.fixture
def garmin_spec():
    """Configured Garmin credentials."""
    return ProviderCredentialSpec(
        name="garmin",
        client_id="garmin-key",
        client_secret="garmin-secret",
        signature_method="HMAC-SHA1",
        request_token_url=GARMIN_REQUEST_TOKEN_URL,
        authorize_url=GARMIN_AUTHORIZE_URL,
        access_token_url=GARMIN_ACCESS_TOKEN_URL,
    )


@pytest.fixture
def strava_spec():
    """Configured Strava credentials."""
    return ProviderCredentialSpec(
        name="strava",
        client_id="12345",
        client_secret="strava-secret",
        signature_method="client_secret_post",
        authorize_url=STRAVA_AUTHORIZE_URL,
        access_token_url=STRAVA_TOKEN_URL,
    )


def parse_authorization_header(header: str) -> dict[str, str]:
    """Split an OAuth Authorization header into decoded parameters."""
    assert header.startswith("OAuth ")
    params = {}
    for item in header[len("OAuth ") :].split(", "):
        key, value = item.split("=", 1)
        params[unquote(key)] = unquote(value.strip('"'))
    return params


class TestGarminTokenClientConfiguration:
    """Tests for fail-closed construction."""

    def test_missing_consumer_key_not_configured(self, garmin_spec):
        """Test a client cannot be built without a consumer key."""
        with pytest.raises(NotConfigured):
            GarminTokenClient(replace(garmin_spec, client_id=None))

    def test_missing_consumer_secret_not_configured(self, garmin_spec):
        """Test a client cannot be built without a consumer secret."""
        with pytest.raises(NotConfigured):
            GarminTokenClient(replace(garmin_spec, client_secret=""))

    def test_missing_request_token_url_not_configured(self, garmin_spec):
        """Test the OAuth1 client requires a request token URL."""
        with pytest.raises(NotConfigured, match="Request token URL"):
            GarminTokenClient(replace(garmin_spec, request_token_url=None))


class TestGarminRequestTemporaryCredentials:
    """Tests for leg 1 (request token)."""

    @pytest.mark.asyncio
    async def test_success(self, respx_mock: MockRouter, garmin_spec):
        """Test leg 1 returns the temporary token and secret."""
        route = respx_mock.post(GARMIN_REQUEST_TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                text="oauth_token=tmp-token&oauth_token_secret=tmp-secret"
                "&oauth_callback_confirmed=true",
            )
        )

        client = GarminTokenClient(garmin_spec)
        result = await client.request_temporary_credentials(CALLBACK_URL)

        assert isinstance(result, TemporaryCredential)
        assert result.token == "tmp-token"
        assert result.token_secret == "tmp-secret"
        assert route.called

    @pytest.mark.asyncio
    async def test_request_is_correctly_signed(self, respx_mock: MockRouter, garmin_spec):
        """Test the Authorization header carries a valid HMAC-SHA1 signature."""
        route = respx_mock.post(GARMIN_REQUEST_TOKEN_URL).mock(
            return_value=httpx.Response(
                200, text="oauth_token=tmp-token&oauth_token_secret=tmp-secret"
            )
        )

        client = GarminTokenClient(garmin_spec)
        await client.request_temporary_credentials(CALLBACK_URL)

        request = route.calls.last.request
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        params = parse_authorization_header(request.headers["Authorization"])

        assert params["oauth_consumer_key"] == "garmin-key"
        assert params["oauth_callback"] == CALLBACK_URL
        assert params["oauth_signature_method"] == "HMAC-SHA1"
        assert params["oauth_version"] == "1.0"
        assert "oauth_token" not in params

        signature = params.pop("oauth_signature")
        expected = signing.sign("POST", GARMIN_REQUEST_TOKEN_URL, params, "garmin-secret")
        assert signature == expected

    @pytest.mark.asyncio
    async def test_error_status_rejected(self, respx_mock: MockRouter, garmin_spec):
        """Test an error status raises ProviderRequestRejected with the body kept."""
        respx_mock.post(GARMIN_REQUEST_TOKEN_URL).mock(
            return_value=httpx.Response(401, text="Invalid signature")
        )

        client = GarminTokenClient(garmin_spec)
        with pytest.raises(ProviderRequestRejected) as exc_info:
            await client.request_temporary_credentials(CALLBACK_URL)

        assert exc_info.value.status_code == 401
        assert exc_info.value.body == "Invalid signature"

    @pytest.mark.asyncio
    async def test_missing_secret_in_response_rejected(
        self, respx_mock: MockRouter, garmin_spec
    ):
        """Test a success response without a token secret is rejected."""
        respx_mock.post(GARMIN_REQUEST_TOKEN_URL).mock(
            return_value=httpx.Response(200, text="oauth_token=tmp-token")
        )

        client = GarminTokenClient(garmin_spec)
        with pytest.raises(ProviderRequestRejected, match="Invalid token response"):
            await client.request_temporary_credentials(CALLBACK_URL)

    @pytest.mark.asyncio
    async def test_timeout_unreachable(self, respx_mock: MockRouter, garmin_spec):
        """Test a timeout raises ProviderUnreachable."""
        respx_mock.post(GARMIN_REQUEST_TOKEN_URL).mock(
            side_effect=httpx.ReadTimeout("timed out")
        )

        client = GarminTokenClient(garmin_spec)
        with pytest.raises(ProviderUnreachable, match="timed out"):
            await client.request_temporary_credentials(CALLBACK_URL)

    @pytest.mark.asyncio
    async def test_network_error_unreachable(self, respx_mock: MockRouter, garmin_spec):
        """Test a connection error raises ProviderUnreachable."""
        respx_mock.post(GARMIN_REQUEST_TOKEN_URL).mock(
            side_effect=httpx.ConnectError("Connection failed")
        )

        client = GarminTokenClient(garmin_spec)
        with pytest.raises(ProviderUnreachable):
            await client.request_temporary_credentials(CALLBACK_URL)


class TestGarminExchangeVerifier:
    """Tests for leg 2 (access token)."""

    @pytest.mark.asyncio
    async def test_success(self, respx_mock: MockRouter, garmin_spec):
        """Test leg 2 returns long-lived credentials and the user id."""
        respx_mock.post(GARMIN_ACCESS_TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                text="oauth_token=access-token&oauth_token_secret=access-secret"
                "&user_id=garmin-user-1",
            )
        )

        client = GarminTokenClient(garmin_spec)
        credential = await client.exchange_verifier("tmp-token", "verifier", "tmp-secret")

        assert isinstance(credential, LongLivedCredential)
        assert credential.provider == "garmin"
        assert credential.access_token == "access-token"
        assert credential.access_secret_or_refresh_token == "access-secret"
        assert credential.external_user_id == "garmin-user-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["userId", "oauth_user_id"])
    async def test_alternate_user_id_fields(self, respx_mock: MockRouter, garmin_spec, field):
        """Test the user id is read from the alternate field names."""
        respx_mock.post(GARMIN_ACCESS_TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                text=f"oauth_token=access-token&oauth_token_secret=access-secret&{field}=u-7",
            )
        )

        client = GarminTokenClient(garmin_spec)
        credential = await client.exchange_verifier("tmp-token", "verifier", "tmp-secret")

        assert credential.external_user_id == "u-7"

    @pytest.mark.asyncio
    async def test_signed_with_temporary_secret(self, respx_mock: MockRouter, garmin_spec):
        """Test leg 2 is signed with consumer secret and temporary token secret."""
        route = respx_mock.post(GARMIN_ACCESS_TOKEN_URL).mock(
            return_value=httpx.Response(
                200, text="oauth_token=access-token&oauth_token_secret=access-secret"
            )
        )

        client = GarminTokenClient(garmin_spec)
        await client.exchange_verifier("tmp-token", "verifier", "tmp-secret")

        params = parse_authorization_header(
            route.calls.last.request.headers["Authorization"]
        )
        assert params["oauth_token"] == "tmp-token"
        assert params["oauth_verifier"] == "verifier"
        assert "oauth_callback" not in params

        signature = params.pop("oauth_signature")
        assert signature == signing.sign(
            "POST", GARMIN_ACCESS_TOKEN_URL, params, "garmin-secret", "tmp-secret"
        )
        assert signature != signing.sign(
            "POST", GARMIN_ACCESS_TOKEN_URL, params, "garmin-secret"
        )

    @pytest.mark.asyncio
    async def test_legs_use_distinct_nonces(self, respx_mock: MockRouter, garmin_spec):
        """Test leg 1 and leg 2 never share a nonce."""
        leg_one = respx_mock.post(GARMIN_REQUEST_TOKEN_URL).mock(
            return_value=httpx.Response(
                200, text="oauth_token=tmp-token&oauth_token_secret=tmp-secret"
            )
        )
        leg_two = respx_mock.post(GARMIN_ACCESS_TOKEN_URL).mock(
            return_value=httpx.Response(
                200, text="oauth_token=access-token&oauth_token_secret=access-secret"
            )
        )

        client = GarminTokenClient(garmin_spec)
        temporary = await client.request_temporary_credentials(CALLBACK_URL)
        await client.exchange_verifier(temporary.token, "verifier", temporary.token_secret)

        first = parse_authorization_header(leg_one.calls.last.request.headers["Authorization"])
        second = parse_authorization_header(leg_two.calls.last.request.headers["Authorization"])
        assert first["oauth_nonce"] != second["oauth_nonce"]

    @pytest.mark.asyncio
    async def test_missing_token_secret_fails_closed(
        self, respx_mock: MockRouter, garmin_spec
    ):
        """Test leg 2 without a token secret never reaches the network."""
        client = GarminTokenClient(garmin_spec)
        with pytest.raises(MissingParameters):
            await client.exchange_verifier("tmp-token", "verifier", "")

        assert not respx_mock.calls

    @pytest.mark.asyncio
    async def test_missing_verifier_fails_closed(self, garmin_spec):
        """Test leg 2 without a verifier raises MissingParameters."""
        client = GarminTokenClient(garmin_spec)
        with pytest.raises(MissingParameters):
            await client.exchange_verifier("tmp-token", "", "tmp-secret")

    @pytest.mark.asyncio
    async def test_rejected_verifier(self, respx_mock: MockRouter, garmin_spec):
        """Test a provider rejection of leg 2 is surfaced."""
        respx_mock.post(GARMIN_ACCESS_TOKEN_URL).mock(
            return_value=httpx.Response(400, text="oauth_problem=token_rejected")
        )

        client = GarminTokenClient(garmin_spec)
        with pytest.raises(ProviderRequestRejected) as exc_info:
            await client.exchange_verifier("tmp-token", "bad-verifier", "tmp-secret")

        assert exc_info.value.provider == "garmin"
        assert "token_rejected" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_long_error_body_truncated(self, respx_mock: MockRouter, garmin_spec):
        """Test provider error bodies kept for logging are bounded."""
        respx_mock.post(GARMIN_ACCESS_TOKEN_URL).mock(
            return_value=httpx.Response(500, text="x" * 5000)
        )

        client = GarminTokenClient(garmin_spec)
        with pytest.raises(ProviderRequestRejected) as exc_info:
            await client.exchange_verifier("tmp-token", "verifier", "tmp-secret")

        assert len(exc_info.value.body) == 500


class TestStravaExchangeCode:
    """Tests for the OAuth2 code exchange."""

    @pytest.mark.asyncio
    async def test_success(self, respx_mock: MockRouter, strava_spec):
        """Test a code exchange returns tokens and public athlete fields only."""
        route = respx_mock.post(STRAVA_TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "token_type": "Bearer",
                    "access_token": "strava-access",
                    "refresh_token": "strava-refresh",
                    "expires_at": 1700021600,
                    "athlete": {
                        "id": 987,
                        "firstname": "Ada",
                        "lastname": "Lovelace",
                        "weight": 60.0,
                    },
                },
            )
        )

        client = StravaTokenClient(strava_spec)
        credential = await client.exchange_code("auth-code")

        assert credential.provider == "strava"
        assert credential.access_token == "strava-access"
        assert credential.access_secret_or_refresh_token == "strava-refresh"
        assert credential.expires_at == 1700021600
        assert credential.external_user_id == "987"
        assert credential.profile == {"id": 987, "firstname": "Ada", "lastname": "Lovelace"}

        sent = route.calls.last.request
        assert sent.headers["Content-Type"] == "application/json"
        body = json.loads(sent.content)
        assert body == {
            "client_id": "12345",
            "client_secret": "strava-secret",
            "code": "auth-code",
            "grant_type": "authorization_code",
        }

    @pytest.mark.asyncio
    async def test_missing_code(self, strava_spec):
        """Test an empty code raises MissingParameters."""
        client = StravaTokenClient(strava_spec)
        with pytest.raises(MissingParameters):
            await client.exchange_code("")

    @pytest.mark.asyncio
    async def test_rejected_code(self, respx_mock: MockRouter, strava_spec):
        """Test an invalid code is rejected with the body kept for logs."""
        respx_mock.post(STRAVA_TOKEN_URL).mock(
            return_value=httpx.Response(
                400, json={"message": "Bad Request", "errors": [{"code": "invalid"}]}
            )
        )

        client = StravaTokenClient(strava_spec)
        with pytest.raises(ProviderRequestRejected) as exc_info:
            await client.exchange_code("bad-code")

        assert exc_info.value.status_code == 400
        assert "invalid" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_non_json_response_rejected(self, respx_mock: MockRouter, strava_spec):
        """Test a success response that is not JSON is rejected."""
        respx_mock.post(STRAVA_TOKEN_URL).mock(
            return_value=httpx.Response(200, text="<html>oops</html>")
        )

        client = StravaTokenClient(strava_spec)
        with pytest.raises(ProviderRequestRejected, match="Invalid token response"):
            await client.exchange_code("auth-code")

    @pytest.mark.asyncio
    async def test_response_without_access_token_rejected(
        self, respx_mock: MockRouter, strava_spec
    ):
        """Test a JSON response without an access token is rejected."""
        respx_mock.post(STRAVA_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"athlete": {"id": 1}})
        )

        client = StravaTokenClient(strava_spec)
        with pytest.raises(ProviderRequestRejected, match="no access token"):
            await client.exchange_code("auth-code")

    @pytest.mark.asyncio
    async def test_non_object_athlete_ignored(self, respx_mock: MockRouter, strava_spec):
        """Test an athlete value that is not an object yields no profile."""
        respx_mock.post(STRAVA_TOKEN_URL).mock(
            return_value=httpx.Response(
                200, json={"access_token": "strava-access", "athlete": "987"}
            )
        )

        client = StravaTokenClient(strava_spec)
        credential = await client.exchange_code("auth-code")

        assert credential.access_token == "strava-access"
        assert credential.external_user_id is None
        assert credential.profile == {}

    @pytest.mark.asyncio
    async def test_timeout_unreachable(self, respx_mock: MockRouter, strava_spec):
        """Test a timeout raises ProviderUnreachable."""
        respx_mock.post(STRAVA_TOKEN_URL).mock(side_effect=httpx.ConnectTimeout("slow"))

        client = StravaTokenClient(strava_spec)
        with pytest.raises(ProviderUnreachable):
            await client.exchange_code("auth-code")

    def test_unconfigured_strava(self, strava_spec):
        """Test a client cannot be built without a client secret."""
        with pytest.raises(NotConfigured):
            StravaTokenClient(replace(strava_spec, client_secret=None))

