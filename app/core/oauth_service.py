"""
Core services sequencing provider authorization flows.

Each flow object drives a single authorization attempt through an
explicit state machine:

    IDLE -> AWAITING_PROVIDER_REDIRECT -> AWAITING_CALLBACK -> COMPLETED

FAILED is terminal and reachable from any step. Because the steps run in
separate HTTP requests, an endpoint resumes a flow at the step its hop
represents; the sealed redirect state is what links the hops together.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from authlib.integrations.httpx_client import AsyncOAuth2Client

from app.core.domain import (
    AuthorizationStep,
    CallbackResult,
    CorrelationState,
    LongLivedCredential,
    OAuth2CallbackResult,
)
from app.core.exceptions import (
    InvalidFlowState,
    MissingCallbackParameters,
    MissingParameters,
    NotConfigured,
    ProviderRequestRejected,
    StateDecodeFailed,
)
from app.core.ports import OAuth1TokenClient, OAuth2TokenClient
from app.core.state_codec import StateCodec

logger = logging.getLogger(__name__)


class _AuthorizationFlow:
    """State machine shared by the provider flows."""

    provider = "provider"
    token_client = None

    def __init__(self, step: AuthorizationStep = AuthorizationStep.IDLE):
        self.step = step
        self._finished = False

    def _require(self, *allowed: AuthorizationStep) -> None:
        if self.step not in allowed:
            raise InvalidFlowState(
                f"{self.provider} flow is {self.step.value}, expected "
                f"{' or '.join(s.value for s in allowed)}"
            )

    def _client(self):
        # Callback-only flows are built without a token client
        if self.token_client is None:
            raise NotConfigured(
                self.provider, f"No {self.provider} token client for this step"
            )
        return self.token_client

    def _fail(self, error: Exception) -> None:
        logger.warning(
            f"{self.provider} authorization failed at {self.step.value}: "
            f"{type(error).__name__}"
        )
        self.step = AuthorizationStep.FAILED

    def _consume(self) -> None:
        self._require(AuthorizationStep.COMPLETED)
        if self._finished:
            raise InvalidFlowState(f"{self.provider} flow was already finished")
        self._finished = True


class GarminAuthorizationFlow(_AuthorizationFlow):
    """
    Three-step OAuth 1.0a flow: begin, callback, finish.

    The temporary token secret from leg 1 only ever leaves the server
    sealed inside the redirect state.
    """

    provider = "garmin"

    def __init__(
        self,
        token_client: Optional[OAuth1TokenClient],
        codec: StateCodec,
        authorize_url: str,
        callback_url: str,
        step: AuthorizationStep = AuthorizationStep.IDLE,
    ):
        super().__init__(step)
        self.token_client = token_client
        self.codec = codec
        self.authorize_url = authorize_url
        self.callback_url = callback_url

    async def begin(self, caller_state: Optional[str] = None) -> str:
        """
        Start the flow.

        Performs leg 1, seals the token secret with the caller's state and
        builds the provider authorization URL.

        Args:
            caller_state: Opaque caller state to get back after the redirect

        Returns:
            URL of the provider's authorization page
        """
        self._require(AuthorizationStep.IDLE)
        self.step = AuthorizationStep.AWAITING_PROVIDER_REDIRECT
        try:
            temporary = await self._client().request_temporary_credentials(
                self.callback_url
            )
            encoded_state = self.codec.encode(
                CorrelationState(
                    caller_state=caller_state or "",
                    token_secret=temporary.token_secret,
                    oauth_token=temporary.token,
                )
            )
        except Exception as e:
            self._fail(e)
            raise

        callback_with_state = f"{self.callback_url}?{urlencode({'state': encoded_state})}"
        redirect_url = f"{self.authorize_url}?" + urlencode(
            {
                "oauth_token": temporary.token,
                "oauth_callback": callback_with_state,
                "state": encoded_state,
            }
        )

        self.step = AuthorizationStep.AWAITING_CALLBACK
        logger.info(f"Redirecting user to {self.provider} authorization page")
        return redirect_url

    def callback(
        self,
        oauth_token: Optional[str],
        oauth_verifier: Optional[str],
        encoded_state: Optional[str] = None,
    ) -> CallbackResult:
        """
        Receive the provider redirect.

        Does not call leg 2. The raw values and the opaque state are handed
        back to the caller untouched.

        Raises:
            MissingCallbackParameters: If the token or verifier is absent
            StateDecodeFailed: If a state is present but invalid
        """
        self._require(AuthorizationStep.AWAITING_CALLBACK)
        try:
            if not oauth_token or not oauth_verifier:
                raise MissingCallbackParameters("Missing OAuth parameters")

            caller_state = None
            if encoded_state:
                caller_state = self.codec.decode(encoded_state).caller_state
        except Exception as e:
            self._fail(e)
            raise

        self.step = AuthorizationStep.COMPLETED
        return CallbackResult(
            oauth_token=oauth_token,
            oauth_verifier=oauth_verifier,
            state=encoded_state or "",
            caller_state=caller_state,
        )

    async def finish(
        self, oauth_token: str, oauth_verifier: str, token_secret: str
    ) -> LongLivedCredential:
        """
        Exchange the verified temporary token for long-lived credentials.

        Raises:
            MissingParameters: If any input is empty (fails closed)
            ProviderUnreachable: On network errors or timeout
            ProviderRequestRejected: If the provider rejects leg 2
        """
        self._consume()
        try:
            if not oauth_token or not oauth_verifier:
                raise MissingParameters("Missing OAuth parameters")
            if not token_secret:
                raise MissingParameters("Missing temporary token secret")
            return await self._client().exchange_verifier(
                oauth_token, oauth_verifier, token_secret
            )
        except Exception as e:
            self._fail(e)
            raise

    async def finish_from_state(
        self, oauth_token: str, oauth_verifier: str, encoded_state: Optional[str]
    ) -> LongLivedCredential:
        """
        Finish using the sealed state instead of a client-supplied secret.

        The state must have been issued for the same temporary token.

        Raises:
            MissingParameters: If the state is absent
            StateDecodeFailed: If the state is invalid or bound to another token
        """
        self._require(AuthorizationStep.COMPLETED)
        try:
            if not encoded_state:
                raise MissingParameters("Missing state")
            state = self.codec.decode(encoded_state)
            if state.oauth_token is not None and state.oauth_token != oauth_token:
                raise StateDecodeFailed("State was issued for a different token")
        except Exception as e:
            self._fail(e)
            raise
        return await self.finish(oauth_token, oauth_verifier, state.token_secret)


class StravaAuthorizationFlow(_AuthorizationFlow):
    """Authorization-code flow for the OAuth2 provider."""

    provider = "strava"

    def __init__(
        self,
        token_client: Optional[OAuth2TokenClient],
        codec: StateCodec,
        client_id: str,
        authorize_url: str,
        callback_url: str,
        scope: Optional[str] = None,
        step: AuthorizationStep = AuthorizationStep.IDLE,
    ):
        super().__init__(step)
        self.token_client = token_client
        self.codec = codec
        self.client_id = client_id
        self.authorize_url = authorize_url
        self.callback_url = callback_url
        self.scope = scope

    async def begin(self, caller_state: Optional[str] = None) -> str:
        """Build the provider authorization URL with a sealed state."""
        self._require(AuthorizationStep.IDLE)
        self.step = AuthorizationStep.AWAITING_PROVIDER_REDIRECT
        try:
            encoded_state = self.codec.encode(
                CorrelationState(caller_state=caller_state or "")
            )
            async with AsyncOAuth2Client(
                client_id=self.client_id,
                scope=self.scope,
                redirect_uri=self.callback_url,
            ) as client:
                url, _ = client.create_authorization_url(
                    self.authorize_url, state=encoded_state, approval_prompt="auto"
                )
        except Exception as e:
            self._fail(e)
            raise

        self.step = AuthorizationStep.AWAITING_CALLBACK
        logger.info(f"Redirecting user to {self.provider} authorization page")
        return url

    def callback(
        self,
        code: Optional[str],
        encoded_state: Optional[str],
        scope: Optional[str] = None,
        error: Optional[str] = None,
    ) -> OAuth2CallbackResult:
        """
        Receive the provider redirect.

        Raises:
            ProviderRequestRejected: If the user denied access
            MissingCallbackParameters: If the code or state is absent
            StateDecodeFailed: If the state is invalid
        """
        self._require(AuthorizationStep.AWAITING_CALLBACK)
        try:
            if error:
                raise ProviderRequestRejected(
                    self.provider, f"Authorization denied: {error}"
                )
            if not code or not encoded_state:
                raise MissingCallbackParameters("Missing authorization code or state")
            caller_state = self.codec.decode(encoded_state).caller_state
        except Exception as e:
            self._fail(e)
            raise

        self.step = AuthorizationStep.COMPLETED
        return OAuth2CallbackResult(
            code=code, state=encoded_state, scope=scope, caller_state=caller_state
        )

    async def finish(self, code: str) -> LongLivedCredential:
        """Exchange the authorization code for long-lived credentials."""
        self._consume()
        try:
            if not code:
                raise MissingParameters("Missing authorization code")
            return await self._client().exchange_code(code)
        except Exception as e:
            self._fail(e)
            raise
