"""
Port definitions (interfaces) for the core domain.

Ports define the contracts between the core domain and external systems.
Infrastructure adapters implement these ports.
"""

from typing import Optional, Protocol

from app.core.domain import LongLivedCredential, TemporaryCredential, WebhookEvent


class EventPublisher(Protocol):
    """
    Port (interface) for dispatching verified webhook events.

    This is implemented by infrastructure adapters (e.g., GooglePubSubPublisher).
    Only events that passed signature verification are handed to it.
    """

    async def publish(self, event: WebhookEvent) -> Optional[str]:
        """
        Publish a verified event asynchronously.

        Args:
            event: The verified webhook event

        Returns:
            Message ID if successful, None otherwise
        """
        ...

    def close(self) -> None:
        """Close the publisher and cleanup resources."""
        ...


class OAuth1TokenClient(Protocol):
    """Port for the two network legs of the OAuth 1.0a handshake."""

    async def request_temporary_credentials(
        self, callback_url: str
    ) -> TemporaryCredential:
        """Leg 1: obtain a temporary token and secret."""
        ...

    async def exchange_verifier(
        self, oauth_token: str, oauth_verifier: str, token_secret: str
    ) -> LongLivedCredential:
        """Leg 2: exchange the verified temporary token for access credentials."""
        ...


class OAuth2TokenClient(Protocol):
    """Port for the single-leg authorization-code exchange."""

    async def exchange_code(self, code: str) -> LongLivedCredential:
        """Exchange an authorization code for access credentials."""
        ...


class CredentialSink(Protocol):
    """
    Port receiving long-lived credentials once an authorization completes.

    The core hands credentials off immediately and does not own storage.
    """

    async def accept(self, credential: LongLivedCredential) -> None:
        """Take ownership of a freshly issued credential."""
        ...
