"""
Domain exceptions for the authorization and webhook core.

These exceptions represent terminal failures of a single authorization
attempt or webhook delivery and are caught by centralized exception
handlers in main.py. None of them is retried inside the core.
"""


class AuthorizationError(Exception):
    """Base class for failures of an authorization attempt."""

    pass


class NotConfigured(AuthorizationError):
    """
    Raised when provider credentials or secrets are missing.

    Endpoints fail closed with a 500 response instead of attempting
    an unsigned call.
    """

    def __init__(self, provider: str, message: str | None = None):
        self.provider = provider
        super().__init__(message or f"{provider} not configured on server")


class MissingParameters(AuthorizationError):
    """Raised when client input is missing required values."""

    pass


class MissingCallbackParameters(MissingParameters):
    """Raised when a provider callback lacks its token or verifier."""

    pass


class ProviderUnreachable(AuthorizationError):
    """
    Raised on network errors or timeouts while talking to a provider.

    Handshake legs are never retried automatically: nonces and
    timestamps are single-use within the provider's validity window.
    """

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)


class ProviderRequestRejected(AuthorizationError):
    """
    Raised when a provider answers a handshake leg with an error.

    The raw provider body is kept for the log sink only. It is never
    returned to the browser-facing caller.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class StateDecodeFailed(AuthorizationError):
    """Raised when opaque redirect state is corrupt, tampered or expired."""

    pass


class InvalidFlowState(AuthorizationError):
    """Raised when an authorization step is invoked out of order."""

    pass


class SignatureInvalid(Exception):
    """
    Raised when an inbound webhook fails authenticity or freshness checks.

    The caller must answer with a 4xx and must not process the payload.
    """

    pass


class PublisherError(Exception):
    """
    Raised when event publishing fails.

    This indicates a server-side error (Pub/Sub unavailable, network issue, etc.)
    and should result in a 500 response so the provider can retry the webhook.
    """

    pass
