"""
In-memory credential sink.

Implements the CredentialSink port for development and tests. Durable,
encrypted storage belongs to the consuming application.
"""

import logging
from functools import lru_cache

from app.core.domain import LongLivedCredential


logger = logging.getLogger(__name__)


class InMemoryCredentialSink:
    """Keeps the latest credential per (provider, external user id)."""

    def __init__(self) -> None:
        self._credentials: dict[tuple[str, str | None], LongLivedCredential] = {}

    async def accept(self, credential: LongLivedCredential) -> None:
        """Take ownership of a freshly issued credential."""
        key = (credential.provider, credential.external_user_id)
        self._credentials[key] = credential
        logger.info(
            f"Stored {credential.provider} credential",
            extra={
                "extra_fields": {
                    "provider": credential.provider,
                    "external_user_id": credential.external_user_id,
                }
            },
        )

    def get(self, provider: str, external_user_id: str | None) -> LongLivedCredential | None:
        """Get the stored credential for a provider user."""
        return self._credentials.get((provider, external_user_id))

    def clear(self) -> None:
        """Remove all credentials (for testing)."""
        self._credentials.clear()


@lru_cache()
def get_credential_sink() -> InMemoryCredentialSink:
    """Get the credential sink singleton."""
    return InMemoryCredentialSink()
