"""
Core application services and use cases.

This module contains the webhook use case, independent of
infrastructure details like HTTP or message queues.
"""

import json
import logging
from typing import Callable, Optional

from app.core import webhook_verifier
from app.core.domain import WebhookEvent
from app.core.exceptions import PublisherError
from app.core.ports import EventPublisher

logger = logging.getLogger(__name__)


class WebhookService:
    """
    Application service for verifying and dispatching provider webhooks.

    Verification always happens before any payload is handed on.
    """

    def __init__(
        self,
        publisher_factory: Callable[[], EventPublisher],
        signing_secret: Optional[str],
        tolerance: int = webhook_verifier.DEFAULT_TOLERANCE,
    ):
        """
        Initialize the webhook service.

        Args:
            publisher_factory: Returns the publisher for verified events; only
                called once a webhook has passed verification
            signing_secret: Webhook signing secret
            tolerance: Replay window in seconds
        """
        self.publisher_factory = publisher_factory
        self.signing_secret = signing_secret
        self.tolerance = tolerance

    def verify(
        self,
        raw_body: bytes,
        signature_header: str,
        current_time: Optional[int] = None,
    ) -> WebhookEvent:
        """
        Verify an inbound webhook.

        Raises:
            NotConfigured: If no signing secret is configured
            SignatureInvalid: On any verification failure
        """
        return webhook_verifier.verify(
            raw_body,
            signature_header,
            self.signing_secret or "",
            current_time=current_time,
            tolerance=self.tolerance,
        )

    async def process_webhook(
        self,
        raw_body: bytes,
        signature_header: str,
        current_time: Optional[int] = None,
    ) -> str:
        """
        Verify a webhook and publish it for downstream consumers.

        Args:
            raw_body: Exact request body bytes
            signature_header: Signature header value
            current_time: Verification time (defaults to now)

        Returns:
            Message ID from successful publication

        Raises:
            NotConfigured: If no signing secret or no publisher is configured
            SignatureInvalid: If verification fails (nothing is published)
            PublisherError: If publishing fails or returns no message ID
        """
        event = self.verify(raw_body, signature_header, current_time)

        logger.info(
            json.dumps(
                {
                    "message": "WEBHOOK VERIFIED",
                    "event_type": event.event_type,
                    "event_id": event.event_id,
                    "signed_at": event.timestamp,
                },
                default=str,
            )
        )

        event_publisher = self.publisher_factory()

        try:
            message_id = await event_publisher.publish(event)
        except Exception as e:
            raise PublisherError(f"Failed to publish event: {str(e)}") from e

        if not message_id:
            raise PublisherError("Publisher returned no message ID")

        logger.info(f"Published event with message ID: {message_id}")
        return message_id

