"""
Google Cloud Pub/Sub dispatch of verified webhook events.

Driven adapter implementing the EventPublisher port. Only events that
passed signature verification reach this adapter; it forwards the
original payload so downstream consumers see exactly what the provider
sent, with routing metadata in message attributes.
"""

import asyncio
import json
import logging
import os
from typing import Optional

from google.api_core import exceptions
from google.cloud import pubsub_v1

from app.core.domain import WebhookEvent
from app.core.exceptions import NotConfigured

logger = logging.getLogger(__name__)

# Seconds to wait for the Pub/Sub acknowledgement of one message
PUBLISH_TIMEOUT = 10.0


def encode_event(event: WebhookEvent, source: str) -> tuple[bytes, dict[str, str]]:
    """
    Turn a verified event into Pub/Sub message data and attributes.

    Attribute values must be strings; a missing event ID becomes "".
    """
    data = json.dumps(event.to_dict(), default=str).encode("utf-8")
    attributes = {
        "source": source,
        "event_type": event.event_type,
        "event_id": event.event_id or "",
        "signed_at": str(event.timestamp),
    }
    return data, attributes


class GooglePubSubPublisher:
    """
    EventPublisher backed by a Pub/Sub topic.

    Targets the Pub/Sub emulator when PUBSUB_EMULATOR_HOST is set; the
    client library picks the variable up on its own.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        topic_name: Optional[str] = None,
        source: str = "stripe",
    ):
        """
        Args:
            project_id: GCP project ID (defaults to GCP_PROJECT_ID env var)
            topic_name: Pub/Sub topic name (defaults to PUBSUB_TOPIC_NAME env var)
            source: Provider name stamped on every message

        Raises:
            NotConfigured: If the project or topic is not configured
        """
        self.project_id = project_id or os.getenv("GCP_PROJECT_ID")
        self.topic_name = topic_name or os.getenv("PUBSUB_TOPIC_NAME")
        self.emulator_host = os.getenv("PUBSUB_EMULATOR_HOST")
        self.source = source

        if not self.project_id:
            raise NotConfigured(
                "pubsub", "GCP_PROJECT_ID must be set for Pub/Sub publisher"
            )
        if not self.topic_name:
            raise NotConfigured(
                "pubsub", "PUBSUB_TOPIC_NAME must be set for Pub/Sub publisher"
            )

        self.publisher = pubsub_v1.PublisherClient()
        self.topic_path = self.publisher.topic_path(self.project_id, self.topic_name)

        target = f"emulator at {self.emulator_host}" if self.emulator_host else "GCP"
        logger.info(f"Event publisher ready for {self.topic_path} ({target})")

    async def publish(self, event: WebhookEvent) -> Optional[str]:
        """
        Publish one verified event.

        The publish future is resolved in a worker thread so the event
        loop keeps serving requests while Pub/Sub acknowledges.

        Returns:
            Message ID, or None if the topic rejected or never acknowledged it
        """
        data, attributes = encode_event(event, self.source)

        try:
            future = self.publisher.publish(self.topic_path, data, **attributes)
            message_id: str = await asyncio.to_thread(future.result, PUBLISH_TIMEOUT)
        except exceptions.NotFound:
            logger.error(f"Pub/Sub topic not found: {self.topic_path}")
            return None
        except exceptions.PermissionDenied:
            logger.error(f"Permission denied publishing to topic: {self.topic_path}")
            return None
        except Exception as e:
            logger.error(
                f"Failed to publish {event.event_type} event to Pub/Sub: {e}",
                extra={"extra_fields": {"event_id": event.event_id}},
            )
            return None

        logger.info(
            f"Published {event.event_type} event: {message_id}",
            extra={"extra_fields": {"event_id": event.event_id, "message_id": message_id}},
        )
        return message_id

    def close(self) -> None:
        """Flush pending messages and stop the client."""
        if self.publisher:
            self.publisher.stop()
