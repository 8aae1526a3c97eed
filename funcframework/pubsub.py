"""Support for legacy Cloud Pub/Sub push subscription payloads.

A push subscription delivers ``{"subscription": ..., "message": {...}}``
rather than a background event envelope, and the topic is only available from
the push endpoint's URL path.
"""

import base64
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from funcframework.interfaces import BackgroundEvent, Metadata, Resource

PUBSUB_EVENT_TYPE = "google.pubsub.topic.publish"
PUBSUB_MESSAGE_TYPE = "type.googleapis.com/google.pubusb.v1.PubsubMessage"
PUBSUB_SERVICE = "pubsub.googleapis.com"

_TOPIC_PATH_RE = re.compile(r"(projects/[^/?]+/topics/[^/?]+)/*")


class PubSubMessage(BaseModel):
    """A Pub/Sub message as delivered to push endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field("", alias="messageId")
    data: bytes = b""
    attributes: Optional[Dict[str, str]] = None
    publish_time: Optional[datetime] = Field(None, alias="publishTime")

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, value: Any) -> Any:
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value


class LegacyPubSubEvent(BaseModel):
    """Payload of a legacy Pub/Sub push subscription trigger."""

    subscription: str = ""
    message: PubSubMessage = Field(default_factory=PubSubMessage)

    def to_background_event(self, topic: str) -> BackgroundEvent:
        """Convert to the standard background event envelope.

        Args:
            topic: Fully qualified topic name, empty if unknown

        Returns:
            BackgroundEvent carrying the message
        """
        timestamp = self.message.publish_time or datetime.now(timezone.utc)
        return BackgroundEvent(
            metadata=Metadata(
                event_id=self.message.message_id,
                timestamp=timestamp,
                event_type=PUBSUB_EVENT_TYPE,
                resource=Resource(
                    name=topic,
                    type=PUBSUB_MESSAGE_TYPE,
                    service=PUBSUB_SERVICE,
                ),
            ),
            data={
                "@type": PUBSUB_MESSAGE_TYPE,
                "data": self.message.data,
                "attributes": self.message.attributes,
            },
        )


def extract_topic_from_request_path(path: str) -> str:
    """Extract a Pub/Sub topic name from a push endpoint URL or path.

    Args:
        path: Request URL or path, e.g. ``/_ah/push-handlers/pubsub/projects/p/topics/t``

    Returns:
        Topic name in the form ``projects/<project>/topics/<topic>``

    Raises:
        ValueError: If the path does not contain a topic name
    """
    match = _TOPIC_PATH_RE.search(path or "")
    if match is None:
        raise ValueError(
            f"failed to extract Pub/Sub topic name from the URL request path: {path!r}, "
            "configure your subscription's push endpoint to use the following path "
            "pattern: 'projects/PROJECT_NAME/topics/TOPIC_NAME'"
        )
    return match.group(1)
