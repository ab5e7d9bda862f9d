"""
Event types and the immutable Event value delivered to webhook targets.

EventType is a closed set. Every boundary (send endpoint, inbound receiver,
billing notifier) validates against it, and code that branches on an event
type uses an explicit mapping that is checked for completeness at import
time rather than free-form strings.

Usage:
    from webhooks.events import Event, EventType

    event = Event.create(EventType.PAYMENT_SUCCEEDED, {"subscription_id": "..."})
    event.body()  # b'{"subscription_id":"..."}' - the exact bytes signed and sent
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

if TYPE_CHECKING:
    from typing import Any


class EventType(models.TextChoices):
    """Every event type the platform sends or accepts."""

    SUBSCRIPTION_CREATED = "subscription.created", "Subscription created"
    SUBSCRIPTION_UPDATED = "subscription.updated", "Subscription updated"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled", "Subscription cancelled"
    SUBSCRIPTION_EXPIRED = "subscription.expired", "Subscription expired"
    SUBSCRIPTION_SUSPENDED = "subscription.suspended", "Subscription suspended"
    PAYMENT_SUCCEEDED = "payment.succeeded", "Payment succeeded"
    PAYMENT_FAILED = "payment.failed", "Payment failed"
    USAGE_LIMIT_REACHED = "usage.limit_reached", "Usage limit reached"
    USAGE_WARNING = "usage.warning", "Usage warning"
    USER_UPDATED = "user.updated", "User updated"

    @classmethod
    def parse(cls, value: str) -> EventType:
        """
        Return the member for ``value``.

        Raises:
            ValueError: If ``value`` is not a known event type
        """
        return cls(value)


@dataclass(frozen=True)
class Event:
    """
    An event ready for delivery.

    Attributes:
        event_type: One of EventType
        payload: JSON-serializable object
        id: Unique event id, shared by every delivery chain of this event
        created_at: When the event was produced
    """

    event_type: EventType
    payload: dict[str, Any]
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=timezone.now)

    @classmethod
    def create(cls, event_type: EventType | str, payload: dict[str, Any]) -> Event:
        return cls(event_type=EventType.parse(event_type), payload=dict(payload))

    def body(self) -> bytes:
        """Canonical JSON body; these bytes are both signed and sent."""
        return json.dumps(
            self.payload,
            cls=DjangoJSONEncoder,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")
