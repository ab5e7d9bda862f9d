"""
Celery tasks for webhook delivery.

This module provides async tasks for:
- Delivering an event to its target URLs (retries and dead-lettering happen
  inside the task, see webhooks.scheduler)
- Periodic cleanup of old delivery attempt rows

Usage:
    from webhooks.tasks import deliver_event

    deliver_event.delay(
        event_type="payment.succeeded",
        payload={"subscription_id": "..."},
        target_urls=["https://partner.example/hooks"],
    )

Note:
    deliver_event is not auto-retried by Celery. A chain that
    gives up is dead-lettered and only an operator replays it.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.utils import timezone

from webhooks.events import Event
from webhooks.exceptions import WebhookConfigurationError
from webhooks.models import DeliveryAttempt
from webhooks.scheduler import DeliveryDispatcher

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# 4 attempts x 10s timeout + 1s + 2s + 4s backoff, with headroom
DELIVERY_SOFT_TIME_LIMIT = 120
DELIVERY_TIME_LIMIT = 150


# =============================================================================
# Delivery Tasks
# =============================================================================


@shared_task(
    bind=True,
    soft_time_limit=DELIVERY_SOFT_TIME_LIMIT,
    time_limit=DELIVERY_TIME_LIMIT,
    acks_late=True,
)
def deliver_event(
    self,
    event_type: str,
    payload: dict,
    target_urls: list[str],
    request_id: str | None = None,
    secret: str | None = None,
) -> dict:
    """
    Sign and deliver an event to every target URL.

    Args:
        event_type: One of webhooks.events.EventType
        payload: JSON object to deliver
        target_urls: Receivers
        request_id: Stable id for this delivery (defaults to the task id,
            so a redelivered task reuses its dead-letter keys)
        secret: Signing secret (defaults to WEBHOOK_SECRET)

    Returns:
        Dict with ``status`` plus the delivery summary
    """
    request_id = request_id or self.request.id
    event = Event.create(event_type, payload)
    dispatcher = DeliveryDispatcher()

    logger.info(
        "Delivering webhook event",
        extra={
            "event_id": str(event.id),
            "event_type": event.event_type.value,
            "request_id": request_id,
            "target_count": len(target_urls),
        },
    )

    try:
        result = dispatcher.dispatch(
            event,
            target_urls,
            secret or settings.WEBHOOK_SECRET,
            request_id=request_id,
        )
    except WebhookConfigurationError as e:
        logger.error(
            "Webhook delivery skipped: signing secret not configured",
            extra={"request_id": request_id, "event_type": event.event_type.value},
        )
        return {"status": "error", "request_id": request_id, **e.to_dict()}
    except SoftTimeLimitExceeded:
        logger.error(
            "Webhook delivery hit soft time limit; remaining chains cancelled",
            extra={"request_id": request_id, "event_type": event.event_type.value},
        )
        return {"status": "cancelled", "request_id": request_id}

    return {"status": "completed", "request_id": request_id, **result.to_dict()}


# =============================================================================
# Maintenance Tasks
# =============================================================================


@shared_task(bind=True)
def purge_delivery_attempts(self, older_than_days: int | None = None) -> dict:
    """
    Delete finished delivery attempts older than the retention period.

    Dead-letter entries are never purged.

    Args:
        older_than_days: Retention in days (WEBHOOK_ATTEMPT_RETENTION_DAYS)

    Returns:
        Dict with the number of deleted rows
    """
    days = older_than_days or settings.WEBHOOK_ATTEMPT_RETENTION_DAYS
    cutoff = timezone.now() - timedelta(days=days)

    deleted, _ = (
        DeliveryAttempt.objects.filter(created_at__lt=cutoff)
        .exclude(finished_at__isnull=True)
        .delete()
    )

    logger.info(
        "Purged old delivery attempts",
        extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
    )
    return {"status": "completed", "deleted": deleted, "cutoff": cutoff.isoformat()}
