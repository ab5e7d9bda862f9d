"""
Dead-letter sink for delivery chains that gave up.

Recording is idempotent per ``request_id``: a chain that is dead-lettered
twice (a re-run Celery task, a race between two workers) leaves one entry.
Entries are never retried automatically. ``replay`` re-submits the stored
payload as a fresh event with a new request id, and is triggered by an
operator from the admin.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from webhooks.models import DeadLetterEntry

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class DeadLetterSink:
    """Durable store for terminally failed deliveries."""

    def record(
        self,
        *,
        event_type: str,
        payload: dict[str, Any],
        target_url: str,
        error_message: str,
        retry_count: int,
        request_id: str,
        signed_with_default_secret: bool = True,
    ) -> DeadLetterEntry:
        """
        Persist a failed delivery once.

        Returns:
            The new entry, or the existing one for the same request_id
        """
        try:
            with transaction.atomic():
                entry, created = DeadLetterEntry.objects.get_or_create(
                    request_id=request_id,
                    defaults={
                        "event_type": event_type,
                        "payload": payload,
                        "target_url": target_url,
                        "error_message": error_message or "",
                        "retry_count": retry_count,
                        "signed_with_default_secret": signed_with_default_secret,
                    },
                )
        except IntegrityError:
            # Lost a race with a concurrent writer for the same chain
            entry, created = DeadLetterEntry.objects.get(request_id=request_id), False

        if created:
            logger.warning(
                "Webhook delivery dead-lettered",
                extra={
                    "dead_letter_id": str(entry.id),
                    "event_type": event_type,
                    "target_url": target_url,
                    "retry_count": retry_count,
                    "request_id": request_id,
                    "error": error_message,
                },
            )
        else:
            logger.info(
                "Dead letter already recorded",
                extra={"dead_letter_id": str(entry.id), "request_id": request_id},
            )
        return entry

    def replay(self, entry: DeadLetterEntry, secret: str | None = None) -> str:
        """
        Queue a fresh delivery of ``entry`` to its target.

        The entry itself is left untouched.

        Returns:
            The request id of the new delivery
        """
        from webhooks.tasks import deliver_event

        request_id = str(uuid.uuid4())
        deliver_event.delay(
            event_type=entry.event_type,
            payload=entry.payload,
            target_urls=[entry.target_url],
            request_id=request_id,
            secret=secret,
        )
        logger.info(
            "Dead letter replay queued",
            extra={
                "dead_letter_id": str(entry.id),
                "original_request_id": entry.request_id,
                "request_id": request_id,
            },
        )
        return request_id
