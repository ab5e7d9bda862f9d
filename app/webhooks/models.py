"""
Models for outbound webhook delivery and inbound partner events.

DeliveryAttempt:
    One row per HTTP attempt of a delivery chain. Created ``pending`` right
    before the request is sent and updated with the outcome once it is known.

DeadLetterEntry:
    Terminal record of a delivery chain that failed permanently or ran out
    of retries. Written once per chain (unique ``request_id``), never
    updated; operators replay entries manually from the admin.

ServiceEvent:
    A verified inbound event from a partner service, stored once per
    ``event_id``.

Relationships:
    An Event (in-memory, see webhooks.events) fans out to one chain per
    target URL; all attempts of a chain share ``request_id``.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel
from webhooks.events import EventType


class DeliveryStatus(models.TextChoices):
    """
    Status of a single delivery attempt.

    State Flow:
        PENDING → SUCCESS
        PENDING → RETRYABLE_FAILURE (5xx, 429, network error, timeout, cancelled)
        PENDING → PERMANENT_FAILURE (any other non-2xx response)
    """

    PENDING = "pending", "Pending"
    SUCCESS = "success", "Success"
    RETRYABLE_FAILURE = "retryable_failure", "Retryable Failure"
    PERMANENT_FAILURE = "permanent_failure", "Permanent Failure"


class DeliveryAttempt(UUIDPrimaryKeyMixin, BaseModel):
    """
    A single HTTP POST of an event to one target URL.

    Fields:
        event_id: Id of the in-memory Event being delivered
        event_type: Event type sent in X-Event-Type
        target_url: Receiver URL
        request_id: Chain id sent in X-Request-Id (shared by all attempts)
        attempt_number: 0 for the initial try, 1..n for retries
        status: Outcome of this attempt
        http_status: Response status code, if a response arrived
        error: Failure reason for non-success outcomes
        signature: Value of the X-Signature header
        started_at / finished_at: Wall-clock bounds of the attempt
    """

    event_id = models.UUIDField(
        db_index=True,
        help_text="Id of the event being delivered",
    )
    event_type = models.CharField(
        max_length=64,
        choices=EventType.choices,
        help_text="Event type sent in X-Event-Type",
    )
    target_url = models.URLField(
        max_length=2048,
        help_text="Receiver URL",
    )
    request_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Delivery chain id sent in X-Request-Id",
    )
    attempt_number = models.PositiveSmallIntegerField(
        default=0,
        help_text="0 for the initial attempt, 1..n for retries",
    )
    status = models.CharField(
        max_length=32,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        db_index=True,
        help_text="Outcome of this attempt",
    )
    http_status = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        help_text="HTTP status code returned by the receiver",
    )
    error = models.TextField(
        blank=True,
        default="",
        help_text="Failure reason",
    )
    signature = models.CharField(
        max_length=128,
        help_text="Value of the X-Signature header",
    )
    started_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the request was started",
    )
    finished_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the outcome was known",
    )

    class Meta:
        ordering = ["request_id", "attempt_number"]
        verbose_name = "Delivery Attempt"
        verbose_name_plural = "Delivery Attempts"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_attempt_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["request_id", "attempt_number"],
                name="unique_attempt_per_chain",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"DeliveryAttempt({self.request_id}#{self.attempt_number}, "
            f"{self.status}, {self.target_url})"
        )


class DeadLetterEntry(UUIDPrimaryKeyMixin, AppendOnlyMixin, models.Model):
    """
    A delivery that will not be retried automatically.

    Fields:
        event_type: Event type of the failed delivery
        payload: Original event payload, replayed verbatim
        target_url: Receiver that rejected or never acknowledged the event
        error_message: Last error of the chain
        retry_count: Retries performed after the initial attempt
        request_id: Delivery chain id; unique, makes recording idempotent
        signed_with_default_secret: Chain was signed with WEBHOOK_SECRET. Per-request
            secrets are not stored, so such entries cannot be replayed as-is
        created_at: When the chain was dead-lettered
    """

    event_type = models.CharField(
        max_length=64,
        choices=EventType.choices,
        db_index=True,
    )
    payload = models.JSONField(default=dict)
    target_url = models.URLField(max_length=2048)
    error_message = models.TextField(blank=True, default="")
    retry_count = models.PositiveSmallIntegerField(default=0)
    request_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Delivery chain id; duplicates are ignored",
    )
    signed_with_default_secret = models.BooleanField(
        default=True,
        help_text="False when the chain was signed with a per-request secret; replay signs with WEBHOOK_SECRET",
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Dead Letter Entry"
        verbose_name_plural = "Dead Letter Entries"

    def __str__(self) -> str:
        return f"DeadLetterEntry({self.event_type} → {self.target_url}, retries={self.retry_count})"


class ServiceEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A verified inbound event from a partner service.

    Fields:
        event_id: Sender's event id; unique, used for de-duplication
        service_id: Value of X-Service-Id (empty when not sent)
        event_type: One of EventType
        payload: Event ``data`` object
        occurred_at: Sender's event timestamp, when provided
    """

    event_id = models.CharField(max_length=128, unique=True)
    service_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    event_type = models.CharField(max_length=64, choices=EventType.choices, db_index=True)
    payload = models.JSONField(default=dict)
    occurred_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Service Event"
        verbose_name_plural = "Service Events"

    def __str__(self) -> str:
        return f"ServiceEvent({self.service_id or '-'}:{self.event_type}, {self.event_id})"
