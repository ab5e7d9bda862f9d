import uuid

import django.utils.timezone
from django.db import migrations, models

EVENT_TYPE_CHOICES = [
    ("subscription.created", "Subscription created"),
    ("subscription.updated", "Subscription updated"),
    ("subscription.cancelled", "Subscription cancelled"),
    ("subscription.expired", "Subscription expired"),
    ("subscription.suspended", "Subscription suspended"),
    ("payment.succeeded", "Payment succeeded"),
    ("payment.failed", "Payment failed"),
    ("usage.limit_reached", "Usage limit reached"),
    ("usage.warning", "Usage warning"),
    ("user.updated", "User updated"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="DeadLetterEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(choices=EVENT_TYPE_CHOICES, db_index=True, max_length=64),
                ),
                ("payload", models.JSONField(default=dict)),
                ("target_url", models.URLField(max_length=2048)),
                ("error_message", models.TextField(blank=True, default="")),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                (
                    "request_id",
                    models.CharField(
                        help_text="Delivery chain id; duplicates are ignored",
                        max_length=64,
                        unique=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                "verbose_name": "Dead Letter Entry",
                "verbose_name_plural": "Dead Letter Entries",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="DeliveryAttempt",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "event_id",
                    models.UUIDField(db_index=True, help_text="Id of the event being delivered"),
                ),
                (
                    "event_type",
                    models.CharField(
                        choices=EVENT_TYPE_CHOICES,
                        help_text="Event type sent in X-Event-Type",
                        max_length=64,
                    ),
                ),
                ("target_url", models.URLField(help_text="Receiver URL", max_length=2048)),
                (
                    "request_id",
                    models.CharField(
                        db_index=True,
                        help_text="Delivery chain id sent in X-Request-Id",
                        max_length=64,
                    ),
                ),
                (
                    "attempt_number",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="0 for the initial attempt, 1..n for retries",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("success", "Success"),
                            ("retryable_failure", "Retryable Failure"),
                            ("permanent_failure", "Permanent Failure"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Outcome of this attempt",
                        max_length=32,
                    ),
                ),
                (
                    "http_status",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        help_text="HTTP status code returned by the receiver",
                        null=True,
                    ),
                ),
                ("error", models.TextField(blank=True, default="", help_text="Failure reason")),
                (
                    "signature",
                    models.CharField(help_text="Value of the X-Signature header", max_length=128),
                ),
                (
                    "started_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the request was started",
                    ),
                ),
                (
                    "finished_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the outcome was known",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Delivery Attempt",
                "verbose_name_plural": "Delivery Attempts",
                "ordering": ["request_id", "attempt_number"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="webhook_attempt_status_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("request_id", "attempt_number"),
                        name="unique_attempt_per_chain",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ServiceEvent",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                ("event_id", models.CharField(max_length=128, unique=True)),
                (
                    "service_id",
                    models.CharField(blank=True, db_index=True, default="", max_length=64),
                ),
                (
                    "event_type",
                    models.CharField(choices=EVENT_TYPE_CHOICES, db_index=True, max_length=64),
                ),
                ("payload", models.JSONField(default=dict)),
                ("occurred_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Service Event",
                "verbose_name_plural": "Service Events",
                "ordering": ["-created_at"],
            },
        ),
    ]
