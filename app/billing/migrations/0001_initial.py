import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models

SUBSCRIPTION_STATE_CHOICES = [
    ("trial", "Trial"),
    ("active", "Active"),
    ("suspended", "Suspended"),
    ("cancelled", "Cancelled"),
    ("expired", "Expired"),
]

BILLING_CYCLE_CHOICES = [
    ("monthly", "Monthly"),
    ("quarterly", "Quarterly"),
    ("yearly", "Yearly"),
]

ACTIVITY_ACTION_CHOICES = [
    ("subscription_payment_success", "Subscription payment succeeded"),
    ("subscription_payment_failed", "Subscription payment failed"),
    ("subscription_suspended", "Subscription suspended"),
    ("subscription_expired", "Subscription expired"),
    ("subscription_extended_free", "Free subscription extended"),
]


def uuid_pk():
    return models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
        primary_key=True,
        serialize=False,
    )


def timestamps():
    return [
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
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Plan",
            fields=[
                ("id", uuid_pk()),
                *timestamps(),
                ("name", models.CharField(max_length=100)),
                (
                    "price",
                    models.PositiveBigIntegerField(
                        help_text="Amount per billing cycle in the smallest currency unit",
                    ),
                ),
                ("currency", models.CharField(default="krw", max_length=3)),
                (
                    "billing_cycle",
                    models.CharField(
                        choices=BILLING_CYCLE_CHOICES,
                        default="monthly",
                        max_length=16,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["price"],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", uuid_pk()),
                *timestamps(),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=SUBSCRIPTION_STATE_CHOICES,
                        db_index=True,
                        default="trial",
                        help_text="Current state of the subscription (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "cancel_at_period_end",
                    models.BooleanField(
                        default=False,
                        help_text="Expire instead of renewing when the current period ends",
                    ),
                ),
                ("current_period_start", models.DateTimeField()),
                ("current_period_end", models.DateTimeField()),
                ("next_billing_date", models.DateField(db_index=True)),
                (
                    "billing_key",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Gateway billing key for recurring charges",
                        max_length=255,
                    ),
                ),
                (
                    "customer_key",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Gateway customer key",
                        max_length=255,
                    ),
                ),
                (
                    "consecutive_failures",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Failed charges since the last success; updated with each ledger insert",
                    ),
                ),
                ("last_payment_at", models.DateTimeField(blank=True, null=True)),
                ("suspended_at", models.DateTimeField(blank=True, null=True)),
                ("expired_at", models.DateTimeField(blank=True, null=True)),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="billing.plan",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "next_billing_date"],
                        name="subscription_due_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SubscriptionPayment",
            fields=[
                ("id", uuid_pk()),
                ("amount", models.PositiveBigIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[("success", "Success"), ("failed", "Failed")],
                        max_length=16,
                    ),
                ),
                ("order_id", models.CharField(max_length=64, unique=True)),
                ("payment_key", models.CharField(blank=True, default="", max_length=255)),
                ("error_code", models.CharField(blank=True, default="", max_length=64)),
                ("error_message", models.TextField(blank=True, default="")),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["subscription", "-created_at"],
                        name="sub_payment_recent_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ActivityLog",
            fields=[
                ("id", uuid_pk()),
                (
                    "action",
                    models.CharField(
                        choices=ACTIVITY_ACTION_CHOICES,
                        db_index=True,
                        max_length=64,
                    ),
                ),
                ("entity_type", models.CharField(default="subscription", max_length=32)),
                ("entity_id", models.UUIDField()),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="billing_activity",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
