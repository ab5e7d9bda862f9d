"""
Billing app configuration.

This app owns plans, subscriptions and the append-only payment ledger, and
runs the recurring-charge reconciliation loop.
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"
