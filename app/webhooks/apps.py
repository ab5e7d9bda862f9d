"""
Webhooks app configuration.

This app delivers signed event notifications to third-party URLs with
bounded retries and a dead-letter fallback, and verifies inbound signed
webhooks from partner services.
"""

from django.apps import AppConfig


class WebhooksConfig(AppConfig):
    """Configuration for the webhooks application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "webhooks"
    verbose_name = "Webhooks"
