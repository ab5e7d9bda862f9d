"""
URL configuration for webhook endpoints.

Mounted at /api/v1/webhooks/:
    send/     - Internal signed delivery to target URLs (POST)
    receive/  - Inbound partner events (POST)
"""

from django.conf import settings
from django.urls import path

from core.cache import TTLCache
from webhooks.views import ReceiveEventView, SendWebhookView

app_name = "webhooks"

# Owned by this process; entries live as long as a signature stays valid
inbound_replay_cache = TTLCache(default_timeout=settings.WEBHOOK_SIGNATURE_TOLERANCE_SECONDS)

urlpatterns = [
    path("send/", SendWebhookView.as_view(), name="send"),
    path(
        "receive/",
        ReceiveEventView.as_view(replay_cache=inbound_replay_cache),
        name="receive",
    ),
]
