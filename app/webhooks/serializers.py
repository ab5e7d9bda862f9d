"""
Request serializers for the webhook endpoints.
"""

from __future__ import annotations

from urllib.parse import urlparse

from rest_framework import serializers

from webhooks.events import EventType


class SendWebhookSerializer(serializers.Serializer):
    """Body of POST /api/v1/webhooks/send/."""

    event_type = serializers.ChoiceField(choices=EventType.choices)
    payload = serializers.DictField()
    target_urls = serializers.ListField(
        child=serializers.URLField(max_length=2048),
        allow_empty=False,
        max_length=50,
    )
    webhook_secret = serializers.CharField(
        required=False,
        allow_blank=True,
        trim_whitespace=False,
        write_only=True,
    )

    def validate_target_urls(self, value: list[str]) -> list[str]:
        for url in value:
            if urlparse(url).scheme not in ("http", "https"):
                raise serializers.ValidationError(f"Invalid URL format: {url}")
        return value


class InboundEventSerializer(serializers.Serializer):
    """JSON body sent by partner services to POST /api/v1/webhooks/receive/."""

    id = serializers.CharField(required=False, max_length=128)
    type = serializers.ChoiceField(choices=EventType.choices)
    timestamp = serializers.DateTimeField(required=False)
    data = serializers.DictField(required=False, default=dict)
