"""
Webhook endpoints.

SendWebhookView (internal):
    POST /api/v1/webhooks/send/
    Signs an event and delivers it to every target URL with retries.
    Dead-lettered targets are reported in ``results`` and kept for replay.

ReceiveEventView (public, signature-protected):
    POST /api/v1/webhooks/receive/
    Verifies X-Webhook-Signature / X-Webhook-Timestamp, de-duplicates and
    stores the event. Verification failures return 401 with the reason code.

Security:
    - The send endpoint requires the internal service bearer token
    - The receive endpoint trusts nothing but the HMAC signature, whose
      timestamp must be within WEBHOOK_SIGNATURE_TOLERANCE_SECONDS
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.cache import cache as default_cache
from django.utils import timezone
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from webhooks.authentication import IsInternalService, ServiceTokenAuthentication
from webhooks.events import Event
from webhooks.exceptions import SignatureVerificationError, WebhookConfigurationError
from webhooks.models import ServiceEvent
from webhooks.scheduler import DeliveryDispatcher
from webhooks.serializers import InboundEventSerializer, SendWebhookSerializer
from webhooks.signing import verify

if TYPE_CHECKING:
    from typing import Any

    from core.protocols import CacheBackend

logger = logging.getLogger(__name__)


def error_response(
    code: str,
    message: str,
    request_id: str,
    http_status: int,
    details: dict[str, Any] | None = None,
) -> Response:
    """Error envelope used by the send endpoint."""
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": request_id,
        "timestamp": timezone.now().isoformat(),
    }
    if details:
        error["details"] = details
    response = Response({"error": error}, status=http_status)
    response["X-Request-Id"] = request_id
    return response


def _first_message(value: Any) -> str:
    if isinstance(value, dict):
        return _first_message(next(iter(value.values()), ""))
    if isinstance(value, list):
        return _first_message(value[0]) if value else ""
    return str(value)


def _first_error(errors: dict[str, Any]) -> str:
    for field_name, messages in errors.items():
        return f"{field_name}: {_first_message(messages)}"
    return "Invalid request body"


class SendWebhookView(APIView):
    """
    Deliver a signed event to one or more target URLs.

    Delivery runs synchronously: the response is returned once every chain
    has either succeeded or been dead-lettered.
    """

    authentication_classes = [ServiceTokenAuthentication]
    permission_classes = [IsInternalService]
    dispatcher_class = DeliveryDispatcher

    @extend_schema(
        request=SendWebhookSerializer,
        responses={
            200: OpenApiResponse(description="Delivery summary"),
            400: OpenApiResponse(description="Invalid request body"),
            401: OpenApiResponse(description="Missing or invalid service token"),
            500: OpenApiResponse(description="Webhook secret not configured"),
        },
        tags=["Webhooks"],
    )
    def post(self, request):
        request_id = str(uuid.uuid4())

        serializer = SendWebhookSerializer(data=request.data)
        if not serializer.is_valid():
            return error_response(
                "validation_error",
                _first_error(serializer.errors),
                request_id,
                status.HTTP_400_BAD_REQUEST,
                details=serializer.errors,
            )
        data = serializer.validated_data

        event = Event.create(data["event_type"], data["payload"])
        secret = data.get("webhook_secret") or settings.WEBHOOK_SECRET

        try:
            result = self.dispatcher_class().dispatch(
                event,
                data["target_urls"],
                secret,
                request_id=request_id,
            )
        except WebhookConfigurationError as e:
            logger.error(
                "Webhook send rejected: no signing secret",
                extra={"request_id": request_id},
            )
            return error_response(
                "configuration_error",
                e.message,
                request_id,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        response = Response(result.to_dict(), status=status.HTTP_200_OK)
        response["X-Request-Id"] = request_id
        return response


class ReceiveEventView(APIView):
    """
    Accept a signed event from a partner service.

    ``replay_cache`` is injected through ``as_view(replay_cache=...)``; it
    short-circuits repeats of the same event id inside the signature window
    before the database is touched. The unique ``ServiceEvent.event_id`` is
    the durable guard across processes.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]
    replay_cache: CacheBackend | None = None

    def get_replay_cache(self) -> CacheBackend:
        return self.replay_cache if self.replay_cache is not None else default_cache

    def get_secret(self, service_id: str) -> str:
        per_service = settings.WEBHOOK_SERVICE_SECRETS or {}
        return per_service.get(service_id) or settings.WEBHOOK_SECRET

    @extend_schema(
        request=InboundEventSerializer,
        responses={
            200: OpenApiResponse(description="Event accepted (or already received)"),
            400: OpenApiResponse(description="Malformed body or unknown event type"),
            401: OpenApiResponse(description="Signature verification failed"),
        },
        tags=["Webhooks"],
    )
    def post(self, request):
        body = request.body
        service_id = request.headers.get("X-Service-Id", "")
        tolerance = settings.WEBHOOK_SIGNATURE_TOLERANCE_SECONDS

        try:
            verify(
                body,
                request.headers.get("X-Webhook-Signature"),
                request.headers.get("X-Webhook-Timestamp"),
                self.get_secret(service_id),
                tolerance=tolerance,
            )
        except SignatureVerificationError as e:
            logger.warning(
                "Inbound webhook rejected",
                extra={"service_id": service_id, "reason": e.reason.value},
            )
            return Response({"error": e.reason.value}, status=status.HTTP_401_UNAUTHORIZED)

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return Response({"error": "invalid_payload"}, status=status.HTTP_400_BAD_REQUEST)

        serializer = InboundEventSerializer(data=payload)
        if not serializer.is_valid():
            return Response(
                {"error": "invalid_event", "details": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )
        data = serializer.validated_data
        event_id = data.get("id") or hashlib.sha256(body).hexdigest()

        cache_key = f"webhooks:inbound:{service_id}:{event_id}"
        replay_cache = self.get_replay_cache()
        if not replay_cache.add(cache_key, True, timeout=tolerance):
            return self._duplicate(event_id, service_id)

        try:
            _, created = ServiceEvent.objects.get_or_create(
                event_id=event_id,
                defaults={
                    "service_id": service_id,
                    "event_type": data["type"],
                    "payload": data.get("data") or {},
                    "occurred_at": data.get("timestamp"),
                },
            )
        except Exception:
            # The sender retries on 5xx; the retry must not look like a replay.
            replay_cache.delete(cache_key)
            raise
        if not created:
            return self._duplicate(event_id, service_id)

        logger.info(
            "Inbound webhook stored",
            extra={"service_id": service_id, "event_id": event_id, "event_type": data["type"]},
        )
        return Response(
            {"received": True, "event_id": event_id, "type": data["type"]},
            status=status.HTTP_200_OK,
        )

    def _duplicate(self, event_id: str, service_id: str) -> Response:
        logger.info(
            "Duplicate inbound webhook ignored",
            extra={"service_id": service_id, "event_id": event_id},
        )
        return Response(
            {"received": True, "event_id": event_id, "duplicate": True},
            status=status.HTTP_200_OK,
        )
