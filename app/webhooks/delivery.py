"""
Delivery attempt executor.

Performs exactly one signed HTTP POST of an event to one target URL and
classifies what happened. It has no local side effects: persisting the
attempt and deciding whether to retry belong to webhooks.scheduler.

Classification:
    2xx                          → success
    5xx, 429, timeout, network   → retryable_failure
    past the attempt deadline    → retryable_failure ("Request timeout")
    any other status             → permanent_failure

Headers sent:
    Content-Type: application/json
    User-Agent: Relay-Webhook/1.0 (WEBHOOK_USER_AGENT)
    X-Event-Type: <event type>
    X-Request-Id: <delivery chain id>
    X-Signature: sha256=<hmac of body>
    X-Webhook-Timestamp: <unix seconds>
    X-Webhook-Signature: <hmac of "{timestamp}.{body}">

Usage:
    from webhooks.delivery import DeliveryExecutor

    executor = DeliveryExecutor()
    result = executor.attempt(event, "https://example.com/hook", secret, request_id=chain_id)
    if result.outcome.is_retryable:
        ...
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import requests
from django.conf import settings
from django.utils import timezone

from webhooks.models import DeliveryStatus
from webhooks.signing import sign, sign_payload

if TYPE_CHECKING:
    from collections.abc import Callable

    from webhooks.events import Event

logger = logging.getLogger(__name__)

# Response bodies are truncated before being stored as attempt errors
MAX_ERROR_BODY_CHARS = 500


@dataclass(frozen=True)
class Outcome:
    """Classified result of one delivery attempt."""

    status: DeliveryStatus
    http_status: int | None = None
    error: str | None = None

    @classmethod
    def success(cls, http_status: int) -> Outcome:
        return cls(DeliveryStatus.SUCCESS, http_status=http_status)

    @classmethod
    def retryable(cls, reason: str, http_status: int | None = None) -> Outcome:
        return cls(DeliveryStatus.RETRYABLE_FAILURE, http_status=http_status, error=reason)

    @classmethod
    def permanent(cls, reason: str, http_status: int | None = None) -> Outcome:
        return cls(DeliveryStatus.PERMANENT_FAILURE, http_status=http_status, error=reason)

    @property
    def is_success(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS

    @property
    def is_retryable(self) -> bool:
        return self.status == DeliveryStatus.RETRYABLE_FAILURE


@dataclass(frozen=True)
class AttemptResult:
    """Outcome plus the facts the scheduler persists for the attempt."""

    outcome: Outcome
    signature: str
    started_at: datetime
    finished_at: datetime


def classify_response(status_code: int, body: str = "") -> Outcome:
    """
    Map an HTTP status code to an Outcome.

    Example:
        classify_response(204).is_success          # True
        classify_response(503).is_retryable        # True
        classify_response(410).status              # PERMANENT_FAILURE
    """
    if 200 <= status_code < 300:
        return Outcome.success(status_code)
    if status_code == 429:
        return Outcome.retryable("HTTP 429: Too many requests", status_code)
    if status_code >= 500:
        return Outcome.retryable(f"HTTP {status_code}: Server error", status_code)
    detail = body[:MAX_ERROR_BODY_CHARS]
    reason = f"HTTP {status_code}: {detail}" if detail else f"HTTP {status_code}"
    return Outcome.permanent(reason, status_code)


class DeliveryExecutor:
    """
    Sends one event to one URL.

    Args:
        session: requests.Session to use (a new one per executor by default)
        timeout: Total deadline per attempt in seconds (WEBHOOK_TIMEOUT_SECONDS)
        user_agent: User-Agent header value (WEBHOOK_USER_AGENT)
        clock: Unix time source used for the signature timestamp
        monotonic: Time source for the attempt deadline

    Deadline:
        requests applies ``timeout`` to each socket operation, so the response
        is streamed and the body is read against a monotonic deadline. 2xx,
        429 and 5xx bodies are never read. An attempt that passes the
        deadline is a retryable "Request timeout".

    Thread safety:
        requests.Session is not documented as thread-safe; the dispatcher
        builds one executor per worker thread.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.WEBHOOK_USER_AGENT
        self._clock = clock
        self._monotonic = monotonic

    def build_headers(
        self,
        event: Event,
        body: bytes,
        secret: str,
        request_id: str,
    ) -> dict[str, str]:
        timestamp = int(self._clock())
        return {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Event-Type": event.event_type.value,
            "X-Request-Id": request_id,
            "X-Signature": sign_payload(body, secret),
            "X-Webhook-Timestamp": str(timestamp),
            "X-Webhook-Signature": sign(body, secret, timestamp),
        }

    def attempt(
        self,
        event: Event,
        target_url: str,
        secret: str,
        *,
        request_id: str,
        timeout: float | None = None,
    ) -> AttemptResult:
        """
        POST ``event`` to ``target_url`` once.

        Never raises for HTTP or network failures; they are returned as
        retryable or permanent outcomes.
        """
        body = event.body()
        headers = self.build_headers(event, body, secret, request_id)
        started_at = timezone.now()
        limit = timeout if timeout is not None else self.timeout
        deadline = self._monotonic() + limit

        try:
            response = self.session.post(
                target_url,
                data=body,
                headers=headers,
                timeout=limit,
                allow_redirects=False,
                stream=True,
            )
            with response:
                outcome = self._classify(response, deadline)
        except requests.Timeout:
            outcome = Outcome.retryable("Request timeout")
        except requests.RequestException as e:
            outcome = Outcome.retryable(f"Network error: {e.__class__.__name__}: {e}")

        logger.debug(
            "Webhook attempt finished",
            extra={
                "event_id": str(event.id),
                "request_id": request_id,
                "target_url": target_url,
                "status": outcome.status,
                "http_status": outcome.http_status,
            },
        )
        return AttemptResult(
            outcome=outcome,
            signature=headers["X-Signature"],
            started_at=started_at,
            finished_at=timezone.now(),
        )

    def _classify(self, response: requests.Response, deadline: float) -> Outcome:
        if self._monotonic() >= deadline:
            return Outcome.retryable("Request timeout")
        outcome = classify_response(response.status_code)
        if outcome.status != DeliveryStatus.PERMANENT_FAILURE:
            return outcome

        # Only permanent failures keep the body, and only its first bytes
        body = bytearray()
        for chunk in response.iter_content(chunk_size=1):
            if self._monotonic() >= deadline:
                return Outcome.retryable("Request timeout")
            body += chunk
            if len(body) >= MAX_ERROR_BODY_CHARS:
                break
        text = bytes(body).decode(response.encoding or "utf-8", errors="replace")
        return classify_response(response.status_code, text)
