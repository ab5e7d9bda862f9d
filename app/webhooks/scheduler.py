"""
Retry scheduling for webhook delivery.

A **delivery chain** is the ordered sequence of attempts to deliver one
event to one target URL. Chains for different targets are independent and
run concurrently; attempts inside a chain are strictly sequential.

Chain state machine:
    Pending → Success                                   (done)
    Pending → RetryableFailure → wait(backoff) → Pending (attempt + 1)
    Pending → PermanentFailure                          (dead-letter)
    retries exhausted                                   (dead-letter)
    cancelled                                           (attempt recorded as
                                                         retryable_failure,
                                                         then dead-letter)

Usage:
    from webhooks.scheduler import DeliveryDispatcher

    dispatcher = DeliveryDispatcher()
    result = dispatcher.dispatch(event, ["https://a.example/hook", "https://b.example/hook"], secret)
    result.to_dict()
    # {"success": False, "sent_count": 1, "failed_count": 1, "results": [...]}
"""

from __future__ import annotations

import hmac
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.db import connections
from django.utils import timezone

from core.retry import RetryPolicy
from webhooks.dead_letter import DeadLetterSink
from webhooks.delivery import DeliveryExecutor, Outcome
from webhooks.exceptions import DeliveryCancelledError, WebhookConfigurationError
from webhooks.models import DeliveryAttempt, DeliveryStatus
from webhooks.signing import sign_payload

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime
    from typing import Any

    from webhooks.events import Event

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Delivery cancelled"

# Raised into a running chain when it must stop early
CANCELLATION_ERRORS = (DeliveryCancelledError, SoftTimeLimitExceeded)


def chain_request_id(request_id: str, target_url: str) -> str:
    """
    Stable id of the chain delivering ``request_id`` to ``target_url``.

    Sent as X-Request-Id and used as the dead-letter idempotency key, so it
    must not change between attempts or task re-runs.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{request_id}|{target_url}"))


@dataclass
class ChainResult:
    """Final state of one delivery chain."""

    target_url: str
    request_id: str
    success: bool
    retry_count: int
    status_code: int | None = None
    error: str | None = None
    cancelled: bool = False
    dead_letter_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "target_url": self.target_url,
            "success": self.success,
            "retry_count": self.retry_count,
        }
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DispatchResult:
    """Aggregate of every chain started for one event."""

    request_id: str
    results: list[ChainResult] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }


class AttemptRecorder:
    """Persists one DeliveryAttempt row per attempt."""

    def start(
        self,
        *,
        event: Event,
        target_url: str,
        request_id: str,
        attempt_number: int,
        signature: str,
    ) -> DeliveryAttempt:
        attempt, _ = DeliveryAttempt.objects.update_or_create(
            request_id=request_id,
            attempt_number=attempt_number,
            defaults={
                "event_id": event.id,
                "event_type": event.event_type.value,
                "target_url": target_url,
                "status": DeliveryStatus.PENDING,
                "http_status": None,
                "error": "",
                "signature": signature,
                "started_at": timezone.now(),
                "finished_at": None,
            },
        )
        return attempt

    def finish(
        self,
        attempt: DeliveryAttempt,
        outcome: Outcome,
        finished_at: datetime | None = None,
    ) -> DeliveryAttempt:
        attempt.status = outcome.status
        attempt.http_status = outcome.http_status
        attempt.error = outcome.error or ""
        attempt.finished_at = finished_at or timezone.now()
        attempt.save(update_fields=["status", "http_status", "error", "finished_at", "updated_at"])
        return attempt


class DeliveryChain:
    """
    Drives the attempts for one (event, target) pair.

    Args:
        event: Event to deliver
        target_url: Receiver URL
        secret: Signing secret
        request_id: Chain id (see chain_request_id)
        policy: Retry schedule
        executor: Performs single attempts
        recorder: Persists attempts
        sink: Dead-letter store
        cancel_event: Set to stop the chain at the next suspension point
        sleep: Backoff sleep used when no cancel_event is given
    """

    def __init__(
        self,
        event: Event,
        target_url: str,
        secret: str,
        *,
        request_id: str,
        policy: RetryPolicy,
        executor: DeliveryExecutor,
        recorder: AttemptRecorder,
        sink: DeadLetterSink,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.event = event
        self.target_url = target_url
        self.secret = secret
        self.request_id = request_id
        self.policy = policy
        self.executor = executor
        self.recorder = recorder
        self.sink = sink
        self.cancel_event = cancel_event
        self._sleep = sleep
        self.signature = sign_payload(event.body(), secret)

    def run(self) -> ChainResult:
        attempts_made = 0
        last_outcome: Outcome | None = None
        in_flight: DeliveryAttempt | None = None
        cancelled = False

        try:
            for attempt_number in range(self.policy.max_attempts):
                if attempt_number:
                    self._wait(self.policy.delay_seconds(attempt_number - 1))
                self._raise_if_cancelled()

                in_flight = self.recorder.start(
                    event=self.event,
                    target_url=self.target_url,
                    request_id=self.request_id,
                    attempt_number=attempt_number,
                    signature=self.signature,
                )
                attempts_made += 1
                result = self.executor.attempt(
                    self.event,
                    self.target_url,
                    self.secret,
                    request_id=self.request_id,
                )
                self.recorder.finish(in_flight, result.outcome, result.finished_at)
                in_flight = None
                last_outcome = result.outcome

                if last_outcome.is_success:
                    return ChainResult(
                        target_url=self.target_url,
                        request_id=self.request_id,
                        success=True,
                        retry_count=attempt_number,
                        status_code=last_outcome.http_status,
                    )
                if not last_outcome.is_retryable:
                    break

                if attempt_number < self.policy.max_retries:
                    logger.info(
                        "Webhook delivery failed, retry scheduled",
                        extra={
                            "request_id": self.request_id,
                            "target_url": self.target_url,
                            "attempt_number": attempt_number,
                            "delay_ms": self.policy.delay_ms(attempt_number),
                            "error": last_outcome.error,
                        },
                    )
        except CANCELLATION_ERRORS:
            cancelled = True
            if self.cancel_event is not None:
                self.cancel_event.set()
            last_outcome = Outcome.retryable(CANCELLED_ERROR)
            if in_flight is None:
                in_flight = self.recorder.start(
                    event=self.event,
                    target_url=self.target_url,
                    request_id=self.request_id,
                    attempt_number=attempts_made,
                    signature=self.signature,
                )
                attempts_made += 1
            self.recorder.finish(in_flight, last_outcome)
            logger.warning(
                "Webhook delivery cancelled",
                extra={"request_id": self.request_id, "target_url": self.target_url},
            )

        return self._dead_letter(last_outcome, attempts_made, cancelled)

    def _wait(self, seconds: float) -> None:
        if self.cancel_event is not None:
            if self.cancel_event.wait(seconds):
                raise DeliveryCancelledError(CANCELLED_ERROR)
            return
        self._sleep(seconds)

    def _raise_if_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise DeliveryCancelledError(CANCELLED_ERROR)

    def _dead_letter(
        self,
        last_outcome: Outcome | None,
        attempts_made: int,
        cancelled: bool,
    ) -> ChainResult:
        retry_count = max(attempts_made - 1, 0)
        error = (last_outcome.error if last_outcome else None) or "Delivery failed"
        entry = self.sink.record(
            event_type=self.event.event_type.value,
            payload=self.event.payload,
            target_url=self.target_url,
            error_message=error,
            retry_count=retry_count,
            request_id=self.request_id,
            signed_with_default_secret=hmac.compare_digest(
                self.secret.encode(), (settings.WEBHOOK_SECRET or "").encode()
            ),
        )
        return ChainResult(
            target_url=self.target_url,
            request_id=self.request_id,
            success=False,
            retry_count=retry_count,
            status_code=last_outcome.http_status if last_outcome else None,
            error=error,
            cancelled=cancelled,
            dead_letter_id=str(entry.id),
        )


class DeliveryDispatcher:
    """
    Fans an event out to its targets, one chain per target URL.

    Chains run on a bounded thread pool (WEBHOOK_MAX_WORKERS) so a slow or
    failing receiver never delays the others. With a single target or a
    pool size of 1 the chains run inline on the calling thread.

    Args:
        policy: Retry schedule (WEBHOOK_RETRY_POLICY by default)
        max_workers: Thread pool size
        executor_factory: Builds one DeliveryExecutor per chain
        recorder: Attempt persistence
        sink: Dead-letter store
        cancel_event: Shared cancellation flag; see cancel()
    """

    def __init__(
        self,
        *,
        policy: RetryPolicy | None = None,
        max_workers: int | None = None,
        executor_factory: Callable[[], DeliveryExecutor] = DeliveryExecutor,
        recorder: AttemptRecorder | None = None,
        sink: DeadLetterSink | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy.from_setting("WEBHOOK_RETRY_POLICY")
        self.max_workers = max_workers or settings.WEBHOOK_MAX_WORKERS
        self.executor_factory = executor_factory
        self.recorder = recorder or AttemptRecorder()
        self.sink = sink or DeadLetterSink()
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Stop all running chains at their next suspension point."""
        self.cancel_event.set()

    def dispatch(
        self,
        event: Event,
        target_urls: Iterable[str],
        secret: str | None,
        *,
        request_id: str | None = None,
    ) -> DispatchResult:
        """
        Deliver ``event`` to every target and wait for all chains.

        Args:
            event: Event to deliver
            target_urls: Receivers; duplicates are delivered once
            secret: Signing secret
            request_id: Caller's request id (generated when omitted)

        Raises:
            WebhookConfigurationError: If no signing secret is available
        """
        if not secret:
            raise WebhookConfigurationError(
                "Webhook secret is not configured",
                details={"setting": "WEBHOOK_SECRET"},
            )

        request_id = request_id or str(uuid.uuid4())
        targets = list(dict.fromkeys(target_urls))

        if len(targets) <= 1 or self.max_workers <= 1:
            results = [self._run_chain(event, url, secret, request_id) for url in targets]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(targets)),
                thread_name_prefix="webhook-delivery",
            ) as pool:
                futures = [
                    pool.submit(self._run_chain_in_worker, event, url, secret, request_id)
                    for url in targets
                ]
                try:
                    results = [future.result() for future in futures]
                except BaseException:
                    # Soft time limit or shutdown: stop the workers before the pool joins them
                    self.cancel()
                    raise

        dispatch_result = DispatchResult(request_id=request_id, results=results)
        logger.info(
            "Webhook dispatch complete",
            extra={
                "event_id": str(event.id),
                "event_type": event.event_type.value,
                "request_id": request_id,
                "sent_count": dispatch_result.sent_count,
                "failed_count": dispatch_result.failed_count,
            },
        )
        return dispatch_result

    def _run_chain(
        self,
        event: Event,
        target_url: str,
        secret: str,
        request_id: str,
    ) -> ChainResult:
        chain_id = chain_request_id(request_id, target_url)
        chain = DeliveryChain(
            event,
            target_url,
            secret,
            request_id=chain_id,
            policy=self.policy,
            executor=self.executor_factory(),
            recorder=self.recorder,
            sink=self.sink,
            cancel_event=self.cancel_event,
        )
        try:
            return chain.run()
        except Exception as e:
            logger.exception(
                "Webhook delivery chain crashed",
                extra={"request_id": chain_id, "target_url": target_url},
            )
            return ChainResult(
                target_url=target_url,
                request_id=chain_id,
                success=False,
                retry_count=0,
                error=f"Internal error: {e.__class__.__name__}",
            )

    def _run_chain_in_worker(
        self,
        event: Event,
        target_url: str,
        secret: str,
        request_id: str,
    ) -> ChainResult:
        try:
            return self._run_chain(event, target_url, secret, request_id)
        finally:
            # Worker threads open their own connections
            connections.close_all()
