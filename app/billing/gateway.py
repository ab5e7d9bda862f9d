"""
Payment gateway client for recurring charges.

Charges a stored billing key through the gateway's billing API. Every call
goes through PaymentGatewayClient so that retries, timeouts and error
translation are handled in one place.

Retry rules:
    - 5xx, 429 and network errors are retried with the gateway RetryPolicy
      (exponential 1s, 2s, 4s by default)
    - Other 4xx answers end the call at once with the gateway's {code, message}
    - Network errors that outlast every retry become code NETWORK_ERROR

Declines are not exceptions: charge() always returns a ChargeResult so the
caller can write the ledger row. Only missing configuration raises.

The order id doubles as the Idempotency-Key header, so a charge replayed with
the same order id after a lost response is not applied twice.

Configuration (via settings):
    BILLING_GATEWAY_API_URL: Billing endpoint; the billing key is appended
    BILLING_GATEWAY_SECRET_KEY: Secret key, sent as HTTP Basic "<key>:"
    BILLING_GATEWAY_TIMEOUT_SECONDS: Per-request timeout (default: 30)
    BILLING_GATEWAY_RETRY_POLICY: RetryPolicy dict

Usage:
    from billing.gateway import PaymentGatewayClient

    result = PaymentGatewayClient().charge(subscription, order_id="sub_1a2b3c4d_1700000000000")
    if result.success:
        print(result.payment_key)
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import requests
from django.conf import settings
from django.utils.dateparse import parse_datetime

from billing.exceptions import GatewayConfigurationError
from core.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from billing.models import Subscription

logger = logging.getLogger(__name__)


NETWORK_ERROR = "NETWORK_ERROR"
UNKNOWN_ERROR = "UNKNOWN"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ChargeResult:
    """
    Result of one charge() call, after retries.

    Attributes:
        success: Gateway approved the charge
        payment_key: Gateway payment key (success only)
        approved_at: Gateway approval time (success only)
        error_code: Gateway error code, NETWORK_ERROR or UNKNOWN (failure only)
        error_message: Human-readable failure reason
        raw: Decoded gateway response body, stored as ledger metadata
        attempts: HTTP attempts made, including the first
    """

    success: bool
    payment_key: str = ""
    approved_at: datetime | None = None
    error_code: str = ""
    error_message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    attempts: int = 1

    @classmethod
    def failure(cls, code: str | None, message: str, **kwargs: Any) -> ChargeResult:
        return cls(
            success=False,
            error_code=code or UNKNOWN_ERROR,
            error_message=message or "Unknown error",
            **kwargs,
        )


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def _decode(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"body": (response.text or "")[:500]}
    return data if isinstance(data, dict) else {"body": data}


# =============================================================================
# Client
# =============================================================================


class PaymentGatewayClient:
    """
    Billing-key charge client.

    All collaborators are injectable; tests pass a mocked session and a
    no-op ``sleep``.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        policy: RetryPolicy | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.BILLING_GATEWAY_SECRET_KEY
        self.api_url = (api_url if api_url is not None else settings.BILLING_GATEWAY_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.BILLING_GATEWAY_TIMEOUT_SECONDS
        self.policy = policy or RetryPolicy.from_setting("BILLING_GATEWAY_RETRY_POLICY")
        self.session = session or requests.Session()
        self.sleep = sleep

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self.secret_key}:".encode()).decode("ascii")
        return f"Basic {token}"

    def _ensure_configured(self) -> None:
        missing = [
            name
            for name, value in (
                ("BILLING_GATEWAY_SECRET_KEY", self.secret_key),
                ("BILLING_GATEWAY_API_URL", self.api_url),
            )
            if not value
        ]
        if missing:
            raise GatewayConfigurationError(
                "Payment gateway is not configured",
                details={"missing": missing},
            )

    def build_body(self, subscription: Subscription, order_id: str) -> dict[str, Any]:
        return {
            "amount": subscription.plan.price,
            "customerKey": subscription.customer_key or str(subscription.user_id),
            "orderId": order_id,
            "orderName": f"{subscription.plan.name} subscription",
            "taxFreeAmount": 0,
        }

    def charge(self, subscription: Subscription, order_id: str) -> ChargeResult:
        """
        Charge one billing cycle of ``subscription``.

        Raises:
            GatewayConfigurationError: Secret key or API URL missing
        """
        self._ensure_configured()

        url = f"{self.api_url}/{subscription.billing_key}"
        body = self.build_body(subscription, order_id)
        headers = {
            "Authorization": self._auth_header(),
            "Content-Type": "application/json",
            "Idempotency-Key": order_id,
        }
        log_extra = {
            "subscription_id": str(subscription.id),
            "order_id": order_id,
            "amount": body["amount"],
        }

        attempt = 0
        while True:
            attempt += 1
            started = time.monotonic()
            try:
                response = self.session.post(url, json=body, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                logger.warning(
                    f"Gateway network error (attempt {attempt}/{self.policy.max_attempts}): {e}",
                    extra=log_extra,
                )
                if attempt < self.policy.max_attempts:
                    self.sleep(self.policy.delay_seconds(attempt - 1))
                    continue
                return ChargeResult.failure(NETWORK_ERROR, str(e) or e.__class__.__name__, attempts=attempt)

            duration_ms = int((time.monotonic() - started) * 1000)
            data = _decode(response)

            if response.ok:
                logger.info(
                    "Gateway charge approved",
                    extra={**log_extra, "attempt": attempt, "duration_ms": duration_ms},
                )
                approved_at = data.get("approvedAt")
                return ChargeResult(
                    success=True,
                    payment_key=data.get("paymentKey", ""),
                    approved_at=parse_datetime(approved_at) if approved_at else None,
                    raw=data,
                    attempts=attempt,
                )

            if is_retryable_status(response.status_code) and attempt < self.policy.max_attempts:
                logger.warning(
                    f"Gateway returned {response.status_code} "
                    f"(attempt {attempt}/{self.policy.max_attempts}), retrying",
                    extra={**log_extra, "http_status": response.status_code},
                )
                self.sleep(self.policy.delay_seconds(attempt - 1))
                continue

            logger.info(
                "Gateway charge declined",
                extra={
                    **log_extra,
                    "attempt": attempt,
                    "http_status": response.status_code,
                    "error_code": data.get("code"),
                },
            )
            return ChargeResult.failure(
                data.get("code"),
                data.get("message") or f"HTTP {response.status_code}",
                raw=data,
                attempts=attempt,
            )
