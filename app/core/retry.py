"""
Configurable retry/backoff policy.

One policy type serves both webhook delivery chains and the payment-gateway
client. The backoff shape is a setting rather than a hard-coded formula:

    exponential: delay = base_delay_ms * 2 ** retry_index    (1s, 2s, 4s, ...)
    linear:      delay = base_delay_ms * (retry_index + 1)   (1s, 2s, 3s, ...)

Usage:
    from core.retry import RetryPolicy

    policy = RetryPolicy.from_setting("WEBHOOK_RETRY_POLICY")
    for retry_index in range(policy.max_retries):
        time.sleep(policy.delay_seconds(retry_index))

Settings format:
    WEBHOOK_RETRY_POLICY = {"type": "exponential", "base_ms": 1000, "max_retries": 3}
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings

from core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from typing import Any


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry schedule.

    Attributes:
        backoff: Shape of the delay curve
        base_delay_ms: Delay before the first retry
        max_retries: Retries after the initial attempt (total = max_retries + 1)
        max_delay_ms: Optional cap on any single delay
        jitter: Fraction of the delay added at random (0 disables jitter)
    """

    backoff: BackoffType = BackoffType.EXPONENTIAL
    base_delay_ms: int = 1000
    max_retries: int = 3
    max_delay_ms: int | None = None
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0 or self.max_retries < 0:
            raise ConfigurationError(
                "Retry policy values must be non-negative",
                details={
                    "base_delay_ms": self.base_delay_ms,
                    "max_retries": self.max_retries,
                },
            )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_ms(self, retry_index: int) -> int:
        """
        Delay before retry number ``retry_index`` (0-based).

        Example:
            RetryPolicy().delay_ms(2)  # 4000
            RetryPolicy(backoff=BackoffType.LINEAR).delay_ms(2)  # 3000
        """
        if self.backoff is BackoffType.LINEAR:
            delay = self.base_delay_ms * (retry_index + 1)
        else:
            delay = self.base_delay_ms * (2**retry_index)
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        if self.jitter:
            delay += int(delay * random.uniform(0, self.jitter))
        return delay

    def delay_seconds(self, retry_index: int) -> float:
        return self.delay_ms(retry_index) / 1000

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> RetryPolicy:
        try:
            backoff = BackoffType(config.get("type", BackoffType.EXPONENTIAL.value))
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown backoff type: {config.get('type')!r}",
                details={"allowed": [b.value for b in BackoffType]},
            ) from e
        return cls(
            backoff=backoff,
            base_delay_ms=int(config.get("base_ms", 1000)),
            max_retries=int(config.get("max_retries", 3)),
            max_delay_ms=config.get("max_delay_ms"),
            jitter=float(config.get("jitter", 0.0)),
        )

    @classmethod
    def from_setting(cls, name: str) -> RetryPolicy:
        """Build a policy from a dict-valued Django setting (defaults if unset)."""
        return cls.from_dict(getattr(settings, name, None) or {})
