"""
HMAC-SHA256 signing and verification for webhook payloads.

Two signature forms are in use:

1. **Timestamped** (``sign`` / ``verify``)
   - HMAC over the exact bytes ``"{timestamp}.{payload}"``
   - Lowercase hex digest, no prefix
   - Rejected outside a 300 second window around the receiver's clock, in
     both directions, which bounds replay of captured requests

2. **Simple** (``sign_payload`` / ``verify_payload``)
   - HMAC over the payload alone, sent as ``sha256=<hex>``
   - The ``X-Signature`` header of outbound deliveries

Usage:
    from webhooks.signing import sign, verify

    timestamp = int(time.time())
    signature = sign(body, secret, timestamp)

    # receiver side
    verify(body, signature, timestamp, secret)  # raises SignatureVerificationError

Note:
    Digests are compared with ``hmac.compare_digest`` so execution time
    never depends on the position of the first differing byte.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from enum import Enum

from webhooks.exceptions import SignatureVerificationError

SIGNATURE_PREFIX = "sha256="
DEFAULT_TOLERANCE_SECONDS = 300


class VerifyError(str, Enum):
    """Reasons an inbound webhook is rejected, sent back as the error code."""

    MISSING_SIGNATURE = "missing_signature"
    MISSING_SECRET = "missing_secret"
    TIMESTAMP_EXPIRED = "timestamp_expired"
    INVALID_SIGNATURE = "invalid_signature"


def _to_bytes(value: bytes | str) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def _hmac_hex(secret: bytes | str, message: bytes) -> str:
    return hmac.new(_to_bytes(secret), message, hashlib.sha256).hexdigest()


def sign(payload: bytes | str, secret: bytes | str, timestamp: int) -> str:
    """
    Compute the timestamped signature of ``payload``.

    Args:
        payload: Request body, byte-exact as sent
        secret: Shared signing secret
        timestamp: Unix seconds, sent alongside the signature

    Returns:
        Lowercase hex HMAC-SHA256 digest of ``"{timestamp}.{payload}"``
    """
    message = f"{int(timestamp)}.".encode() + _to_bytes(payload)
    return _hmac_hex(secret, message)


def sign_payload(payload: bytes | str, secret: bytes | str) -> str:
    """Compute the simple ``sha256=<hex>`` signature of ``payload``."""
    return SIGNATURE_PREFIX + _hmac_hex(secret, _to_bytes(payload))


def strip_prefix(signature: str) -> str:
    """Accept both ``<hex>`` and ``sha256=<hex>``."""
    signature = signature.strip()
    if signature.lower().startswith(SIGNATURE_PREFIX):
        return signature[len(SIGNATURE_PREFIX):]
    return signature


def constant_time_equals(expected: str, received: str) -> bool:
    """Compare two hex digests without short-circuiting on the first mismatch."""
    return hmac.compare_digest(
        expected.lower().encode("ascii", "replace"),
        received.lower().encode("ascii", "replace"),
    )


def verify(
    payload: bytes | str,
    signature: str | None,
    timestamp: int | str | None,
    secret: bytes | str | None,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> None:
    """
    Verify a timestamped signature.

    Args:
        payload: Raw request body
        signature: Received signature, bare hex or ``sha256=<hex>``
        timestamp: Received Unix timestamp (int or numeric string)
        secret: Shared signing secret
        tolerance: Accepted clock skew in seconds, inclusive
        now: Current Unix time (defaults to ``time.time()``)

    Raises:
        SignatureVerificationError: With the matching VerifyError reason
    """
    if not secret:
        raise SignatureVerificationError(VerifyError.MISSING_SECRET)
    if not signature:
        raise SignatureVerificationError(VerifyError.MISSING_SIGNATURE)

    try:
        ts = int(str(timestamp).strip()) if timestamp is not None else None
    except ValueError:
        ts = None
    current = time.time() if now is None else now
    if ts is None or abs(current - ts) > tolerance:
        raise SignatureVerificationError(
            VerifyError.TIMESTAMP_EXPIRED,
            details={"tolerance_seconds": tolerance},
        )

    expected = sign(payload, secret, ts)
    if not constant_time_equals(expected, strip_prefix(signature)):
        raise SignatureVerificationError(VerifyError.INVALID_SIGNATURE)


def verify_payload(
    payload: bytes | str,
    signature: str | None,
    secret: bytes | str | None,
) -> None:
    """
    Verify a simple ``sha256=<hex>`` signature (no anti-replay window).

    Raises:
        SignatureVerificationError: missing_secret, missing_signature or
            invalid_signature
    """
    if not secret:
        raise SignatureVerificationError(VerifyError.MISSING_SECRET)
    if not signature:
        raise SignatureVerificationError(VerifyError.MISSING_SIGNATURE)

    expected = strip_prefix(sign_payload(payload, secret))
    if not constant_time_equals(expected, strip_prefix(signature)):
        raise SignatureVerificationError(VerifyError.INVALID_SIGNATURE)
