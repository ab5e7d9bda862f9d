"""
Tests for webhook signing and verification.
"""

import hashlib
import hmac

import pytest

from webhooks.exceptions import SignatureVerificationError
from webhooks.signing import (
    VerifyError,
    constant_time_equals,
    sign,
    sign_payload,
    verify,
    verify_payload,
)

BODY = b'{"type":"user.updated","data":{"id":"u_1"}}'
SECRET = "whsec_test"
NOW = 1_700_000_000


def reason_of(exc_info) -> VerifyError:
    return exc_info.value.reason


class TestSign:
    """Tests for sign / sign_payload."""

    def test_sign_is_hmac_of_timestamp_dot_payload(self):
        """Should sign the exact bytes "{timestamp}.{payload}"."""
        expected = hmac.new(SECRET.encode(), f"{NOW}.".encode() + BODY, hashlib.sha256).hexdigest()

        assert sign(BODY, SECRET, NOW) == expected

    def test_sign_returns_lowercase_hex_without_prefix(self):
        """Should return 64 lowercase hex characters."""
        signature = sign(BODY, SECRET, NOW)

        assert len(signature) == 64
        assert signature == signature.lower()
        assert not signature.startswith("sha256=")

    def test_sign_accepts_str_payload(self):
        """Str and bytes payloads with the same content sign identically."""
        assert sign(BODY.decode(), SECRET, NOW) == sign(BODY, SECRET, NOW)

    def test_sign_payload_has_prefix(self):
        """The simple variant should be "sha256=<hmac of body>"."""
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()

        assert sign_payload(BODY, SECRET) == f"sha256={expected}"

    def test_different_timestamps_give_different_signatures(self):
        """The timestamp is part of the signed message."""
        assert sign(BODY, SECRET, NOW) != sign(BODY, SECRET, NOW + 1)


class TestVerify:
    """Tests for verify."""

    def test_valid_signature(self):
        """Should accept a fresh, correctly signed payload."""
        verify(BODY, sign(BODY, SECRET, NOW), NOW, SECRET, now=NOW)

    def test_accepts_prefixed_signature(self):
        """Should accept "sha256=<hex>" as well as bare hex."""
        verify(BODY, "sha256=" + sign(BODY, SECRET, NOW), str(NOW), SECRET, now=NOW)

    def test_accepts_timestamp_at_tolerance_boundary(self):
        """A timestamp exactly 300 seconds old should still be accepted."""
        ts = NOW - 300
        verify(BODY, sign(BODY, SECRET, ts), ts, SECRET, now=NOW)

    @pytest.mark.parametrize("offset", [-301, 301])
    def test_rejects_timestamp_outside_window(self, offset):
        """Should reject timestamps more than 300 seconds away, past or future."""
        ts = NOW + offset

        with pytest.raises(SignatureVerificationError) as exc_info:
            verify(BODY, sign(BODY, SECRET, ts), ts, SECRET, now=NOW)

        assert reason_of(exc_info) == VerifyError.TIMESTAMP_EXPIRED

    @pytest.mark.parametrize("timestamp", [None, "", "yesterday", "17e8"])
    def test_rejects_missing_or_non_numeric_timestamp(self, timestamp):
        """Absent or unparseable timestamps count as expired."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify(BODY, "abc", timestamp, SECRET, now=NOW)

        assert reason_of(exc_info) == VerifyError.TIMESTAMP_EXPIRED

    def test_rejects_tampered_payload(self):
        """Changing one byte of the body should fail verification."""
        signature = sign(BODY, SECRET, NOW)

        with pytest.raises(SignatureVerificationError) as exc_info:
            verify(BODY.replace(b"u_1", b"u_2"), signature, NOW, SECRET, now=NOW)

        assert reason_of(exc_info) == VerifyError.INVALID_SIGNATURE

    def test_rejects_wrong_secret(self):
        """A signature made with another secret should fail."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify(BODY, sign(BODY, "other", NOW), NOW, SECRET, now=NOW)

        assert reason_of(exc_info) == VerifyError.INVALID_SIGNATURE

    def test_missing_secret_checked_first(self):
        """With no secret configured nothing else is evaluated."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify(BODY, None, None, "", now=NOW)

        assert reason_of(exc_info) == VerifyError.MISSING_SECRET

    def test_missing_signature_checked_before_timestamp(self):
        """A missing signature wins over a bad timestamp."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify(BODY, "", "not-a-number", SECRET, now=NOW)

        assert reason_of(exc_info) == VerifyError.MISSING_SIGNATURE

    def test_error_code_is_reason_value(self):
        """The exception's error_code should be the wire reason."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify(BODY, "deadbeef", NOW, SECRET, now=NOW)

        assert exc_info.value.error_code == "invalid_signature"

    def test_any_changed_signature_character_is_rejected(self):
        """Every one of the 64 hex positions is covered by the comparison."""
        signature = sign(BODY, SECRET, NOW)

        for position, char in enumerate(signature):
            replacement = "0" if char != "0" else "1"
            tampered = signature[:position] + replacement + signature[position + 1 :]

            with pytest.raises(SignatureVerificationError) as exc_info:
                verify(BODY, tampered, NOW, SECRET, now=NOW)

            assert reason_of(exc_info) == VerifyError.INVALID_SIGNATURE, position

    def test_any_flipped_signature_byte_is_rejected(self):
        raw = bytes.fromhex(sign(BODY, SECRET, NOW))

        for index in range(len(raw)):
            flipped = bytearray(raw)
            flipped[index] ^= 0x01

            with pytest.raises(SignatureVerificationError):
                verify(BODY, "sha256=" + flipped.hex(), NOW, SECRET, now=NOW)

    @pytest.mark.parametrize(
        "payload, secret, timestamp",
        [
            (BODY, SECRET, NOW),
            (b"", "s", 0),
            ('{"name":"café"}', "ünicode-secret", NOW),
            (b"\x00\xff binary", b"raw-bytes-secret", 9_999_999_999),
            (b"[]", "k" * 256, NOW - 300),
        ],
    )
    def test_signed_payload_verifies(self, payload, secret, timestamp):
        """Whatever is signed with a secret verifies with the same secret."""
        verify(payload, sign(payload, secret, timestamp), timestamp, secret, now=timestamp)
        verify(payload, "sha256=" + sign(payload, secret, timestamp), str(timestamp), secret, now=timestamp)

    def test_custom_tolerance(self):
        """Should honour a tighter tolerance."""
        with pytest.raises(SignatureVerificationError):
            verify(BODY, sign(BODY, SECRET, NOW - 61), NOW - 61, SECRET, tolerance=60, now=NOW)


class TestVerifyPayload:
    """Tests for the simple signature variant."""

    def test_valid(self):
        """Should accept the signature produced by sign_payload."""
        verify_payload(BODY, sign_payload(BODY, SECRET), SECRET)

    def test_accepts_bare_hex(self):
        """Should accept the digest without its prefix."""
        verify_payload(BODY, sign_payload(BODY, SECRET).removeprefix("sha256="), SECRET)

    def test_invalid(self):
        """Should reject a signature for a different body."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify_payload(BODY + b" ", sign_payload(BODY, SECRET), SECRET)

        assert reason_of(exc_info) == VerifyError.INVALID_SIGNATURE

    def test_missing_signature(self):
        """Should report a missing signature."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify_payload(BODY, None, SECRET)

        assert reason_of(exc_info) == VerifyError.MISSING_SIGNATURE


class TestConstantTimeEquals:
    """Tests for constant_time_equals."""

    def test_equal(self):
        assert constant_time_equals("abcdef", "ABCDEF") is True

    def test_different_length(self):
        assert constant_time_equals("abcdef", "abcde") is False

    def test_non_ascii_input(self):
        """Should not raise on non-hex garbage."""
        assert constant_time_equals("abcdef", "ábcdef") is False
