"""HMAC verification of inbound webhook deliveries.

Deliveries carry an ``X-EZThrottle-Signature`` header of the form
``t=<unix-seconds>,v1=<hex HMAC-SHA256>``, where the MAC covers
``"<t>.<raw body>"``. Verification is stateless.

During a secret rotation both the new and the old secret are accepted
(:func:`try_verify_with_secrets`), so deliveries never fail in between.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from enum import Enum

from ezthrottle.errors import WebhookVerificationError

SIGNATURE_HEADER = "X-EZThrottle-Signature"
DEFAULT_TOLERANCE_SECONDS = 300


class VerificationReason(str, Enum):
    NO_SIGNATURE_HEADER = "no_signature_header"
    MISSING_V1_SIGNATURE = "missing_v1_signature"
    TIMESTAMP_EXPIRED = "timestamp_expired"
    SIGNATURE_MISMATCH = "signature_mismatch"
    VALID = "valid"
    VALID_PRIMARY = "valid_primary"
    VALID_SECONDARY = "valid_secondary"
    VERIFICATION_ERROR = "verification_error"


@dataclass(frozen=True, slots=True)
class VerificationResult:
    verified: bool
    reason: VerificationReason
    detail: str | None = None

    def __str__(self) -> str:
        if self.detail:
            return f"{self.reason.value} ({self.detail})"
        return self.reason.value


def parse_signature_header(header: str) -> dict[str, str]:
    """Split ``t=...,v1=...`` into its components; malformed parts are ignored."""

    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep and key and value:
            parts[key] = value
    return parts


def _as_text(payload: bytes | str) -> str:
    return payload.decode("utf-8") if isinstance(payload, bytes) else payload


def compute_signature(payload: bytes | str, secret: str, timestamp: int | str) -> str:
    """Hex HMAC-SHA256 of ``"<timestamp>.<payload>"`` under ``secret``."""

    signed = f"{timestamp}.{_as_text(payload)}".encode()
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def build_signature_header(
    payload: bytes | str, secret: str, timestamp: int | None = None
) -> str:
    """Produce a header as the service would; handy for tests and local tooling."""

    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(payload, secret, ts)}"


def verify_webhook_signature(
    payload: bytes | str,
    signature_header: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    *,
    now: float | None = None,
) -> VerificationResult:
    """Verify one delivery against one secret.

    Args:
        payload: Raw request body, exactly as received.
        signature_header: Value of the ``X-EZThrottle-Signature`` header.
        secret: Shared secret (primary or secondary).
        tolerance: Maximum age of the signature timestamp, in seconds.
        now: Current unix time; defaults to the wall clock.

    Returns:
        The verification outcome. Never raises.
    """

    if not signature_header:
        return VerificationResult(False, VerificationReason.NO_SIGNATURE_HEADER)

    parts = parse_signature_header(signature_header)
    signature = parts.get("v1", "")
    if not signature:
        return VerificationResult(False, VerificationReason.MISSING_V1_SIGNATURE)

    timestamp_raw = parts.get("t", "0")
    try:
        signed_at = int(timestamp_raw)
        expected = compute_signature(payload, secret, timestamp_raw)
    except (ValueError, UnicodeDecodeError) as e:
        return VerificationResult(False, VerificationReason.VERIFICATION_ERROR, str(e))

    current = int(time.time() if now is None else now)
    skew = abs(current - signed_at)
    if skew > tolerance:
        return VerificationResult(
            False,
            VerificationReason.TIMESTAMP_EXPIRED,
            f"diff={skew}s, tolerance={tolerance}s",
        )

    if hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return VerificationResult(True, VerificationReason.VALID)
    return VerificationResult(False, VerificationReason.SIGNATURE_MISMATCH)


def verify_webhook_signature_strict(
    payload: bytes | str,
    signature_header: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    *,
    now: float | None = None,
) -> None:
    """Like :func:`verify_webhook_signature` but raise on failure.

    Raises:
        WebhookVerificationError: carrying the failed :class:`VerificationResult`.
    """

    result = verify_webhook_signature(payload, signature_header, secret, tolerance, now=now)
    if not result.verified:
        raise WebhookVerificationError(
            f"Webhook signature verification failed: {result}", result
        )


def try_verify_with_secrets(
    payload: bytes | str,
    signature_header: str | None,
    primary_secret: str,
    secondary_secret: str | None = None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    *,
    now: float | None = None,
) -> VerificationResult:
    """Verify with the primary secret, then the secondary one if given.

    On failure the primary attempt's reason is reported, so an expired
    timestamp stays ``timestamp_expired`` whichever secret is correct.
    """

    primary = verify_webhook_signature(payload, signature_header, primary_secret, tolerance, now=now)
    if primary.verified:
        return VerificationResult(True, VerificationReason.VALID_PRIMARY)

    if secondary_secret:
        secondary = verify_webhook_signature(
            payload, signature_header, secondary_secret, tolerance, now=now
        )
        if secondary.verified:
            return VerificationResult(True, VerificationReason.VALID_SECONDARY)

    detail = "both secrets failed" if secondary_secret else primary.detail
    return VerificationResult(False, primary.reason, detail)
