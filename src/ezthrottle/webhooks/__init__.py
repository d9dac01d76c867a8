"""Inbound webhook verification and a FastAPI receiver."""

from ezthrottle.webhooks.verification import (
    SIGNATURE_HEADER,
    VerificationReason,
    VerificationResult,
    build_signature_header,
    compute_signature,
    parse_signature_header,
    try_verify_with_secrets,
    verify_webhook_signature,
    verify_webhook_signature_strict,
)

__all__ = [
    "SIGNATURE_HEADER",
    "VerificationReason",
    "VerificationResult",
    "build_signature_header",
    "compute_signature",
    "parse_signature_header",
    "try_verify_with_secrets",
    "verify_webhook_signature",
    "verify_webhook_signature_strict",
]
