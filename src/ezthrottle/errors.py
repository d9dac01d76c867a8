"""Exception taxonomy for the EZThrottle client.

Callers branch on these types:

- :class:`ConfigurationError` fails before any network activity.
- :class:`TransportError` means the target or the submission service could not be reached.
- :class:`RateLimitError` means the submission path works but is throttled; never retried locally.
- :class:`RejectionError` means the submission service explicitly declined the job.
- :class:`WebhookVerificationError` means an inbound webhook signature did not verify.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ezthrottle.webhooks.verification import VerificationResult


class EZThrottleError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, retry_at: int | None = None) -> None:
        super().__init__(message)
        self.retry_at = retry_at


class ConfigurationError(EZThrottleError):
    """A required field or collaborator is missing, or the workflow tree is malformed."""


class TransportError(EZThrottleError):
    """Connection-level failure (refused, DNS, reset, timeout)."""


class RateLimitError(EZThrottleError):
    """The proxy throttled the submission.

    ``retry_at`` is a unix timestamp in milliseconds before which the caller
    should not resubmit.
    """

    def __init__(self, message: str, retry_at: int | None) -> None:
        super().__init__(message, retry_at)


class RejectionError(EZThrottleError):
    """The submission service (or its proxy) declined the request."""


class WebhookSecretsNotConfigured(RejectionError):
    """No webhook secrets exist for the account."""


class WebhookVerificationError(EZThrottleError):
    """Raised by strict webhook verification when the signature does not verify."""

    def __init__(self, message: str, result: VerificationResult) -> None:
        super().__init__(message)
        self.result = result
