"""EZThrottle Python client.

Provides:
- a fluent `Step` builder compiled into nested job descriptions
- local-first (`FRUGAL`) and remote-first (`PERFORMANCE`) execution
- an async client for the submission proxy and webhook secret management
- HMAC verification of inbound webhook deliveries
"""

__version__ = "0.1.0"

from ezthrottle.client import EZThrottle
from ezthrottle.config import ClientSettings, WebhookSettings
from ezthrottle.errors import (
    ConfigurationError,
    EZThrottleError,
    RateLimitError,
    RejectionError,
    TransportError,
    WebhookSecretsNotConfigured,
    WebhookVerificationError,
)
from ezthrottle.forward import ForwardRequest, auto_forward, execute_with_forwarding
from ezthrottle.webhooks.verification import (
    try_verify_with_secrets,
    verify_webhook_signature,
    verify_webhook_signature_strict,
)
from ezthrottle.workflow import (
    IdempotentStrategy,
    JobDescription,
    JobResult,
    LocalExecutionResult,
    Step,
    StepType,
    WebhookConfig,
)

__all__ = [
    "__version__",
    "ClientSettings",
    "ConfigurationError",
    "EZThrottle",
    "EZThrottleError",
    "ForwardRequest",
    "IdempotentStrategy",
    "JobDescription",
    "JobResult",
    "LocalExecutionResult",
    "RateLimitError",
    "RejectionError",
    "Step",
    "StepType",
    "TransportError",
    "WebhookConfig",
    "WebhookSecretsNotConfigured",
    "WebhookSettings",
    "WebhookVerificationError",
    "auto_forward",
    "execute_with_forwarding",
    "try_verify_with_secrets",
    "verify_webhook_signature",
    "verify_webhook_signature_strict",
]
