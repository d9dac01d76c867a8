"""Configuration data behind a :class:`~ezthrottle.workflow.step.Step`."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ezthrottle.workflow.idempotency import IdempotentStrategy
from ezthrottle.workflow.payload import ExecutionMode, RegionPolicy, RetryPolicy, WebhookConfig
from ezthrottle.workflow.triggers import TriggerCondition

if TYPE_CHECKING:
    from ezthrottle.workflow.step import Step

DEFAULT_FORWARDABLE_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})
DEFAULT_LOCAL_TIMEOUT_MS = 30_000
MAX_WORKFLOW_DEPTH = 32


class StepType(str, Enum):
    """Where a step runs."""

    # Attempt the call on this machine; forward only on a qualifying failure.
    FRUGAL = "frugal"
    # Always hand the call to the remote execution service.
    PERFORMANCE = "performance"


@dataclass(frozen=True, slots=True)
class FallbackBranch:
    """An alternative step and the condition that activates it."""

    step: Step
    trigger: TriggerCondition


@dataclass(slots=True)
class StepConfig:
    """Everything a step has been told; no cross-field validation happens here."""

    step_type: StepType = StepType.PERFORMANCE

    url: str | None = None
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    webhooks: list[WebhookConfig] = field(default_factory=list)
    webhook_quorum: int = 1

    regions: list[str] | None = None
    region_policy: RegionPolicy = "fallback"
    execution_mode: ExecutionMode = "race"

    retry_policy: RetryPolicy | None = None
    retry_at: int | None = None

    idempotent_key: str | None = None
    idempotent_strategy: IdempotentStrategy = IdempotentStrategy.HASH

    forwardable_statuses: frozenset[int] = DEFAULT_FORWARDABLE_STATUSES
    local_timeout_ms: int = DEFAULT_LOCAL_TIMEOUT_MS

    fallbacks: list[FallbackBranch] = field(default_factory=list)
    on_success_step: Step | None = None
    on_failure_step: Step | None = None
    on_failure_timeout_ms: int | None = None

    @property
    def local_timeout_seconds(self) -> float:
        return self.local_timeout_ms / 1000
