"""Fluent builder for one node of a workflow.

Usage::

    step = (
        Step(client)
        .url("https://api.example.com/charge")
        .method("POST")
        .type(StepType.FRUGAL)
        .fallback_on_error([429, 500])
        .fallback(Step().url("https://backup.example.com/charge").type(StepType.FRUGAL),
                  trigger_on_error=[500])
        .on_success(Step().url("https://hooks.example.com/charged"))
    )
    result = await step.execute()

Setters overwrite the named field and return the same step. Nothing is
validated until the step is compiled or executed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from ezthrottle.errors import ConfigurationError
from ezthrottle.workflow.compiler import compile_step
from ezthrottle.workflow.engine import StepOutcome, WorkflowEngine
from ezthrottle.workflow.idempotency import IdempotentStrategy
from ezthrottle.workflow.model import FallbackBranch, StepConfig, StepType
from ezthrottle.workflow.payload import (
    ExecutionMode,
    JobDescription,
    RegionPolicy,
    RetryPolicy,
    WebhookConfig,
)
from ezthrottle.workflow.triggers import trigger_from_options

if TYPE_CHECKING:
    from ezthrottle.workflow.engine import ExecutionClient
    from ezthrottle.workflow.tasks import DetachedTaskGroup


class Step:
    """A configurable HTTP call plus its fallback and continuation behaviour."""

    def __init__(self, client: ExecutionClient | None = None) -> None:
        self._client = client
        self.config = StepConfig()

    def __repr__(self) -> str:
        cfg = self.config
        return (
            f"Step({cfg.step_type.value} {cfg.method} {cfg.url!r}, "
            f"fallbacks={len(cfg.fallbacks)})"
        )

    # -- request ---------------------------------------------------------

    def type(self, step_type: StepType | str) -> Step:  # noqa: A003 (fluent API)
        self.config.step_type = StepType(step_type)
        return self

    def url(self, url: str) -> Step:
        self.config.url = url
        return self

    def method(self, method: str) -> Step:
        self.config.method = method.upper()
        return self

    def headers(self, headers: Mapping[str, str]) -> Step:
        self.config.headers = dict(headers)
        return self

    def body(self, body: str) -> Step:
        self.config.body = body
        return self

    def metadata(self, metadata: Mapping[str, Any]) -> Step:
        self.config.metadata = dict(metadata)
        return self

    # -- delivery and placement ------------------------------------------

    def webhooks(self, webhooks: Iterable[WebhookConfig | Mapping[str, Any]]) -> Step:
        self.config.webhooks = [
            w if isinstance(w, WebhookConfig) else WebhookConfig.model_validate(w) for w in webhooks
        ]
        return self

    def webhook_quorum(self, quorum: int) -> Step:
        self.config.webhook_quorum = quorum
        return self

    def regions(self, regions: Iterable[str]) -> Step:
        self.config.regions = list(regions)
        return self

    def region_policy(self, policy: RegionPolicy) -> Step:
        self.config.region_policy = policy
        return self

    def execution_mode(self, mode: ExecutionMode) -> Step:
        self.config.execution_mode = mode
        return self

    def retry_policy(self, policy: RetryPolicy | Mapping[str, Any]) -> Step:
        self.config.retry_policy = (
            policy if isinstance(policy, RetryPolicy) else RetryPolicy.model_validate(policy)
        )
        return self

    def retry_at(self, timestamp_ms: int) -> Step:
        """Do not run the job before this unix timestamp (milliseconds)."""

        self.config.retry_at = timestamp_ms
        return self

    # -- deduplication ---------------------------------------------------

    def idempotent_key(self, key: str) -> Step:
        self.config.idempotent_key = key
        return self

    def idempotent_strategy(self, strategy: IdempotentStrategy | str) -> Step:
        self.config.idempotent_strategy = IdempotentStrategy(strategy)
        return self

    # -- local execution (FRUGAL) ----------------------------------------

    def fallback_on_error(self, codes: Iterable[int]) -> Step:
        """Status codes that make a local failure eligible for fallbacks and forwarding.

        Default: 429, 500, 502, 503, 504.
        """

        self.config.forwardable_statuses = frozenset(codes)
        return self

    def timeout(self, timeout_ms: int) -> Step:
        """Bound the local attempt (milliseconds). Default: 30000."""

        self.config.local_timeout_ms = timeout_ms
        return self

    def local_timeout(self, timeout_ms: int) -> Step:
        return self.timeout(timeout_ms)

    # -- workflow --------------------------------------------------------

    def fallback(
        self,
        step: Step,
        *,
        trigger_on_error: Iterable[int] | None = None,
        trigger_on_timeout: int | None = None,
    ) -> Step:
        """Append a fallback branch; branches are tried in the order added."""

        trigger = trigger_from_options(trigger_on_error, trigger_on_timeout)
        self.config.fallbacks.append(FallbackBranch(step=step, trigger=trigger))
        return self

    def on_success(self, step: Step) -> Step:
        self.config.on_success_step = step
        return self

    def on_failure(self, step: Step, timeout_ms: int | None = None) -> Step:
        self.config.on_failure_step = step
        if timeout_ms:
            self.config.on_failure_timeout_ms = timeout_ms
        return self

    def on_failure_timeout(self, timeout_ms: int) -> Step:
        self.config.on_failure_timeout_ms = timeout_ms
        return self

    # -- consumption -----------------------------------------------------

    def build_job(self) -> JobDescription:
        """Compile this step and everything it owns."""

        return compile_step(self)

    async def execute(
        self,
        client: ExecutionClient | None = None,
        *,
        tasks: DetachedTaskGroup | None = None,
    ) -> StepOutcome:
        """Run the step: locally first for FRUGAL, remotely for PERFORMANCE."""

        resolved = client or self._client
        if resolved is None:
            raise ConfigurationError("Client is required. Pass client to execute() or Step(client)")
        return await WorkflowEngine(resolved, tasks=tasks).execute(self)
