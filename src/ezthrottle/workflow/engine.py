"""Execution strategies for a step tree.

``PERFORMANCE`` steps are compiled and submitted straight away. ``FRUGAL``
steps are attempted on this machine first; a qualifying failure walks the
fallback branches locally, and only when none of them succeeds is the whole
tree forwarded, once, to the remote execution service.

Each execution moves through an explicit state machine so that illegal
sequences (for example submitting twice) fail loudly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Protocol

import httpx

from ezthrottle.errors import ConfigurationError, EZThrottleError, TransportError
from ezthrottle.workflow.compiler import compile_step, validate_tree
from ezthrottle.workflow.model import MAX_WORKFLOW_DEPTH, StepType
from ezthrottle.workflow.payload import JobDescription, JobResult
from ezthrottle.workflow.tasks import DetachedTaskGroup, default_task_group

if TYPE_CHECKING:
    from ezthrottle.workflow.step import Step

logger = logging.getLogger(__name__)


class ExecutionClient(Protocol):
    """What the engine needs from its collaborator."""

    async def submit_job(self, job: JobDescription) -> JobResult: ...

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        timeout: float | None = None,
    ) -> httpx.Response: ...


class ExecutionState(str, Enum):
    CONFIGURED = "configured"
    LOCAL_ATTEMPT = "local_attempt"
    REMOTE_SUBMIT = "remote_submit"
    LOCAL_SUCCESS = "local_success"
    LOCAL_FAILURE = "local_failure"
    REMOTE_ACCEPTED = "remote_accepted"
    REMOTE_REJECTED = "remote_rejected"


ALLOWED_TRANSITIONS: dict[ExecutionState, set[ExecutionState]] = {
    ExecutionState.CONFIGURED: {ExecutionState.LOCAL_ATTEMPT, ExecutionState.REMOTE_SUBMIT},
    ExecutionState.LOCAL_ATTEMPT: {
        ExecutionState.LOCAL_SUCCESS,
        ExecutionState.LOCAL_FAILURE,
        ExecutionState.REMOTE_SUBMIT,
    },
    ExecutionState.REMOTE_SUBMIT: {ExecutionState.REMOTE_ACCEPTED, ExecutionState.REMOTE_REJECTED},
    ExecutionState.LOCAL_SUCCESS: set(),
    ExecutionState.LOCAL_FAILURE: set(),
    ExecutionState.REMOTE_ACCEPTED: set(),
    ExecutionState.REMOTE_REJECTED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: ExecutionState, to: ExecutionState) -> ExecutionState:
    if to not in ALLOWED_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


@dataclass(slots=True)
class _Execution:
    """State of one step's execution."""

    url: str
    state: ExecutionState = ExecutionState.CONFIGURED

    def advance(self, to: ExecutionState) -> None:
        previous = self.state
        self.state = transition(current=previous, to=to)
        logger.debug(
            "Execution state changed",
            extra={"url": self.url, "from": previous.value, "to": to.value},
        )


@dataclass(frozen=True, slots=True)
class LocalExecutionResult:
    """Outcome of a call made on this machine."""

    status: Literal["success", "failed"]
    executed_locally: bool
    status_code: int
    response: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @classmethod
    def failed(cls, status_code: int | None, error: str) -> LocalExecutionResult:
        # status_code 0 marks a failure that never produced an HTTP response.
        return cls(status="failed", executed_locally=True, status_code=status_code or 0, error=error)

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "status": self.status,
            "executed_locally": self.executed_locally,
            "status_code": self.status_code,
        }
        if self.response is not None:
            out["response"] = self.response
        if self.error is not None:
            out["error"] = self.error
        return out


StepOutcome = LocalExecutionResult | JobResult


class WorkflowEngine:
    """Runs a step tree against an :class:`ExecutionClient`."""

    def __init__(
        self,
        client: ExecutionClient,
        *,
        tasks: DetachedTaskGroup | None = None,
        max_depth: int = MAX_WORKFLOW_DEPTH,
    ) -> None:
        self._client = client
        self._tasks = tasks if tasks is not None else default_task_group
        self._max_depth = max_depth

    async def execute(self, step: Step) -> StepOutcome:
        """Execute ``step`` according to its type.

        Raises:
            ConfigurationError: before any I/O, if the tree is incomplete or malformed.
            RateLimitError: the submission was throttled.
            RejectionError: the submission was declined.
            TransportError: a ``PERFORMANCE`` submission could not reach the service.
        """

        validate_tree(step, max_depth=self._max_depth)
        execution = _Execution(url=_url_of(step))

        if step.config.step_type is StepType.PERFORMANCE:
            return await self._submit(step, execution)
        return await self._execute_frugal(step, execution, forward=True)

    async def _execute_frugal(
        self, step: Step, execution: _Execution, *, forward: bool
    ) -> LocalExecutionResult | JobResult:
        cfg = step.config
        execution.advance(ExecutionState.LOCAL_ATTEMPT)

        status_code: int | None
        try:
            # The step timeout caps the whole attempt, body included.
            async with asyncio.timeout(cfg.local_timeout_seconds):
                response = await self._client.request(
                    cfg.method,
                    execution.url,
                    headers=dict(cfg.headers) or None,
                    body=cfg.body,
                    timeout=cfg.local_timeout_seconds,
                )
        except TimeoutError:
            logger.warning(
                "Local attempt timed out",
                extra={"url": execution.url, "timeout_ms": cfg.local_timeout_ms},
            )
            status_code = None
        except TransportError as exc:
            logger.warning(
                "Local attempt failed before a response",
                extra={"url": execution.url, "error": str(exc)},
            )
            status_code = None
        else:
            status_code = response.status_code
            if 200 <= status_code < 300:
                execution.advance(ExecutionState.LOCAL_SUCCESS)
                self._schedule_on_success(step)
                logger.info(
                    "Local attempt succeeded",
                    extra={"url": execution.url, "status_code": status_code},
                )
                return LocalExecutionResult(
                    status="success",
                    executed_locally=True,
                    status_code=status_code,
                    response=response.text,
                )
            if status_code not in cfg.forwardable_statuses:
                execution.advance(ExecutionState.LOCAL_FAILURE)
                logger.info(
                    "Local attempt failed with a non-forwardable status",
                    extra={"url": execution.url, "status_code": status_code},
                )
                return LocalExecutionResult.failed(status_code, f"Request failed: {status_code}")

        fallback_result = await self._try_local_fallbacks(step, status_code)
        if fallback_result is not None:
            execution.advance(ExecutionState.LOCAL_SUCCESS)
            return fallback_result

        if not forward:
            execution.advance(ExecutionState.LOCAL_FAILURE)
            return LocalExecutionResult.failed(
                status_code,
                f"Request failed: {status_code}" if status_code else "Request failed: no response",
            )

        return await self._forward(step, execution, status_code)

    async def _try_local_fallbacks(
        self, step: Step, status_code: int | None
    ) -> LocalExecutionResult | None:
        """Try eligible branches in declared order; the first success wins.

        Branches run in local-only mode: if one exhausts its own options it
        reports failure instead of submitting, because the parent forwards the
        full chain (this branch included) exactly once.
        """

        for index, branch in enumerate(step.config.fallbacks):
            branch_url = _url_of(branch.step)
            if not branch.trigger.matches(status_code):
                logger.debug(
                    "Fallback not eligible",
                    extra={"index": index, "url": branch_url, "status_code": status_code},
                )
                continue
            if branch.step.config.step_type is not StepType.FRUGAL:
                logger.info(
                    "Skipping PERFORMANCE fallback during local execution",
                    extra={"index": index, "url": branch_url},
                )
                continue

            logger.info("Trying fallback locally", extra={"index": index, "url": branch_url})
            result = await self._execute_frugal(
                branch.step, _Execution(url=branch_url), forward=False
            )
            if isinstance(result, LocalExecutionResult) and result.succeeded:
                return result

        return None

    async def _forward(
        self, step: Step, execution: _Execution, status_code: int | None
    ) -> LocalExecutionResult | JobResult:
        try:
            return await self._submit(step, execution)
        except TransportError as exc:
            # Neither the target nor the service is reachable: report it, don't raise.
            logger.error(
                "Forwarding failed; submission service unreachable",
                extra={"url": execution.url, "status_code": status_code, "error": str(exc)},
            )
            return LocalExecutionResult.failed(
                status_code, f"Forwarding failed, submission service unreachable: {exc}"
            )

    async def _submit(self, step: Step, execution: _Execution) -> JobResult:
        execution.advance(ExecutionState.REMOTE_SUBMIT)
        job = compile_step(step, max_depth=self._max_depth)
        try:
            result = await self._client.submit_job(job)
        except EZThrottleError as exc:
            execution.advance(ExecutionState.REMOTE_REJECTED)
            logger.warning(
                "Job submission failed",
                extra={"url": execution.url, "error_type": type(exc).__name__, "error": str(exc)},
            )
            raise
        execution.advance(ExecutionState.REMOTE_ACCEPTED)
        logger.info(
            "Job submitted", extra={"url": execution.url, "job_id": result.job_id, "status": result.status}
        )
        return result

    def _schedule_on_success(self, step: Step) -> None:
        child = step.config.on_success_step
        if child is None:
            return
        self._tasks.spawn(self._run_continuation(child), name=f"on_success:{_url_of(child)}")

    async def _run_continuation(self, child: Step) -> Any:
        result = await self.execute(child)
        logger.info(
            "Success continuation finished",
            extra={"url": _url_of(child), "result_type": type(result).__name__},
        )
        return result


def _url_of(step: Step) -> str:
    url = step.config.url
    if not url:
        raise ConfigurationError("URL is required")
    return url
