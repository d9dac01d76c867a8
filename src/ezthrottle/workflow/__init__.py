"""Workflow builder, compiler and execution engine.

This package provides first-class types for:
- the wire job description (`payload`)
- deduplication key derivation (`idempotency`)
- fallback trigger conditions (`triggers`)
- the fluent step builder (`step`)
- compilation of a step tree into one nested job (`compiler`)
- local-first / remote-first execution (`engine`)
"""

from ezthrottle.workflow.engine import (
    ExecutionClient,
    ExecutionState,
    IllegalTransitionError,
    LocalExecutionResult,
    StepOutcome,
    WorkflowEngine,
)
from ezthrottle.workflow.idempotency import IdempotentStrategy
from ezthrottle.workflow.model import MAX_WORKFLOW_DEPTH, StepType
from ezthrottle.workflow.payload import (
    FallbackTrigger,
    JobDescription,
    JobResult,
    RetryPolicy,
    WebhookConfig,
)
from ezthrottle.workflow.step import Step
from ezthrottle.workflow.tasks import DetachedTaskGroup
from ezthrottle.workflow.triggers import Always, OnError, OnTimeout, TriggerCondition

__all__ = [
    "MAX_WORKFLOW_DEPTH",
    "Always",
    "DetachedTaskGroup",
    "ExecutionClient",
    "ExecutionState",
    "FallbackTrigger",
    "IdempotentStrategy",
    "IllegalTransitionError",
    "JobDescription",
    "JobResult",
    "LocalExecutionResult",
    "OnError",
    "OnTimeout",
    "RetryPolicy",
    "Step",
    "StepOutcome",
    "StepType",
    "TriggerCondition",
    "WebhookConfig",
    "WorkflowEngine",
]
