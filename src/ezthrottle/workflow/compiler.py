"""Lower a step tree into a single nested :class:`JobDescription`.

Compilation is stateless apart from the deduplication key: with the
``UNIQUE`` strategy every compilation mints a fresh key.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ezthrottle.errors import ConfigurationError
from ezthrottle.workflow.idempotency import resolve_idempotent_key
from ezthrottle.workflow.model import MAX_WORKFLOW_DEPTH, FallbackBranch
from ezthrottle.workflow.payload import JobDescription

if TYPE_CHECKING:
    from ezthrottle.workflow.step import Step

logger = logging.getLogger(__name__)


def _children(step: Step) -> Iterator[Step]:
    cfg = step.config
    for branch in cfg.fallbacks:
        yield branch.step
    if cfg.on_success_step is not None:
        yield cfg.on_success_step
    if cfg.on_failure_step is not None:
        yield cfg.on_failure_step


def validate_tree(step: Step, *, max_depth: int = MAX_WORKFLOW_DEPTH) -> None:
    """Check that every node has a URL, the tree is acyclic and not too deep.

    Raises:
        ConfigurationError: on the first violation found (depth-first).
    """

    if max_depth < 1:
        raise ValueError("max_depth must be at least 1")
    _validate(step, depth=1, ancestors=frozenset(), max_depth=max_depth)


def _validate(step: Step, *, depth: int, ancestors: frozenset[int], max_depth: int) -> None:
    if id(step) in ancestors:
        raise ConfigurationError("Workflow contains a cycle: a step is nested inside itself")
    if depth > max_depth:
        raise ConfigurationError(f"Workflow is nested deeper than {max_depth} levels")
    if not step.config.url:
        raise ConfigurationError("URL is required")

    inner = ancestors | {id(step)}
    for child in _children(step):
        _validate(child, depth=depth + 1, ancestors=inner, max_depth=max_depth)


def compile_step(step: Step, *, max_depth: int = MAX_WORKFLOW_DEPTH) -> JobDescription:
    """Compile ``step`` and everything it owns into one job description.

    Raises:
        ConfigurationError: the tree is malformed or a field value is out of range.
    """

    validate_tree(step, max_depth=max_depth)
    try:
        job = _compile(step)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid step configuration: {e}") from e
    logger.debug(
        "Compiled workflow",
        extra={
            "url": job.url,
            "method": job.method,
            "fallbacks": len(job.iter_fallback_chain()),
            "has_idempotent_key": job.idempotent_key is not None,
        },
    )
    return job


def _compile(step: Step) -> JobDescription:
    cfg = step.config
    assert cfg.url is not None  # guaranteed by validate_tree

    return JobDescription(
        url=cfg.url,
        method=cfg.method,
        headers=dict(cfg.headers) or None,
        body=cfg.body or None,
        metadata=dict(cfg.metadata) or None,
        webhooks=list(cfg.webhooks) or None,
        webhook_quorum=cfg.webhook_quorum,
        regions=list(cfg.regions) if cfg.regions is not None else None,
        region_policy=cfg.region_policy,
        execution_mode=cfg.execution_mode,
        retry_policy=cfg.retry_policy,
        retry_at=cfg.retry_at,
        fallback_job=_compile_fallback_chain(cfg.fallbacks),
        on_success=_compile(cfg.on_success_step) if cfg.on_success_step is not None else None,
        on_failure=_compile(cfg.on_failure_step) if cfg.on_failure_step is not None else None,
        on_failure_timeout_ms=cfg.on_failure_timeout_ms,
        idempotent_key=resolve_idempotent_key(cfg.idempotent_key, cfg.idempotent_strategy),
    )


def _compile_fallback_chain(branches: Sequence[FallbackBranch]) -> JobDescription | None:
    """Link the branches so that branch i carries branches i+1..n as its fallback.

    Walking in reverse keeps the declared order as the order of preference.
    """

    chain: JobDescription | None = None
    for branch in reversed(branches):
        node = _compile(branch.step)
        chain = node.model_copy(
            update={
                "trigger": branch.trigger.to_wire(),
                "fallback_job": _append_chain(node.fallback_job, chain),
            }
        )
    return chain


def _append_chain(head: JobDescription | None, tail: JobDescription | None) -> JobDescription | None:
    # A branch's own fallbacks are tried before its later siblings.
    if head is None:
        return tail
    if tail is None:
        return head
    return head.model_copy(update={"fallback_job": _append_chain(head.fallback_job, tail)})
