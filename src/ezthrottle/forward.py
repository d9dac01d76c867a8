"""Helpers for retrofitting existing call sites with forwarding.

Existing code keeps its own error handling; where it would give up, it
returns a :class:`ForwardRequest` instead and the wrapper executes it::

    @auto_forward(client)
    async def charge(order_id: str):
        try:
            response = await http.post(CHARGES_URL, ...)
        except httpx.TransportError:
            return ForwardRequest(url=CHARGES_URL, method="POST",
                                  idempotent_key=f"order_{order_id}")
        if response.status_code == 429:
            return ForwardRequest(url=CHARGES_URL, method="POST",
                                  idempotent_key=f"order_{order_id}")
        return response.json()
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ParamSpec, TypeVar

from ezthrottle.workflow.engine import ExecutionClient, StepOutcome
from ezthrottle.workflow.model import StepType
from ezthrottle.workflow.payload import WebhookConfig
from ezthrottle.workflow.step import Step

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(slots=True)
class ForwardRequest:
    """A call the wrapped function could not complete itself."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    idempotent_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    webhooks: list[WebhookConfig | dict[str, Any]] = field(default_factory=list)
    regions: list[str] = field(default_factory=list)
    fallback_on_error: list[int] = field(default_factory=list)
    step_type: StepType = StepType.FRUGAL

    def to_step(self, client: ExecutionClient | None = None) -> Step:
        step = Step(client).url(self.url).method(self.method).type(self.step_type)
        if self.headers:
            step.headers(self.headers)
        if self.body:
            step.body(self.body)
        if self.idempotent_key:
            step.idempotent_key(self.idempotent_key)
        if self.metadata:
            step.metadata(self.metadata)
        if self.webhooks:
            step.webhooks(self.webhooks)
        if self.regions:
            step.regions(self.regions)
        if self.fallback_on_error:
            step.fallback_on_error(self.fallback_on_error)
        return step


async def execute_with_forwarding(
    client: ExecutionClient, fn: Callable[[], Awaitable[T | ForwardRequest]]
) -> T | StepOutcome:
    """Await ``fn()``; if it returned a :class:`ForwardRequest`, execute it as a step."""

    result = await fn()
    if not isinstance(result, ForwardRequest):
        return result

    logger.info(
        "Forwarding request returned by wrapped call",
        extra={"url": result.url, "step_type": result.step_type.value},
    )
    return await result.to_step(client).execute()


def auto_forward(
    client: ExecutionClient,
) -> Callable[
    [Callable[P, Awaitable[T | ForwardRequest]]],
    Callable[P, Awaitable[T | StepOutcome]],
]:
    """Decorator form of :func:`execute_with_forwarding`."""

    def decorator(
        fn: Callable[P, Awaitable[T | ForwardRequest]],
    ) -> Callable[P, Awaitable[T | StepOutcome]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T | StepOutcome:
            return await execute_with_forwarding(client, lambda: fn(*args, **kwargs))

        return wrapper

    return decorator
