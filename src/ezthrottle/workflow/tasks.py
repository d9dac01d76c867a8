"""Supervision for fire-and-forget continuations.

A success continuation launched after a local success is never awaited by the
call that triggered it. Tasks stay referenced here until they finish. Their failures
are logged and dropped; nothing propagates back to the original caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class DetachedTaskGroup:
    """Owns detached continuation tasks; logged-and-dropped on failure."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Schedule ``coro`` on the running loop without awaiting it."""

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Detached task scheduled", extra={"task": task.get_name()})
        return task

    async def drain(self) -> None:
        """Wait for every outstanding task, including ones spawned meanwhile."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Detached task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Detached task failed; result dropped",
                extra={"task": task.get_name(), "error": str(exc)},
                exc_info=exc,
            )


default_task_group = DetachedTaskGroup()
