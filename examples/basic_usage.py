#!/usr/bin/env python3
"""Local-first workflow example.

This demonstrates using the client components directly:

* load settings from `.env`
* try a payment call locally, with a backup provider as fallback
* forward the whole workflow to EZThrottle only when both are throttled
* notify a webhook step after a local success

Target URLs are passed as arguments (not read from `.env`).
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Sequence

from ezthrottle import EZThrottle, RateLimitError, Step, StepType
from ezthrottle.config import ClientSettings
from ezthrottle.logging import configure_logging
from ezthrottle.workflow import DetachedTaskGroup, LocalExecutionResult


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a FRUGAL payment workflow.")
    parser.add_argument("--primary", required=True, help="Primary payment endpoint")
    parser.add_argument("--backup", required=True, help="Backup payment endpoint")
    parser.add_argument("--notify", default="", help="URL called after a local success (optional)")
    parser.add_argument("--order-id", required=True, help="Order id, used as the idempotent key")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, settings: ClientSettings) -> int:
    body = json.dumps({"order_id": args.order_id, "amount": 100})
    tasks = DetachedTaskGroup()

    async with EZThrottle.from_settings(settings) as client:
        step = (
            Step(client)
            .type(StepType.FRUGAL)
            .url(args.primary)
            .method("POST")
            .body(body)
            .idempotent_key(f"order_{args.order_id}")
            .fallback(
                Step().type(StepType.FRUGAL).url(args.backup).method("POST").body(body),
                trigger_on_error=[429, 503],
            )
        )
        if args.notify:
            step.on_success(Step().url(args.notify).method("POST").body(body))

        try:
            result = await step.execute(tasks=tasks)
        except RateLimitError as exc:
            print(f"Throttled; retry after {exc.retry_at}")
            return 1
        await tasks.drain()

    if isinstance(result, LocalExecutionResult):
        print(f"Executed locally: {result.status} ({result.status_code})")
        return 0 if result.succeeded else 1

    print(f"Forwarded to EZThrottle as job {result.job_id}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = ClientSettings()
    configure_logging(settings.log_level)

    return asyncio.run(_run(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
