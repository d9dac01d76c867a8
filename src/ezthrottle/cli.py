"""Command line entrypoint.

Exit codes:
- 0: success (or a verified webhook)
- 1: the call failed, or a webhook did not verify
- 2: configuration or argument error
- 3: rate limited by the submission proxy
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ezthrottle import __version__
from ezthrottle.client import EZThrottle
from ezthrottle.config import ClientSettings, WebhookSettings
from ezthrottle.errors import ConfigurationError, EZThrottleError, RateLimitError
from ezthrottle.logging import configure_logging
from ezthrottle.webhooks.verification import try_verify_with_secrets
from ezthrottle.workflow.engine import LocalExecutionResult, StepOutcome
from ezthrottle.workflow.idempotency import IdempotentStrategy
from ezthrottle.workflow.model import StepType
from ezthrottle.workflow.step import Step
from ezthrottle.workflow.tasks import DetachedTaskGroup

logger = logging.getLogger(__name__)


def _parse_codes(value: str) -> list[int]:
    try:
        return [int(p) for p in value.split(",") if p.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected comma-separated status codes: {value!r}") from e


def _parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected 'Name: value', got {value!r}")
    return name.strip(), header_value.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ezthrottle",
        description="Submit rate-limit-aware jobs and manage EZThrottle webhooks",
    )
    parser.add_argument("--version", action="version", version=f"ezthrottle {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Execute one step and print the outcome as JSON")
    submit.add_argument("--url", required=True, help="Target URL")
    submit.add_argument("--method", default="GET", help="HTTP method")
    submit.add_argument(
        "--type",
        dest="step_type",
        choices=[t.value for t in StepType],
        default=StepType.PERFORMANCE.value,
        help="frugal: try locally first; performance: submit immediately",
    )
    submit.add_argument(
        "--header",
        dest="headers",
        action="append",
        type=_parse_header,
        default=[],
        help="Request header 'Name: value' (repeatable)",
    )
    submit.add_argument("--body", default=None, help="Request body")
    submit.add_argument(
        "--webhook",
        dest="webhooks",
        action="append",
        default=[],
        help="Webhook URL that receives the result (repeatable)",
    )
    submit.add_argument(
        "--region", dest="regions", action="append", default=[], help="Region (repeatable)"
    )
    submit.add_argument("--idempotent-key", default=None, help="Explicit deduplication key")
    submit.add_argument(
        "--idempotent-strategy",
        choices=[s.value for s in IdempotentStrategy],
        default=IdempotentStrategy.HASH.value,
        help="hash: server derives the key; unique: a fresh key per compile",
    )
    submit.add_argument(
        "--fallback-on-error",
        type=_parse_codes,
        default=None,
        help="Comma-separated status codes that trigger fallbacks/forwarding (frugal only)",
    )
    submit.add_argument(
        "--timeout-ms", type=int, default=None, help="Local attempt timeout in milliseconds"
    )
    submit.add_argument(
        "--fallback-url",
        dest="fallback_urls",
        action="append",
        default=[],
        help="Fallback URL tried in order, same method and type (repeatable)",
    )

    verify = subparsers.add_parser(
        "verify-webhook", help="Verify a webhook signature over a saved payload"
    )
    verify.add_argument(
        "--payload-file",
        required=True,
        help="File holding the raw request body ('-' for stdin)",
    )
    verify.add_argument(
        "--signature", required=True, help="Value of the X-EZThrottle-Signature header"
    )
    verify.add_argument(
        "--secret", default=None, help="Primary secret (default: EZTHROTTLE_WEBHOOK_SECRET)"
    )
    verify.add_argument(
        "--secondary-secret",
        default=None,
        help="Secondary secret (default: EZTHROTTLE_WEBHOOK_SECONDARY_SECRET)",
    )
    verify.add_argument(
        "--tolerance", type=int, default=None, help="Maximum signature age in seconds"
    )

    secrets = subparsers.add_parser("webhook-secret", help="Manage webhook signing secrets")
    secret_commands = secrets.add_subparsers(dest="secret_command", required=True)

    create = secret_commands.add_parser("create", help="Store primary (and secondary) secret")
    create.add_argument("--primary", required=True, help="Primary secret (16+ characters)")
    create.add_argument("--secondary", default=None, help="Secondary secret (16+ characters)")

    secret_commands.add_parser("get", help="Show the configured (masked) secrets")
    secret_commands.add_parser("delete", help="Delete all webhook secrets")

    rotate = secret_commands.add_parser(
        "rotate", help="Make a new secret primary, keeping the old one as secondary"
    )
    rotate.add_argument("--new-secret", required=True, help="New primary secret (16+ characters)")

    return parser


def _build_client(settings: ClientSettings) -> EZThrottle:
    return EZThrottle.from_settings(settings)


def _build_step(args: argparse.Namespace) -> Step:
    step_type = StepType(args.step_type)
    step = (
        Step()
        .url(args.url)
        .method(args.method)
        .type(step_type)
        .idempotent_strategy(args.idempotent_strategy)
    )
    if args.headers:
        step.headers(dict(args.headers))
    if args.body is not None:
        step.body(args.body)
    if args.webhooks:
        step.webhooks([{"url": url} for url in args.webhooks])
    if args.regions:
        step.regions(args.regions)
    if args.idempotent_key:
        step.idempotent_key(args.idempotent_key)
    if args.fallback_on_error:
        step.fallback_on_error(args.fallback_on_error)
    if args.timeout_ms is not None:
        step.timeout(args.timeout_ms)
    for url in args.fallback_urls:
        step.fallback(Step().url(url).method(args.method).type(step_type))
    return step


def _outcome_json(outcome: StepOutcome) -> dict[str, Any]:
    if isinstance(outcome, LocalExecutionResult):
        return outcome.to_json()
    return outcome.model_dump(mode="json", exclude_none=True)


async def _run_submit(client: EZThrottle, args: argparse.Namespace) -> int:
    tasks = DetachedTaskGroup()
    try:
        outcome = await _build_step(args).execute(client, tasks=tasks)
        await tasks.drain()
    finally:
        await client.aclose()

    print(json.dumps(_outcome_json(outcome), indent=2))
    if isinstance(outcome, LocalExecutionResult) and not outcome.succeeded:
        return 1
    return 0


async def _run_secret_command(client: EZThrottle, args: argparse.Namespace) -> int:
    try:
        if args.secret_command == "create":
            result = await client.create_webhook_secret(args.primary, args.secondary)
        elif args.secret_command == "get":
            result = await client.get_webhook_secret()
        elif args.secret_command == "delete":
            result = await client.delete_webhook_secret()
        else:
            result = await client.rotate_webhook_secret(args.new_secret)
    finally:
        await client.aclose()

    print(json.dumps(result, indent=2))
    return 0


def _verify_webhook(args: argparse.Namespace) -> int:
    try:
        settings = WebhookSettings()
    except ValidationError as e:
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2
    configure_logging(settings.log_level)

    primary = args.secret or settings.webhook_secret
    if not primary:
        print("No webhook secret: pass --secret or set EZTHROTTLE_WEBHOOK_SECRET", file=sys.stderr)
        return 2
    secondary = args.secondary_secret or settings.secondary_or_none
    tolerance = args.tolerance if args.tolerance is not None else settings.tolerance_seconds

    try:
        if args.payload_file == "-":
            payload = sys.stdin.buffer.read()
        else:
            payload = Path(args.payload_file).read_bytes()
    except OSError as e:
        print(f"Cannot read payload: {e}", file=sys.stderr)
        return 2

    result = try_verify_with_secrets(payload, args.signature, primary, secondary, tolerance)
    print(str(result))
    return 0 if result.verified else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "verify-webhook":
        return _verify_webhook(args)

    try:
        settings = ClientSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    client = _build_client(settings)

    try:
        if args.command == "submit":
            return asyncio.run(_run_submit(client, args))
        if args.command == "webhook-secret":
            return asyncio.run(_run_secret_command(client, args))

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except RateLimitError as e:
        logger.warning(str(e), extra={"retry_at": e.retry_at})
        print(f"{e} (retry_at={e.retry_at})", file=sys.stderr)
        return 3

    except (ConfigurationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except EZThrottleError as e:
        logger.error("Command failed", extra={"error_type": type(e).__name__, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
