"""FastAPI router for receiving signed job-result webhooks.

The endpoint verifies the signature over the raw body, parses the delivery
and hands it to the application handler.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ezthrottle.config import WebhookSettings
from ezthrottle.webhooks.verification import (
    DEFAULT_TOLERANCE_SECONDS,
    SIGNATURE_HEADER,
    try_verify_with_secrets,
)

logger = logging.getLogger(__name__)


class DeliveredResponse(BaseModel):
    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: str = ""


class WebhookDelivery(BaseModel):
    """Job result as posted by the remote execution service."""

    model_config = ConfigDict(extra="allow")

    job_id: str
    idempotent_key: str | None = None
    status: Literal["success", "failed"]
    response: DeliveredResponse | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


WebhookHandler = Callable[[WebhookDelivery], Awaitable[None] | None]


def create_webhook_router(
    *,
    primary_secret: str,
    handler: WebhookHandler,
    secondary_secret: str | None = None,
    path: str = "/webhook",
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> APIRouter:
    """Build a router with one POST endpoint that verifies and dispatches deliveries."""

    if not primary_secret:
        raise ValueError("primary_secret is required")

    router = APIRouter()

    @router.post(path)
    async def receive_webhook(request: Request) -> dict[str, str]:
        raw = await request.body()
        result = try_verify_with_secrets(
            raw,
            request.headers.get(SIGNATURE_HEADER),
            primary_secret,
            secondary_secret,
            tolerance,
        )
        if not result.verified:
            logger.warning("Rejected webhook delivery", extra={"reason": str(result)})
            raise HTTPException(status_code=401, detail=f"Invalid signature: {result}")

        try:
            delivery = WebhookDelivery.model_validate_json(raw)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors(include_url=False)) from e

        logger.info(
            "Webhook received",
            extra={
                "job_id": delivery.job_id,
                "status": delivery.status,
                "verified_with": result.reason.value,
            },
        )
        outcome = handler(delivery)
        if inspect.isawaitable(outcome):
            await outcome
        return {"status": "received", "job_id": delivery.job_id}

    return router


def create_webhook_router_from_settings(
    handler: WebhookHandler,
    *,
    settings: WebhookSettings | None = None,
    path: str = "/webhook",
) -> APIRouter:
    """Same as :func:`create_webhook_router`, with secrets read from the environment."""

    settings = settings or WebhookSettings()
    return create_webhook_router(
        primary_secret=settings.webhook_secret,
        secondary_secret=settings.secondary_or_none,
        handler=handler,
        path=path,
        tolerance=settings.tolerance_seconds,
    )
