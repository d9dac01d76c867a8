"""Async client for the EZThrottle execution service.

Every call to the service goes through the TrackTags proxy, which
authenticates the API key and forwards the wrapped request::

    POST {tracktags_url}/api/v1/proxy
    Authorization: Bearer <api key>
    {"scope": "customer", "metric_name": "", "target_url": ..., "method": ...,
     "headers": {...}, "body": "<json string>"}

The proxy answers ``{"status": "allowed", "forwarded_response": {...}}`` or
a denial. This module turns every failure mode into the exception taxonomy of
:mod:`ezthrottle.errors`.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any, TypeVar

import httpx

from ezthrottle.config import DEFAULT_EZTHROTTLE_URL, DEFAULT_TRACKTAGS_URL, ClientSettings
from ezthrottle.errors import (
    ConfigurationError,
    RateLimitError,
    RejectionError,
    TransportError,
    WebhookSecretsNotConfigured,
)
from ezthrottle.workflow.payload import JobDescription, JobResult, WebhookConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_SECRET_LENGTH = 16
USER_AGENT = "ezthrottle-python"


class EZThrottle:
    """Submits jobs, makes direct calls for local execution, manages webhook secrets."""

    def __init__(
        self,
        *,
        api_key: str,
        tracktags_url: str = DEFAULT_TRACKTAGS_URL,
        ezthrottle_url: str = DEFAULT_EZTHROTTLE_URL,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("api_key is required")

        self._api_key = api_key
        self._tracktags_url = tracktags_url.rstrip("/")
        self._ezthrottle_url = ezthrottle_url.rstrip("/")
        self._timeout = timeout_seconds
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout_seconds, headers={"User-Agent": USER_AGENT}
        )

    @classmethod
    def from_settings(
        cls, settings: ClientSettings, *, http_client: httpx.AsyncClient | None = None
    ) -> EZThrottle:
        return cls(
            api_key=settings.api_key,
            tracktags_url=settings.tracktags_url,
            ezthrottle_url=settings.ezthrottle_url,
            timeout_seconds=settings.request_timeout_seconds,
            http_client=http_client,
        )

    async def __aenter__(self) -> EZThrottle:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""

        if self._owns_http:
            await self._http.aclose()

    # -- proxy plumbing ----------------------------------------------------

    async def _proxy(
        self, *, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> httpx.Response:
        proxy_payload = {
            "scope": "customer",
            "metric_name": "",
            "target_url": f"{self._ezthrottle_url}{path}",
            "method": method,
            "headers": {"Content-Type": "application/json"} if payload is not None else {},
            "body": json.dumps(payload) if payload is not None else "",
        }
        try:
            return await self._http.post(
                f"{self._tracktags_url}/api/v1/proxy",
                json=proxy_payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except httpx.RequestError as e:
            # Covers connection failures and undecodable responses alike.
            raise TransportError(f"Could not reach the EZThrottle proxy: {e!r}") from e

    @staticmethod
    def _rate_limit_error(response: httpx.Response) -> RateLimitError:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        retry_at = data.get("retry_at")
        if not isinstance(retry_at, int):
            retry_at = None
        retry_after = response.headers.get("retry-after")
        if retry_at is None and retry_after and retry_after.strip().isdigit():
            retry_at = int(time.time() * 1000) + int(retry_after) * 1000

        return RateLimitError(f"Rate limited: {data.get('error') or 'Unknown error'}", retry_at)

    def _forwarded(self, response: httpx.Response, *, action: str) -> tuple[int, str]:
        """Unwrap an allowed proxy response into (status_code, body)."""

        if response.status_code == 429:
            raise self._rate_limit_error(response)
        if response.status_code != 200:
            raise RejectionError(f"{action} failed at the proxy: {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise RejectionError(f"{action} failed: proxy returned invalid JSON") from e

        if not isinstance(data, dict) or data.get("status") != "allowed":
            error = data.get("error") if isinstance(data, dict) else None
            raise RejectionError(f"Request denied: {error or 'Unknown error'}")

        forwarded = data.get("forwarded_response")
        if not isinstance(forwarded, dict):
            forwarded = {}
        status_code = forwarded.get("status_code")
        body = forwarded.get("body")
        return (
            status_code if isinstance(status_code, int) else 0,
            body if isinstance(body, str) else "",
        )

    @staticmethod
    def _json_body(body: str, *, action: str) -> dict[str, Any]:
        if not body.strip():
            return {}
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise RejectionError(f"{action} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise RejectionError(f"{action} returned an unexpected body")
        return data

    # -- jobs ----------------------------------------------------------------

    async def submit_job(self, job: JobDescription) -> JobResult:
        """Submit a compiled job.

        Raises:
            RateLimitError: the proxy throttled the call (``retry_at`` in ms when known).
            RejectionError: the proxy or the service declined the job.
            TransportError: the proxy could not be reached.
        """

        body = job.to_api_body()
        logger.info(
            "Submitting job",
            extra={
                "url": job.url,
                "method": job.method,
                "idempotent_key": job.idempotent_key,
            },
        )
        response = await self._proxy(method="POST", path="/api/v1/jobs", payload=body)
        status_code, text = self._forwarded(response, action="Job submission")
        if not 200 <= status_code < 300:
            raise RejectionError(f"EZThrottle job creation failed: {text or 'Unknown error'}")

        result = JobResult.model_validate(self._json_body(text, action="Job submission"))
        logger.info("Job accepted", extra={"job_id": result.job_id, "status": result.status})
        return result

    async def queue_request(
        self,
        url: str,
        *,
        webhook_url: str | None = None,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | None = None,
        metadata: dict[str, Any] | None = None,
        retry_at: int | None = None,
    ) -> JobResult:
        """Older single-webhook form of :meth:`submit_job`."""

        webhooks = [WebhookConfig(url=webhook_url, has_quorum_vote=True)] if webhook_url else None
        job = JobDescription(
            url=url,
            method=method,
            headers=headers or None,
            body=body or None,
            metadata=metadata or None,
            webhooks=webhooks,
            retry_at=retry_at,
        )
        return await self.submit_job(job)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Call ``url`` directly from this machine (used for local execution).

        ``timeout`` bounds the whole call, body included, not each phase.

        Raises:
            TransportError: connection failure, timeout or an unreadable
                response; no usable response exists.
        """

        limit = timeout if timeout is not None else self._timeout
        try:
            async with asyncio.timeout(limit):
                return await self._http.request(
                    method.upper(),
                    url,
                    headers=headers,
                    content=body,
                    timeout=limit,
                )
        except TimeoutError as e:
            raise TransportError(f"{method.upper()} {url} timed out after {limit}s") from e
        except httpx.RequestError as e:
            raise TransportError(f"{method.upper()} {url} failed: {e!r}") from e

    async def forward_or_fallback(
        self, fallback: Callable[[], Awaitable[T] | T], job: JobDescription
    ) -> JobResult | T:
        """Submit ``job``; if the service is unreachable, run ``fallback`` instead.

        Only a :class:`TransportError` triggers the fallback. Rate limiting and
        rejections mean the service is up, so they propagate.
        """

        try:
            return await self.submit_job(job)
        except TransportError as e:
            logger.warning(
                "EZThrottle unreachable; using caller fallback", extra={"error": str(e)}
            )
            outcome = fallback()
            if inspect.isawaitable(outcome):
                return await outcome
            return outcome

    # -- webhook secrets -----------------------------------------------------

    async def create_webhook_secret(
        self, primary_secret: str, secondary_secret: str | None = None
    ) -> dict[str, Any]:
        """Create or replace the HMAC secrets used to sign webhook deliveries."""

        if len(primary_secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"primary_secret must be at least {MIN_SECRET_LENGTH} characters")
        if secondary_secret is not None and len(secondary_secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"secondary_secret must be at least {MIN_SECRET_LENGTH} characters")

        payload: dict[str, Any] = {"primary_secret": primary_secret}
        if secondary_secret:
            payload["secondary_secret"] = secondary_secret

        response = await self._proxy(method="POST", path="/api/v1/webhook-secrets", payload=payload)
        _, text = self._forwarded(response, action="Create webhook secret")
        logger.info(
            "Webhook secret stored", extra={"with_secondary": secondary_secret is not None}
        )
        return self._json_body(text, action="Create webhook secret")

    async def get_webhook_secret(self) -> dict[str, Any]:
        """Return the configured secrets, masked by the service."""

        response = await self._proxy(method="GET", path="/api/v1/webhook-secrets")
        status_code, text = self._forwarded(response, action="Get webhook secret")
        if status_code == 404:
            raise WebhookSecretsNotConfigured(
                "No webhook secrets configured. Call create_webhook_secret() first."
            )
        if not 200 <= status_code < 300:
            raise RejectionError(f"Failed to get webhook secrets: {text}")
        return self._json_body(text, action="Get webhook secret")

    async def delete_webhook_secret(self) -> dict[str, Any]:
        response = await self._proxy(method="DELETE", path="/api/v1/webhook-secrets")
        _, text = self._forwarded(response, action="Delete webhook secret")
        logger.info("Webhook secrets deleted")
        return self._json_body(text, action="Delete webhook secret")

    async def rotate_webhook_secret(self, new_secret: str) -> dict[str, Any]:
        """Make ``new_secret`` primary and keep the old primary as secondary.

        The service masks secrets it returns; a masked value cannot be reused,
        in which case only the new secret is stored.
        """

        if len(new_secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"new_secret must be at least {MIN_SECRET_LENGTH} characters")

        try:
            current = await self.get_webhook_secret()
        except WebhookSecretsNotConfigured:
            return await self.create_webhook_secret(new_secret)

        old_primary = current.get("primary_secret")
        if not isinstance(old_primary, str) or not old_primary or "****" in old_primary:
            return await self.create_webhook_secret(new_secret)
        return await self.create_webhook_secret(new_secret, old_primary)
