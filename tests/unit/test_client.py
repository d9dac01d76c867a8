"""Unit tests for the proxy client, using httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from ezthrottle.client import EZThrottle
from ezthrottle.config import ClientSettings
from ezthrottle.errors import (
    ConfigurationError,
    RateLimitError,
    RejectionError,
    TransportError,
    WebhookSecretsNotConfigured,
)
from ezthrottle.workflow.payload import JobDescription

PROXY = "https://proxy.test"
SERVICE = "https://svc.test"

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> EZThrottle:
    return EZThrottle(
        api_key="test-key",
        tracktags_url=PROXY,
        ezthrottle_url=SERVICE,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _envelope(request: httpx.Request) -> dict:
    return json.loads(request.content)


def _job() -> JobDescription:
    return JobDescription(url="https://api.example.com/charge", method="POST", body='{"amount":1}')


@pytest.mark.asyncio
async def test_submit_job_wraps_body_in_proxy_envelope(proxy_response) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json=proxy_response(body={"job_id": "job_1", "status": "queued", "extra": 1})
        )

    result = await _client(handler).submit_job(_job())

    assert result.job_id == "job_1"
    assert result.status == "queued"
    assert result.model_extra == {"extra": 1}

    request = seen[0]
    assert str(request.url) == f"{PROXY}/api/v1/proxy"
    assert request.headers["Authorization"] == "Bearer test-key"
    envelope = _envelope(request)
    assert envelope["scope"] == "customer"
    assert envelope["metric_name"] == ""
    assert envelope["target_url"] == f"{SERVICE}/api/v1/jobs"
    assert envelope["method"] == "POST"
    assert envelope["headers"] == {"Content-Type": "application/json"}
    assert json.loads(envelope["body"]) == {
        "url": "https://api.example.com/charge",
        "method": "POST",
        "body": '{"amount":1}',
    }


@pytest.mark.asyncio
async def test_rate_limit_with_retry_at_in_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "slow down", "retry_at": 1_700_000_123_000})

    with pytest.raises(RateLimitError) as excinfo:
        await _client(handler).submit_job(_job())

    assert excinfo.value.retry_at == 1_700_000_123_000
    assert "slow down" in str(excinfo.value)


@pytest.mark.asyncio
async def test_rate_limit_with_retry_after_header() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "30"}, text="busy")

    before = int(time.time() * 1000)
    with pytest.raises(RateLimitError) as excinfo:
        await _client(handler).submit_job(_job())
    after = int(time.time() * 1000)

    retry_at = excinfo.value.retry_at
    assert retry_at is not None
    assert before + 30_000 <= retry_at <= after + 30_000


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "payload", "message"),
    [
        (500, {"error": "boom"}, "failed at the proxy"),
        (200, {"status": "denied", "error": "quota exceeded"}, "Request denied: quota exceeded"),
        (
            200,
            {"status": "allowed", "forwarded_response": {"status_code": 400, "body": "bad url"}},
            "EZThrottle job creation failed: bad url",
        ),
    ],
)
async def test_rejections(status_code: int, payload: dict, message: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    with pytest.raises(RejectionError, match=message):
        await _client(handler).submit_job(_job())


@pytest.mark.asyncio
async def test_unreachable_proxy_is_a_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        await _client(handler).submit_job(_job())


@pytest.mark.asyncio
async def test_queue_request_builds_single_webhook_job(proxy_response) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(_envelope(request)["body"]))
        return httpx.Response(200, json=proxy_response(body={"job_id": "job_9"}))

    result = await _client(handler).queue_request(
        "https://api.example.com/x", webhook_url="https://app.example.com/hook", retry_at=5
    )

    assert result.job_id == "job_9"
    assert bodies[0] == {
        "url": "https://api.example.com/x",
        "method": "GET",
        "webhooks": [{"url": "https://app.example.com/hook"}],
        "retry_at": 5,
    }


@pytest.mark.asyncio
async def test_request_is_a_direct_call() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(503, text="unavailable")

    response = await _client(handler).request(
        "post", "https://api.example.com/x", headers={"X-Test": "1"}, body="payload"
    )

    assert response.status_code == 503
    assert str(seen[0].url) == "https://api.example.com/x"
    assert seen[0].method == "POST"
    assert seen[0].headers["X-Test"] == "1"
    assert seen[0].content == b"payload"


@pytest.mark.asyncio
async def test_request_timeout_is_a_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransportError):
        await _client(handler).request("GET", "https://api.example.com/slow", timeout=0.1)


@pytest.mark.asyncio
async def test_forward_or_fallback_runs_fallback_only_when_unreachable(proxy_response) -> None:
    def down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def async_fallback() -> str:
        return "async fallback"

    assert await _client(down).forward_or_fallback(lambda: "sync fallback", _job()) == "sync fallback"
    assert await _client(down).forward_or_fallback(async_fallback, _job()) == "async fallback"

    def limited(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"retry_at": 1})

    with pytest.raises(RateLimitError):
        await _client(limited).forward_or_fallback(lambda: "unused", _job())

    def up(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=proxy_response(body={"job_id": "job_2"}))

    result = await _client(up).forward_or_fallback(lambda: "unused", _job())
    assert result.job_id == "job_2"


@pytest.mark.asyncio
async def test_create_webhook_secret_validates_length() -> None:
    client = _client(lambda request: httpx.Response(500))

    with pytest.raises(ValueError):
        await client.create_webhook_secret("short")
    with pytest.raises(ValueError):
        await client.create_webhook_secret("a" * 16, "short")


@pytest.mark.asyncio
async def test_create_webhook_secret_posts_secrets(proxy_response) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(_envelope(request))
        return httpx.Response(200, json=proxy_response(body={"message": "stored"}))

    result = await _client(handler).create_webhook_secret("p" * 16, "s" * 16)

    assert result == {"message": "stored"}
    assert seen[0]["target_url"] == f"{SERVICE}/api/v1/webhook-secrets"
    assert seen[0]["method"] == "POST"
    assert json.loads(seen[0]["body"]) == {"primary_secret": "p" * 16, "secondary_secret": "s" * 16}


@pytest.mark.asyncio
async def test_get_webhook_secret_not_configured(proxy_response) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=proxy_response(status_code=404, body="not found"))

    with pytest.raises(WebhookSecretsNotConfigured):
        await _client(handler).get_webhook_secret()


@pytest.mark.asyncio
async def test_delete_webhook_secret(proxy_response) -> None:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(_envelope(request)["method"])
        return httpx.Response(200, json=proxy_response(body={"deleted": True}))

    assert await _client(handler).delete_webhook_secret() == {"deleted": True}
    assert methods == ["DELETE"]


def _rotation_handler(
    current: httpx.Response | None, created: list[dict], proxy_response
) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        envelope = _envelope(request)
        if envelope["method"] == "GET":
            if current is None:
                return httpx.Response(200, json=proxy_response(status_code=404, body=""))
            return current
        created.append(json.loads(envelope["body"]))
        return httpx.Response(200, json=proxy_response(body={"message": "stored"}))

    return handler


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("current_primary", "expected"),
    [
        ("old-secret-0123456789", {"primary_secret": "n" * 20, "secondary_secret": "old-secret-0123456789"}),
        ("old-****6789", {"primary_secret": "n" * 20}),
        (None, {"primary_secret": "n" * 20}),
    ],
)
async def test_rotate_webhook_secret(proxy_response, current_primary, expected) -> None:
    created: list[dict] = []
    current = (
        httpx.Response(200, json=proxy_response(body={"primary_secret": current_primary}))
        if current_primary is not None
        else None
    )

    await _client(_rotation_handler(current, created, proxy_response)).rotate_webhook_secret("n" * 20)

    assert created == [expected]


def test_api_key_is_required() -> None:
    with pytest.raises(ConfigurationError):
        EZThrottle(api_key="")


@pytest.mark.asyncio
async def test_from_settings_and_borrowed_http_client_stays_open(
    monkeypatch: pytest.MonkeyPatch, clean_env, proxy_response
) -> None:
    monkeypatch.setenv("EZTHROTTLE_API_KEY", "env-key")
    monkeypatch.setenv("TRACKTAGS_URL", PROXY + "/")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=proxy_response(body={"job_id": "job_3"}))

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with EZThrottle.from_settings(ClientSettings(), http_client=http) as client:
        await client.submit_job(_job())

    assert str(seen[0].url) == f"{PROXY}/api/v1/proxy"
    assert seen[0].headers["Authorization"] == "Bearer env-key"
    assert not http.is_closed
    await http.aclose()


@pytest.mark.asyncio
async def test_request_maps_undecodable_body_to_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip")

    async with _client(handler) as client:
        with pytest.raises(TransportError, match="failed"):
            await client.request("GET", "https://api.example.com/data")


@pytest.mark.asyncio
async def test_request_timeout_covers_a_slow_body() -> None:
    async def trickle() -> AsyncIterator[bytes]:
        while True:
            await asyncio.sleep(0.1)
            yield b"."

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=trickle())

    async with _client(handler) as client:
        started = time.monotonic()
        with pytest.raises(TransportError, match="timed out"):
            await client.request("GET", "https://api.example.com/slow", timeout=0.3)

    assert time.monotonic() - started < 2.0
