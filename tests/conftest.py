"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest

from ezthrottle.errors import TransportError
from ezthrottle.workflow.payload import JobDescription, JobResult
from ezthrottle.workflow.tasks import DetachedTaskGroup

# A scripted outcome is a status code or an exception to raise.
Outcome = int | Exception


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str] | None
    body: str | None
    timeout: float | None


@dataclass
class FakeExecutionClient:
    """In-memory stand-in for the client: scripted local responses, recorded submissions."""

    outcomes: dict[str, list[Outcome]] = field(default_factory=dict)
    submit_error: Exception | None = None
    delays: dict[str, float] = field(default_factory=dict)
    requests: list[RecordedRequest] = field(default_factory=list)
    submitted: list[JobDescription] = field(default_factory=list)

    def script(self, url: str, *outcomes: Outcome) -> None:
        self.outcomes.setdefault(url, []).extend(outcomes)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        self.requests.append(RecordedRequest(method, url, headers, body, timeout))
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        queue = self.outcomes.get(url)
        outcome: Outcome = queue.pop(0) if queue else 200
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text=f"response from {url}")

    async def submit_job(self, job: JobDescription) -> JobResult:
        self.submitted.append(job)
        if self.submit_error is not None:
            raise self.submit_error
        return JobResult(job_id=f"job_{len(self.submitted)}", status="queued")

    @property
    def requested_urls(self) -> list[str]:
        return [r.url for r in self.requests]


@pytest.fixture
def fake_client() -> FakeExecutionClient:
    return FakeExecutionClient()


@pytest.fixture
def tasks() -> DetachedTaskGroup:
    """A private task group so detached continuations can be drained per test."""
    return DetachedTaskGroup()


@pytest.fixture
def connection_refused() -> Callable[[str], TransportError]:
    def make(url: str) -> TransportError:
        return TransportError(f"GET {url} failed: connection refused")

    return make


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run in an empty directory with no EZThrottle variables set."""
    for name in (
        "EZTHROTTLE_API_KEY",
        "TRACKTAGS_URL",
        "EZTHROTTLE_URL",
        "EZTHROTTLE_REQUEST_TIMEOUT_SECONDS",
        "LOG_LEVEL",
        "EZTHROTTLE_WEBHOOK_SECRET",
        "EZTHROTTLE_WEBHOOK_SECONDARY_SECRET",
        "EZTHROTTLE_WEBHOOK_TOLERANCE_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def proxy_response() -> Callable[..., dict[str, Any]]:
    """Build the proxy's answer wrapping the service's response."""

    def make(
        *, status_code: int = 200, body: Any = "", proxy_status: str = "allowed"
    ) -> dict[str, Any]:
        return {
            "status": proxy_status,
            "forwarded_response": {
                "status_code": status_code,
                "body": body if isinstance(body, str) else json.dumps(body),
            },
        }

    return make
