"""Wire models for the job description submitted to the remote execution service.

Attribute names are snake_case; the compiled payload uses the camelCase aliases
(``fallbackJob``, ``idempotentKey``, ...) while the HTTP body posted to the jobs
endpoint uses the snake_case names. Both renderings omit unset fields and
fields equal to their documented default, and the remote service applies the
default for anything omitted.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RegionPolicy = Literal["fallback", "strict"]
ExecutionMode = Literal["race", "fanout"]
TriggerType = Literal["on_error", "on_timeout"]


class WebhookConfig(BaseModel):
    """A webhook target for the job result."""

    url: str = Field(min_length=1)
    regions: list[str] | None = None
    has_quorum_vote: bool = True


class RetryPolicy(BaseModel):
    """Remote retry/reroute policy. Executed by the service, never by this client."""

    max_retries: int | None = Field(default=None, ge=0)
    max_reroutes: int | None = Field(default=None, ge=0)
    retry_codes: list[int] | None = None
    reroute_codes: list[int] | None = None


class FallbackTrigger(BaseModel):
    """When the remote service should activate a fallback job.

    An empty trigger (no ``type``) means the fallback is always eligible.
    """

    type: TriggerType | None = None
    codes: list[int] | None = None
    timeout_ms: int | None = Field(default=None, gt=0)


class JobDescription(BaseModel):
    """The canonical, recursive job description."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    url: str = Field(min_length=1)
    method: str = Field(min_length=1)
    headers: dict[str, str] | None = None
    body: str | None = None
    metadata: dict[str, Any] | None = None

    webhooks: list[WebhookConfig] | None = None
    webhook_quorum: int = Field(default=1, ge=1)

    regions: list[str] | None = None
    region_policy: RegionPolicy = "fallback"
    execution_mode: ExecutionMode = "race"

    retry_policy: RetryPolicy | None = None
    retry_at: int | None = None

    fallback_job: JobDescription | None = None
    trigger: FallbackTrigger | None = None

    on_success: JobDescription | None = None
    on_failure: JobDescription | None = None
    on_failure_timeout_ms: int | None = None

    idempotent_key: str | None = None

    @field_validator("method")
    @classmethod
    def _uppercase_method(cls, value: str) -> str:
        return value.upper()

    def to_payload(self) -> dict[str, Any]:
        """Compiled payload with the camelCase field names."""

        return self._dump(by_alias=True)

    def to_api_body(self) -> dict[str, Any]:
        """Body for ``POST /api/v1/jobs`` with snake_case field names, at every depth."""

        return self._dump(by_alias=False)

    def _dump(self, *, by_alias: bool) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            by_alias=by_alias,
            exclude_none=True,
            exclude_defaults=True,
        )

    def iter_fallback_chain(self) -> list[JobDescription]:
        """Return the fallback nodes in the order the service will try them."""

        chain: list[JobDescription] = []
        node = self.fallback_job
        while node is not None:
            chain.append(node)
            node = node.fallback_job
        return chain


class JobResult(BaseModel):
    """Response of the jobs endpoint. Unknown fields are kept as extras."""

    model_config = ConfigDict(extra="allow")

    job_id: str | None = None
    status: str | None = None
    idempotent_key: str | None = None
