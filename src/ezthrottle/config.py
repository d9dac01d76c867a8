"""Settings for the client and the webhook receiver.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Two classes keep the requirements separate: submitting jobs needs an API key,
receiving webhooks only needs the shared secrets.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TRACKTAGS_URL = "https://tracktags.fly.dev"
DEFAULT_EZTHROTTLE_URL = "https://ezthrottle.fly.dev"


class ClientSettings(BaseSettings):
    """Settings for :class:`ezthrottle.client.EZThrottle`.

    Environment variables:
    - EZTHROTTLE_API_KEY
    - TRACKTAGS_URL                        (optional)
    - EZTHROTTLE_URL                       (optional)
    - EZTHROTTLE_REQUEST_TIMEOUT_SECONDS   (optional)
    - LOG_LEVEL                            (optional)

    Notes:
        Tests can point at a specific env file with
        `ClientSettings(_env_file=path_to_env)`.
    """

    api_key: str = Field(
        default="",
        validation_alias="EZTHROTTLE_API_KEY",
        description="API key used as the bearer token for the TrackTags proxy",
    )
    tracktags_url: str = Field(
        default=DEFAULT_TRACKTAGS_URL,
        validation_alias="TRACKTAGS_URL",
        description="Base URL of the authenticating proxy",
    )
    ezthrottle_url: str = Field(
        default=DEFAULT_EZTHROTTLE_URL,
        validation_alias="EZTHROTTLE_URL",
        description="Base URL of the remote execution service, as seen by the proxy",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="EZTHROTTLE_REQUEST_TIMEOUT_SECONDS",
        description="Timeout applied to proxy calls",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_api_key(self) -> ClientSettings:
        if not self.api_key.strip():
            raise ValueError("EZTHROTTLE_API_KEY is required")
        return self


class WebhookSettings(BaseSettings):
    """Settings for verifying inbound webhook deliveries.

    Unlike :class:`ClientSettings` this does NOT require an API key, so a
    webhook endpoint can run without submission credentials.
    """

    webhook_secret: str = Field(
        default="",
        validation_alias="EZTHROTTLE_WEBHOOK_SECRET",
        description="Primary shared secret used to sign deliveries",
    )
    webhook_secondary_secret: str = Field(
        default="",
        validation_alias="EZTHROTTLE_WEBHOOK_SECONDARY_SECRET",
        description="Previous secret, accepted while a rotation is in progress",
    )
    tolerance_seconds: int = Field(
        default=300,
        ge=0,
        validation_alias="EZTHROTTLE_WEBHOOK_TOLERANCE_SECONDS",
        description="Maximum accepted clock skew between signing and verification",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    @property
    def secondary_or_none(self) -> str | None:
        return self.webhook_secondary_secret or None
