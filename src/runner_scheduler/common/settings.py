"""Application configuration for the runner scheduler service."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class SchedulerSettings(BaseSettings):
    """Runtime settings for the webhook scheduler.

    Built once at startup and handed to every component; business logic never
    reads the environment directly.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    port: int = env_field(8000, "PORT")
    koyeb_token: SecretStr = env_field(..., "KOYEB_TOKEN")
    koyeb_api_url: str = env_field("https://app.koyeb.com", "KOYEB_API_URL")
    github_token: SecretStr = env_field(SecretStr(""), "GITHUB_TOKEN")
    api_secret: Optional[SecretStr] = env_field(None, "API_SECRET")
    runners_ttl_minutes: int = env_field(120, "RUNNERS_TTL")
    disable_docker_daemon: bool = env_field(False, "DISABLE_DOCKER_DAEMON")
    mode: Literal["repository", "organization"] = env_field("repository", "MODE")
    label_prefix: str = env_field("koyeb", "LABEL_PREFIX")
    runner_image: str = env_field("koyeb/github-runner", "RUNNER_IMAGE")
    # Accept every webhook without checking X-Hub-Signature-256. Local testing only.
    disable_auth: bool = env_field(False, "DISABLE_AUTH")
    delete_on_completed: bool = env_field(False, "DELETE_ON_COMPLETED")
    reaper_poll_interval_seconds: float = env_field(1.0, "REAPER_POLL_INTERVAL")
    metrics_token: Optional[SecretStr] = env_field(None, "METRICS_TOKEN")
    log_level: str = env_field("INFO", "LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "OTEL_SAMPLER_RATIO")

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("PORT or --port must be omitted or valid")
        return value

    @field_validator("runners_ttl_minutes")
    @classmethod
    def _validate_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(
                "RUNNERS_TTL or --runners-ttl must be omitted or a positive number of minutes"
            )
        return value

    @field_validator("reaper_poll_interval_seconds")
    @classmethod
    def _validate_poll_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("REAPER_POLL_INTERVAL must be a positive number of seconds")
        return value

    @field_validator("label_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        value = value.strip()
        if not value or "-" in value:
            raise ValueError("LABEL_PREFIX must be a non-empty string without '-'")
        return value

    @model_validator(mode="after")
    def _require_secret(self) -> "SchedulerSettings":
        if not self.koyeb_token.get_secret_value():
            raise ValueError(
                "KOYEB_TOKEN or --koyeb-token must be set to a valid Koyeb API token used to create runners"
            )
        if not self.disable_auth and (self.api_secret is None or not self.api_secret.get_secret_value()):
            raise ValueError(
                "API_SECRET or --api-secret must be set to a valid secret used to authenticate webhook requests"
            )
        return self

    @property
    def runners_ttl_seconds(self) -> float:
        return float(self.runners_ttl_minutes * 60)

    @property
    def webhook_secret(self) -> str:
        return self.api_secret.get_secret_value() if self.api_secret else ""
