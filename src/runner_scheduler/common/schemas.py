"""Data models shared by the webhook handler, scheduler and fleet client."""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

QUEUED = "queued"
COMPLETED = "completed"


class EventDecodeError(ValueError):
    """Raised when a webhook body cannot be decoded into a workflow job event."""


def _null_as_empty(value: Any, default: Any) -> Any:
    return default if value is None else value


class GitHubRepository(BaseModel):
    """Repository metadata extracted from GitHub webhook payloads."""

    model_config = ConfigDict(frozen=True)

    # <owner>/<repo>
    full_name: str = ""

    @field_validator("full_name", mode="before")
    @classmethod
    def _null_full_name(cls, value: Any) -> Any:
        return _null_as_empty(value, "")

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]


class GitHubWorkflowJob(BaseModel):
    """Subset of the workflow_job payload used for scheduling."""

    model_config = ConfigDict(frozen=True)

    run_id: int = 0
    workflow_name: str = ""
    labels: tuple[str, ...] = ()

    # GitHub sends null for optional fields such as workflow_name.
    @field_validator("run_id", mode="before")
    @classmethod
    def _null_run_id(cls, value: Any) -> Any:
        return _null_as_empty(value, 0)

    @field_validator("workflow_name", mode="before")
    @classmethod
    def _null_workflow_name(cls, value: Any) -> Any:
        return _null_as_empty(value, "")

    @field_validator("labels", mode="before")
    @classmethod
    def _null_labels(cls, value: Any) -> Any:
        return _null_as_empty(value, ())


class WebhookWorkflowJobEvent(BaseModel):
    """Parsed GitHub webhook for workflow_job events.

    Unknown fields are ignored and missing ones fall back to empty values, so
    new GitHub payload versions keep decoding.
    """

    model_config = ConfigDict(frozen=True)

    action: str = ""
    repository: GitHubRepository = Field(default_factory=GitHubRepository)
    workflow_job: GitHubWorkflowJob = Field(default_factory=GitHubWorkflowJob)

    @field_validator("action", mode="before")
    @classmethod
    def _null_action(cls, value: Any) -> Any:
        return _null_as_empty(value, "")

    @field_validator("repository", "workflow_job", mode="before")
    @classmethod
    def _null_section(cls, value: Any) -> Any:
        return _null_as_empty(value, {})

    @property
    def is_queued(self) -> bool:
        return self.action == QUEUED

    @property
    def is_completed(self) -> bool:
        return self.action == COMPLETED


def decode_event(body: bytes) -> WebhookWorkflowJobEvent:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise EventDecodeError("unable to unmarshal the request body") from exc
    try:
        return WebhookWorkflowJobEvent.model_validate(payload)
    except ValidationError as exc:
        raise EventDecodeError(f"unexpected webhook payload: {exc.error_count()} invalid field(s)") from exc


class RunnerTarget(BaseModel):
    """Region and instance type a workflow job asks to run on."""

    model_config = ConfigDict(frozen=True)

    region: str
    instance_type: str

    @property
    def service_name(self) -> str:
        return f"runner-{self.region}-{self.instance_type}"

    def label(self, prefix: str) -> str:
        return f"{prefix}-{self.region}-{self.instance_type}"


class ServiceDefinition(BaseModel):
    """Desired configuration of a runner service on the fleet backend."""

    app_id: str
    name: str
    image: str
    privileged: bool = True
    region: str
    instance_type: str
    min_scale: int = 1
    max_scale: int = 1
    env: dict[str, str] = Field(default_factory=dict)

    @property
    def region_scope(self) -> str:
        return f"region:{self.region}"


class HealthStatus(BaseModel):
    status: str = "ok"
    tracked_runners: int = 0
    auth_disabled: Optional[bool] = None
