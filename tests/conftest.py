from __future__ import annotations

import asyncio
import itertools
import time
from typing import Callable, Optional

import pytest

from runner_scheduler.common.schemas import ServiceDefinition
from runner_scheduler.common.settings import SchedulerSettings
from runner_scheduler.fleet.base import FleetError

SETTINGS_ENV = (
    "PORT",
    "KOYEB_TOKEN",
    "KOYEB_API_URL",
    "GITHUB_TOKEN",
    "API_SECRET",
    "RUNNERS_TTL",
    "DISABLE_DOCKER_DAEMON",
    "MODE",
    "LABEL_PREFIX",
    "RUNNER_IMAGE",
    "DISABLE_AUTH",
    "DELETE_ON_COMPLETED",
    "REAPER_POLL_INTERVAL",
    "METRICS_TOKEN",
    "LOG_LEVEL",
    "OTEL_EXPORTER_ENDPOINT",
    "OTEL_EXPORTER_HEADERS",
    "OTEL_SAMPLER_RATIO",
)


class FakeFleet:
    """In-memory fleet backend recording every call."""

    def __init__(self) -> None:
        self.apps: dict[str, str] = {}
        self.services: dict[str, ServiceDefinition] = {}
        self.calls: list[tuple[str, ...]] = []
        self.deleted_at: dict[str, float] = {}
        self.delete_failures = 0
        self.fail_on: set[str] = set()
        self._ids = itertools.count(1)

    def _record(self, name: str, *args: str) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise FleetError(f"{name} failed", status_code=503, body="unavailable")

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def find_application(self, name: str) -> Optional[str]:
        self._record("find_application", name)
        return self.apps.get(name)

    async def create_application(self, name: str) -> str:
        self._record("create_application", name)
        app_id = f"app-{next(self._ids)}"
        self.apps[name] = app_id
        return app_id

    async def list_services(self, app_id: str) -> list[str]:
        self._record("list_services", app_id)
        return [sid for sid, definition in self.services.items() if definition.app_id == app_id]

    async def find_service(self, app_id: str, name: str) -> Optional[str]:
        self._record("find_service", app_id, name)
        for service_id, definition in self.services.items():
            if definition.app_id == app_id and definition.name == name:
                return service_id
        return None

    async def create_service(self, definition: ServiceDefinition) -> str:
        self._record("create_service", definition.name)
        service_id = f"svc-{next(self._ids)}"
        self.services[service_id] = definition
        return service_id

    async def delete_service(self, service_id: str) -> bool:
        self._record("delete_service", service_id)
        if self.delete_failures > 0:
            self.delete_failures -= 1
            raise FleetError("delete failed", status_code=500, body="boom")
        self.deleted_at[service_id] = time.monotonic()
        return self.services.pop(service_id, None) is not None

    def add_service(self, app_name: str, definition_name: str) -> str:
        app_id = self.apps.setdefault(app_name, f"app-{next(self._ids)}")
        service_id = f"svc-{next(self._ids)}"
        self.services[service_id] = ServiceDefinition(
            app_id=app_id,
            name=definition_name,
            image="koyeb/github-runner",
            region="fra",
            instance_type="small",
        )
        return service_id


@pytest.fixture
def clean_settings_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the tests.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def make_settings(clean_settings_env) -> Callable[..., SchedulerSettings]:
    def _make(**overrides) -> SchedulerSettings:
        values = {
            "KOYEB_TOKEN": "koyeb-token",
            "GITHUB_TOKEN": "gh-token",
            "API_SECRET": "s3cr3t",
        }
        values.update(overrides)
        return SchedulerSettings(**values)

    return _make


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()
