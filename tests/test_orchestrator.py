from __future__ import annotations

import pytest
import pytest_asyncio

from conftest import FakeFleet
from runner_scheduler.common.schemas import RunnerTarget, WebhookWorkflowJobEvent
from runner_scheduler.fleet.base import FleetError
from runner_scheduler.scheduler.orchestrator import RUNNERS_APP_NAME, HandleOutcome, RunnerScheduler
from runner_scheduler.scheduler.reaper import RunnerReaper


def _event(action: str = "queued", labels=("self-hosted", "koyeb-fra-small"), repo: str = "acme/app"):
    return WebhookWorkflowJobEvent.model_validate(
        {
            "action": action,
            "repository": {"full_name": repo},
            "workflow_job": {"run_id": 1, "workflow_name": "ci", "labels": list(labels)},
        }
    )


@pytest_asyncio.fixture
async def reaper(fleet: FakeFleet):
    reaper = RunnerReaper(fleet, ttl_seconds=3600, poll_interval=0.01)
    yield reaper
    await reaper.close()


@pytest.mark.asyncio
async def test_queued_event_creates_runner(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)

    outcome = await scheduler.handle(_event())

    assert outcome is HandleOutcome.CREATED
    assert fleet.call_names() == [
        "find_application",
        "create_application",
        "find_service",
        "create_service",
    ]
    (service_id, definition), = fleet.services.items()
    assert definition.name == "runner-fra-small"
    assert definition.app_id == fleet.apps[RUNNERS_APP_NAME]
    assert definition.image == "koyeb/github-runner"
    assert definition.privileged is True
    assert definition.region == "fra"
    assert definition.instance_type == "small"
    assert (definition.min_scale, definition.max_scale) == (1, 1)
    assert definition.env == {
        "REPO_URL": "https://github.com/acme/app",
        "GITHUB_TOKEN": "gh-token",
        "RUNNER_LABELS": "koyeb-fra-small",
    }
    assert reaper.tracked() == [service_id]


@pytest.mark.asyncio
async def test_handle_is_idempotent(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)

    first = await scheduler.handle(_event())
    second = await scheduler.handle(_event())

    assert (first, second) == (HandleOutcome.CREATED, HandleOutcome.REFRESHED)
    assert fleet.call_names().count("create_service") == 1
    assert fleet.call_names().count("create_application") == 1
    assert len(fleet.services) == 1
    assert reaper.watcher_count() == 1


@pytest.mark.asyncio
async def test_existing_runner_is_refreshed(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    service_id = fleet.add_service(RUNNERS_APP_NAME, "runner-fra-small")
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)
    await reaper.track(service_id)
    before = reaper.last_activity(service_id)

    outcome = await scheduler.handle(_event())

    assert outcome is HandleOutcome.REFRESHED
    assert reaper.last_activity(service_id) >= before
    assert "create_service" not in fleet.call_names()
    assert reaper.watcher_count(service_id) == 1


@pytest.mark.asyncio
async def test_unmatched_labels_make_no_fleet_calls(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)
    outcome = await scheduler.handle(_event(labels=("self-hosted", "linux")))
    assert outcome is HandleOutcome.IGNORED
    assert fleet.calls == []


@pytest.mark.parametrize("action", ["completed", "in_progress", "waiting", ""])
@pytest.mark.asyncio
async def test_non_queued_without_runner_is_noop(action: str, fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)
    outcome = await scheduler.handle(_event(action=action))
    assert outcome is HandleOutcome.IGNORED
    assert "create_service" not in fleet.call_names()
    assert reaper.tracked() == []


@pytest.mark.asyncio
async def test_completed_refreshes_by_default(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    service_id = fleet.add_service(RUNNERS_APP_NAME, "runner-fra-small")
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)

    outcome = await scheduler.handle(_event(action="completed"))

    assert outcome is HandleOutcome.REFRESHED
    assert "delete_service" not in fleet.call_names()
    assert reaper.tracked() == [service_id]


@pytest.mark.asyncio
async def test_completed_deletes_when_enabled(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    service_id = fleet.add_service(RUNNERS_APP_NAME, "runner-fra-small")
    scheduler = RunnerScheduler(make_settings(DELETE_ON_COMPLETED=True), fleet, reaper)
    await reaper.track(service_id)

    outcome = await scheduler.handle(_event(action="completed"))

    assert outcome is HandleOutcome.DELETED
    assert service_id not in fleet.services
    assert reaper.tracked() == []


@pytest.mark.asyncio
async def test_organization_mode_targets_owner(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(MODE="organization"), fleet, reaper)
    await scheduler.handle(_event(repo="acme/app"))
    (definition,) = fleet.services.values()
    assert definition.env["REPO_URL"] == "https://github.com/acme"


@pytest.mark.asyncio
async def test_disabled_docker_daemon_runs_unprivileged(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(DISABLE_DOCKER_DAEMON=True), fleet, reaper)
    await scheduler.handle(_event())
    (definition,) = fleet.services.values()
    assert definition.privileged is False
    assert definition.env["DISABLE_DOCKER_DAEMON"] == "true"


@pytest.mark.asyncio
async def test_custom_prefix_and_image(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    settings = make_settings(LABEL_PREFIX="acme", RUNNER_IMAGE="registry.example/runner:2")
    scheduler = RunnerScheduler(settings, fleet, reaper)
    outcome = await scheduler.handle(_event(labels=("koyeb-fra-small", "acme-was-large")))
    assert outcome is HandleOutcome.CREATED
    (definition,) = fleet.services.values()
    assert definition.name == "runner-was-large"
    assert definition.image == "registry.example/runner:2"
    assert definition.env["RUNNER_LABELS"] == "acme-was-large"


@pytest.mark.asyncio
async def test_fleet_error_propagates(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    fleet.fail_on.add("create_service")
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)
    with pytest.raises(FleetError):
        await scheduler.handle(_event())
    assert reaper.tracked() == []


@pytest.mark.asyncio
async def test_load_current_services(fleet: FakeFleet, reaper: RunnerReaper, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(), fleet, reaper)
    assert await scheduler.load_current_services() == []
    first = fleet.add_service(RUNNERS_APP_NAME, "runner-fra-small")
    second = fleet.add_service(RUNNERS_APP_NAME, "runner-was-large")
    assert sorted(await scheduler.load_current_services()) == sorted([first, second])


def test_build_service_definition(fleet: FakeFleet, make_settings) -> None:
    scheduler = RunnerScheduler(make_settings(), fleet, reaper=None)  # type: ignore[arg-type]
    definition = scheduler.build_service_definition("app-1", RunnerTarget(region="sin", instance_type="gpu"), "o/r")
    assert definition.name == "runner-sin-gpu"
    assert definition.region_scope == "region:sin"
