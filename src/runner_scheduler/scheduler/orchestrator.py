"""Turn workflow job events into runner services on the fleet backend."""

from __future__ import annotations

import enum

import structlog

from ..common.metrics import RUNNERS_CREATED_COUNTER, RUNNERS_DELETED_COUNTER, RUNNERS_REFRESHED_COUNTER
from ..common.schemas import RunnerTarget, ServiceDefinition, WebhookWorkflowJobEvent
from ..common.settings import SchedulerSettings
from ..fleet.base import FleetClient, ensure_application
from .labels import route_labels
from .reaper import RunnerReaper

LOGGER = structlog.get_logger("runner_scheduler.scheduler.orchestrator")

RUNNERS_APP_NAME = "github-runner"
GITHUB_URL = "https://github.com"


class HandleOutcome(str, enum.Enum):
    IGNORED = "ignored"
    REFRESHED = "refreshed"
    CREATED = "created"
    DELETED = "deleted"


class RunnerScheduler:
    """Creates, reuses and tears down one runner service per target.

    The lookup-then-create sequence is not serialized across requests: two
    ``queued`` events for the same target arriving together may both create a
    service. The reaper removes the extra one once it goes idle.
    """

    def __init__(self, settings: SchedulerSettings, fleet: FleetClient, reaper: RunnerReaper) -> None:
        self._settings = settings
        self._fleet = fleet
        self._reaper = reaper

    async def load_current_services(self) -> list[str]:
        """List runner services already deployed in the runners application."""
        app_id = await self._fleet.find_application(RUNNERS_APP_NAME)
        if not app_id:
            return []
        return await self._fleet.list_services(app_id)

    async def handle(self, event: WebhookWorkflowJobEvent) -> HandleOutcome:
        log = LOGGER.bind(action=event.action, workflow=event.workflow_job.workflow_name)
        target = route_labels(event.workflow_job.labels, self._settings.label_prefix)
        if target is None:
            log.info("Workflow job does not target this scheduler, ignoring", labels=list(event.workflow_job.labels))
            return HandleOutcome.IGNORED

        log = log.bind(region=target.region, instance_type=target.instance_type)
        app_id, created = await ensure_application(self._fleet, RUNNERS_APP_NAME)
        if created:
            log.info("Created the runners application", app_name=RUNNERS_APP_NAME, app_id=app_id)

        service_id = await self._fleet.find_service(app_id, target.service_name)
        if service_id:
            if event.is_completed and self._settings.delete_on_completed:
                removed = await self._fleet.delete_service(service_id)
                await self._reaper.forget(service_id)
                if removed:
                    RUNNERS_DELETED_COUNTER.inc()
                log.info("Job completed, runner service removed", service_id=service_id, removed=removed)
                return HandleOutcome.DELETED
            await self._reaper.track(service_id)
            RUNNERS_REFRESHED_COUNTER.inc()
            log.info(
                "Runner service exists, removal postponed",
                service_id=service_id,
                ttl_seconds=self._reaper.ttl_seconds,
            )
            return HandleOutcome.REFRESHED

        if not event.is_queued:
            log.info("No runner service for this target and the action is not queued, ignoring")
            return HandleOutcome.IGNORED

        log.info("No runner service for this target, starting one")
        definition = self.build_service_definition(app_id, target, event.repository.full_name)
        service_id = await self._fleet.create_service(definition)
        await self._reaper.track(service_id)
        RUNNERS_CREATED_COUNTER.inc()
        log.info("Created runner service", service_id=service_id, ttl_seconds=self._reaper.ttl_seconds)
        return HandleOutcome.CREATED

    def repository_url(self, full_name: str) -> str:
        if self._settings.mode == "organization":
            return f"{GITHUB_URL}/{full_name.split('/', 1)[0]}"
        return f"{GITHUB_URL}/{full_name}"

    def build_service_definition(
        self,
        app_id: str,
        target: RunnerTarget,
        repository_full_name: str,
    ) -> ServiceDefinition:
        settings = self._settings
        env = {
            "REPO_URL": self.repository_url(repository_full_name),
            "GITHUB_TOKEN": settings.github_token.get_secret_value(),
            "RUNNER_LABELS": target.label(settings.label_prefix),
        }
        if settings.disable_docker_daemon:
            # Without the Docker daemon the container does not need privileges.
            env["DISABLE_DOCKER_DAEMON"] = "true"
        return ServiceDefinition(
            app_id=app_id,
            name=target.service_name,
            image=settings.runner_image,
            privileged=not settings.disable_docker_daemon,
            region=target.region,
            instance_type=target.instance_type,
            env=env,
        )
