"""FastAPI application receiving GitHub workflow_job webhooks."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse

from ..common.metrics import GLOBAL_REGISTRY, TRACKED_RUNNERS_GAUGE, WEBHOOK_COUNTER
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.schemas import EventDecodeError, HealthStatus, decode_event
from ..common.security import SIGNATURE_HEADER, require_metrics_access, verify_github_signature
from ..common.settings import SchedulerSettings
from ..fleet.base import FleetClient, FleetError
from ..fleet.koyeb import KoyebFleetClient
from .orchestrator import RunnerScheduler
from .reaper import RunnerReaper

LOGGER = structlog.get_logger("runner_scheduler.scheduler.app")

SERVICE_NAME = "runner_scheduler"

FleetFactory = Callable[[SchedulerSettings, httpx.AsyncClient], FleetClient]


def koyeb_fleet_factory(settings: SchedulerSettings, http_client: httpx.AsyncClient) -> FleetClient:
    return KoyebFleetClient(
        token=settings.koyeb_token.get_secret_value(),
        http_client=http_client,
        base_url=settings.koyeb_api_url,
    )


class AppState:
    """Container for application-level shared resources."""

    def __init__(
        self,
        settings: SchedulerSettings,
        http_client: httpx.AsyncClient,
        fleet: FleetClient,
        reaper: RunnerReaper,
        scheduler: RunnerScheduler,
    ) -> None:
        self.settings = settings
        self.http_client = http_client
        self.fleet = fleet
        self.reaper = reaper
        self.scheduler = scheduler


def _get_state(request: Request) -> AppState:
    state: AppState = request.app.state.container  # type: ignore[attr-defined]
    return state


def get_settings(state: AppState = Depends(_get_state)) -> SchedulerSettings:
    return state.settings


def get_scheduler(state: AppState = Depends(_get_state)) -> RunnerScheduler:
    return state.scheduler


def verify_webhook_signature(settings: SchedulerSettings, body: bytes, signature: Optional[str]) -> None:
    if settings.disable_auth:
        return
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="The HTTP header X-Hub-Signature-256 is missing. This API is expected to be called by GitHub webhooks.",
        )
    if not verify_github_signature(settings.webhook_secret, body, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-Hub-Signature-256 header. Make sure API_SECRET matches your GitHub webhook secret.",
        )


def create_app(
    settings: Optional[SchedulerSettings] = None,
    fleet_factory: FleetFactory = koyeb_fleet_factory,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or SchedulerSettings()
        configure_logging(SERVICE_NAME, resolved.log_level)
        configure_tracing(
            service_name=SERVICE_NAME,
            endpoint=resolved.otel_exporter_endpoint,
            headers=resolved.otel_exporter_headers,
            sampler_ratio=resolved.otel_sampler_ratio,
        )
        if resolved.disable_auth:
            LOGGER.warning(
                "Webhook signature verification is DISABLED; every request is accepted. Never use this in production."
            )

        http_client = httpx.AsyncClient(timeout=20)
        fleet = fleet_factory(resolved, http_client)
        reaper = RunnerReaper(
            fleet,
            resolved.runners_ttl_seconds,
            poll_interval=resolved.reaper_poll_interval_seconds,
        )
        scheduler = RunnerScheduler(resolved, fleet, reaper)
        TRACKED_RUNNERS_GAUGE.set_supplier(lambda: len(reaper.tracked()))
        try:
            # Failing here aborts startup: serving without knowing the current runners is unsafe.
            services = await scheduler.load_current_services()
            await reaper.seed(services)
            LOGGER.info("Loaded existing runner services", count=len(services), ttl_seconds=reaper.ttl_seconds)
            app.state.container = AppState(
                settings=resolved,
                http_client=http_client,
                fleet=fleet,
                reaper=reaper,
                scheduler=scheduler,
            )
            yield
        finally:
            TRACKED_RUNNERS_GAUGE.set_supplier(None)
            await reaper.close()
            await http_client.aclose()

    app = FastAPI(lifespan=lifespan)
    instrument_fastapi_app(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        else:
            LOGGER.debug("http_request", **log_kwargs)
        return response

    @app.post("/")
    async def github_webhook(
        request: Request,
        settings: SchedulerSettings = Depends(get_settings),
        scheduler: RunnerScheduler = Depends(get_scheduler),
    ) -> Response:
        WEBHOOK_COUNTER.inc()
        raw_body = await request.body()
        verify_webhook_signature(settings, raw_body, request.headers.get(SIGNATURE_HEADER))

        try:
            event = decode_event(raw_body)
        except EventDecodeError as exc:
            LOGGER.warning("Invalid webhook payload", error=str(exc))
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Bad Request: unable to unmarshal the request body",
            ) from exc

        LOGGER.info(
            "Received GitHub action",
            action=event.action,
            workflow=event.workflow_job.workflow_name,
            run_id=event.workflow_job.run_id,
            labels=list(event.workflow_job.labels),
        )
        try:
            outcome = await scheduler.handle(event)
        except FleetError as exc:
            LOGGER.exception(
                "Failed to handle workflow job event",
                action=event.action,
                labels=list(event.workflow_job.labels),
                repository=event.repository.full_name,
                error=str(exc),
            )
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error") from exc
        LOGGER.debug("Workflow job event handled", action=event.action, outcome=outcome.value)
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/healthz", response_model=HealthStatus)
    async def healthz(state: AppState = Depends(_get_state)) -> HealthStatus:
        return HealthStatus(
            tracked_runners=len(state.reaper.tracked()),
            auth_disabled=state.settings.disable_auth or None,
        )

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(
        request: Request,
        settings: SchedulerSettings = Depends(get_settings),
    ) -> PlainTextResponse:
        token = settings.metrics_token.get_secret_value() if settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    return app
