"""Idle runner reaper: deletes runner services once their TTL has elapsed."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Iterable, Optional

import structlog

from ..common.metrics import REAPER_FAILURE_COUNTER, RUNNERS_DELETED_COUNTER
from ..fleet.base import FleetClient, FleetError

LOGGER = structlog.get_logger("runner_scheduler.scheduler.reaper")

DEFAULT_POLL_INTERVAL = 1.0


class RunnerReaper:
    """Tracks the last activity of each runner service and removes idle ones.

    Every tracked service has exactly one watch task. The task is created by
    ``track`` while holding the lock that guards the activity map, so
    concurrent refreshes of the same service never start a second watcher.
    The lock only covers map access; fleet calls happen outside of it.
    """

    def __init__(
        self,
        fleet: FleetClient,
        ttl_seconds: float,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fleet = fleet
        self._ttl = ttl_seconds
        self._poll_interval = poll_interval
        self._clock = clock
        self._last_activity: Dict[str, float] = {}
        self._watchers: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    async def seed(self, service_ids: Iterable[str]) -> None:
        """Start tracking services that already exist, with a fresh TTL each."""
        for service_id in service_ids:
            await self.track(service_id)

    async def track(self, service_id: str) -> None:
        """Record activity for ``service_id`` and make sure it is being watched."""
        async with self._lock:
            self._last_activity[service_id] = self._clock()
            watcher = self._watchers.get(service_id)
            if watcher is None or watcher.done():
                self._watchers[service_id] = asyncio.create_task(
                    self._watch(service_id), name=f"reaper:{service_id}"
                )
                LOGGER.debug("Watching runner service", service_id=service_id, ttl_seconds=self._ttl)

    async def forget(self, service_id: str) -> None:
        """Stop tracking a service removed by other means; its watcher exits on the next tick."""
        async with self._lock:
            self._last_activity.pop(service_id, None)

    def tracked(self) -> list[str]:
        return list(self._last_activity)

    def last_activity(self, service_id: str) -> Optional[float]:
        return self._last_activity.get(service_id)

    def watcher_count(self, service_id: Optional[str] = None) -> int:
        watchers = self._watchers.values() if service_id is None else [self._watchers.get(service_id)]
        return sum(1 for task in watchers if task is not None and not task.done())

    async def close(self) -> None:
        """Cancel every watch task. Only used at process shutdown."""
        async with self._lock:
            tasks = list(self._watchers.values())
            self._watchers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _release(self, service_id: str, *, drop_activity: bool) -> None:
        async with self._lock:
            if drop_activity:
                self._last_activity.pop(service_id, None)
            if self._watchers.get(service_id) is asyncio.current_task():
                del self._watchers[service_id]

    async def _watch(self, service_id: str) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)

            async with self._lock:
                last_used = self._last_activity.get(service_id)
            if last_used is None:
                await self._release(service_id, drop_activity=False)
                return
            if self._clock() - last_used < self._ttl:
                continue

            LOGGER.info("TTL reached for runner service, removing it", service_id=service_id)
            try:
                removed = await self._fleet.delete_service(service_id)
            except FleetError as exc:
                REAPER_FAILURE_COUNTER.inc()
                LOGGER.warning("Failed to delete runner service, will retry", service_id=service_id, error=str(exc))
                continue
            except Exception as exc:  # noqa: BLE001
                REAPER_FAILURE_COUNTER.inc()
                LOGGER.exception("Unexpected error deleting runner service, will retry", service_id=service_id, error=str(exc))
                continue

            if removed:
                RUNNERS_DELETED_COUNTER.inc()
                LOGGER.info("Runner service deleted", service_id=service_id)
            else:
                LOGGER.info("Runner service was already deleted", service_id=service_id)
            await self._release(service_id, drop_activity=True)
            return
