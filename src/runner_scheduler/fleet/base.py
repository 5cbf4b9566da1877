"""Fleet client interface consumed by the scheduler."""

from __future__ import annotations

import abc
from typing import Optional, Protocol

from ..common.schemas import ServiceDefinition


class FleetError(RuntimeError):
    """A call to the fleet backend failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (HTTP {self.status_code}): {self.body}" if self.body else f"{base} (HTTP {self.status_code})"


class FleetClient(Protocol):
    """Operations the scheduler needs from the compute provisioning backend."""

    @abc.abstractmethod
    async def find_application(self, name: str) -> Optional[str]:
        """Return the id of the application named exactly ``name``, if any."""
        ...

    @abc.abstractmethod
    async def create_application(self, name: str) -> str:
        ...

    @abc.abstractmethod
    async def list_services(self, app_id: str) -> list[str]:
        ...

    @abc.abstractmethod
    async def find_service(self, app_id: str, name: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    async def create_service(self, definition: ServiceDefinition) -> str:
        ...

    @abc.abstractmethod
    async def delete_service(self, service_id: str) -> bool:
        """Delete a service. Returns False when it was already gone."""
        ...


async def ensure_application(client: FleetClient, name: str) -> tuple[str, bool]:
    """Get or create the application ``name``; the flag tells whether it was created."""
    app_id = await client.find_application(name)
    if app_id:
        return app_id, False
    return await client.create_application(name), True
