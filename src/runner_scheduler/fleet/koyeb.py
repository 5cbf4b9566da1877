"""Koyeb REST API implementation of the fleet client."""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional

import httpx
import structlog

from ..common.schemas import ServiceDefinition
from .base import FleetError

LOGGER = structlog.get_logger("runner_scheduler.fleet.koyeb")

DEFAULT_API_URL = "https://app.koyeb.com"
PAGE_SIZE = 100


def service_payload(definition: ServiceDefinition) -> dict[str, Any]:
    """Render a ServiceDefinition as the body of ``POST /v1/services``."""

    scope = definition.region_scope
    return {
        "app_id": definition.app_id,
        "definition": {
            "name": definition.name,
            "type": "WORKER",
            "docker": {
                "image": definition.image,
                "privileged": definition.privileged,
            },
            "regions": [definition.region],
            "instance_types": [{"type": definition.instance_type, "scopes": [scope]}],
            "env": [{"key": key, "value": value} for key, value in definition.env.items()],
            "scalings": [
                {"min": definition.min_scale, "max": definition.max_scale, "scopes": [scope]},
            ],
        },
    }


class KoyebFleetClient:
    """Wraps the Koyeb API calls needed to manage runner services."""

    def __init__(self, token: str, http_client: httpx.AsyncClient, base_url: str = DEFAULT_API_URL) -> None:
        self._token = token
        self._http = http_client
        self._base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            return await self._http.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise FleetError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _check(response: httpx.Response, action: str) -> dict[str, Any]:
        if response.is_error:
            raise FleetError(action, status_code=response.status_code, body=response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise FleetError(f"{action}: invalid JSON response", status_code=response.status_code) from exc

    async def _paginate(
        self, path: str, key: str, action: str, params: dict[str, Any]
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every item of a Koyeb list endpoint, following ``has_next``."""
        offset = 0
        while True:
            response = await self._request("GET", path, params={**params, "limit": PAGE_SIZE, "offset": offset})
            data = self._check(response, action)
            items = data.get(key) or []
            for item in items:
                yield item
            if not data.get("has_next") or not items:
                return
            offset += len(items)

    async def find_application(self, name: str) -> Optional[str]:
        # The API filters by prefix, so keep only the exact match.
        action = f"Unable to list applications named {name}"
        async for app in self._paginate("/v1/apps", "apps", action, {"name": name}):
            if app.get("name") == name:
                return app.get("id")
        return None

    async def create_application(self, name: str) -> str:
        response = await self._request("POST", "/v1/apps", json={"name": name})
        data = self._check(response, f"Unable to create application {name}")
        return data["app"]["id"]

    async def list_services(self, app_id: str) -> list[str]:
        action = f"Unable to list services of application {app_id}"
        services = self._paginate("/v1/services", "services", action, {"app_id": app_id})
        return [service["id"] async for service in services]

    async def find_service(self, app_id: str, name: str) -> Optional[str]:
        params = {"app_id": app_id, "name": name}
        async for service in self._paginate("/v1/services", "services", f"Unable to look up service {name}", params):
            if service.get("name", name) == name:
                return service.get("id")
        return None

    async def create_service(self, definition: ServiceDefinition) -> str:
        response = await self._request("POST", "/v1/services", json=service_payload(definition))
        data = self._check(response, f"Unable to create service {definition.name}")
        service_id = data["service"]["id"]
        LOGGER.debug("Koyeb service created", service_id=service_id, name=definition.name)
        return service_id

    async def delete_service(self, service_id: str) -> bool:
        response = await self._request("DELETE", f"/v1/services/{service_id}")
        if response.status_code == httpx.codes.NOT_FOUND:
            return False
        self._check(response, f"Unable to delete service {service_id}")
        return True
