"""Fleet backends able to host runner services."""

from .base import FleetClient, FleetError, ensure_application
from .koyeb import KoyebFleetClient

__all__ = ["FleetClient", "FleetError", "KoyebFleetClient", "ensure_application"]
