"""Map workflow job labels to the runner they should run on."""

from __future__ import annotations

from typing import Iterable, Optional

from ..common.schemas import RunnerTarget

DEFAULT_PREFIX = "koyeb"


def route_labels(labels: Iterable[str], prefix: str = DEFAULT_PREFIX) -> Optional[RunnerTarget]:
    """Return the target of the first ``<prefix>-<region>-<instance_type>`` label.

    Labels with any other shape are skipped. ``None`` means the job is not for
    this scheduler, including when the first matching label has an empty
    region or instance type (``koyeb--small``).
    """
    for label in labels:
        parts = label.split("-")
        if len(parts) != 3 or parts[0] != prefix:
            continue
        _, region, instance_type = parts
        if not region or not instance_type:
            return None
        return RunnerTarget(region=region, instance_type=instance_type)
    return None
