"""Minimal Prometheus text exposition for scheduler counters and gauges."""

from __future__ import annotations

from typing import Callable, Dict, Union


def _header(name: str, description: str, kind: str) -> str:
    return f"# HELP {name} {description}\n# TYPE {name} {kind}\n"


class Counter:
    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters can only increase")
        self._value += amount

    def render(self) -> str:
        return _header(self.name, self.description, "counter") + f"{self.name} {self._value}\n"


class Gauge:
    """Gauge that either stores a value or reads it from ``supplier`` at render time."""

    def __init__(self, name: str, description: str = "", supplier: Callable[[], float] | None = None) -> None:
        self.name = name
        self.description = description
        self._value = 0.0
        self._supplier = supplier

    @property
    def value(self) -> float:
        return float(self._supplier()) if self._supplier else self._value

    def set(self, value: float) -> None:
        self._value = value

    def set_supplier(self, supplier: Callable[[], float] | None) -> None:
        self._supplier = supplier

    def render(self) -> str:
        return _header(self.name, self.description, "gauge") + f"{self.name} {self.value}\n"


Metric = Union[Counter, Gauge]


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}

    def register(self, metric: Metric) -> Metric:
        self._metrics[metric.name] = metric
        return metric

    def get(self, name: str) -> Metric:
        return self._metrics[name]

    def render(self) -> str:
        return "".join(metric.render() for metric in self._metrics.values())


GLOBAL_REGISTRY = MetricsRegistry()

WEBHOOK_COUNTER = GLOBAL_REGISTRY.register(
    Counter("runner_scheduler_webhooks_total", "Total webhook deliveries received")
)
RUNNERS_CREATED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("runner_scheduler_runners_created_total", "Runner services created")
)
RUNNERS_REFRESHED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("runner_scheduler_runners_refreshed_total", "Runner TTL refreshes from webhook activity")
)
RUNNERS_DELETED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("runner_scheduler_runners_deleted_total", "Runner services deleted")
)
REAPER_FAILURE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("runner_scheduler_reaper_delete_failures_total", "Failed runner deletions retried by the reaper")
)
TRACKED_RUNNERS_GAUGE = GLOBAL_REGISTRY.register(
    Gauge("runner_scheduler_tracked_runners", "Runner services currently tracked by the reaper")
)
