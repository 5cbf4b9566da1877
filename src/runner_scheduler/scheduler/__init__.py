"""Webhook-driven scheduling of runner services."""

from .labels import route_labels
from .orchestrator import HandleOutcome, RunnerScheduler
from .reaper import RunnerReaper

__all__ = ["HandleOutcome", "RunnerReaper", "RunnerScheduler", "route_labels"]
