"""Region health monitoring package."""

from .state import HealthTracker
from .probe import HttpLivenessProbe
from .monitor import HealthMonitor

__all__ = ["HealthMonitor", "HealthTracker", "HttpLivenessProbe"]
