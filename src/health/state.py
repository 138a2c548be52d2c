"""Debounced region health state machine."""

import time
from typing import Callable, Optional, Tuple

from src.errors import ConfigurationError
from src.models import HealthChange, HealthState, HealthStatus


class HealthTracker:
    """Turns raw probe outcomes into a debounced UP/DOWN state for one region.

    UP -> DOWN after ``failure_threshold`` consecutive failed probes;
    DOWN -> UP after a single successful probe.
    """

    def __init__(self, region_id: str, failure_threshold: int,
                 initial_status: HealthStatus = HealthStatus.UP,
                 clock: Callable[[], float] = time.time):
        if failure_threshold <= 0:
            raise ConfigurationError(f"failure_threshold must be positive, got {failure_threshold}")
        self.region_id = region_id
        self.failure_threshold = failure_threshold
        self._clock = clock
        self._state = HealthState(region_id=region_id, status=initial_status)

    @property
    def state(self) -> HealthState:
        """Current snapshot; replaced wholesale, so readers never see a partial update"""
        return self._state

    def restore(self, state: HealthState) -> None:
        if state.region_id != self.region_id:
            raise ValueError(f"State for {state.region_id} cannot restore tracker for {self.region_id}")
        self._state = state

    def record(self, success: bool, now: Optional[float] = None) -> Tuple[HealthState, Optional[HealthChange]]:
        """Apply one probe outcome, returning the new state and the transition if any"""
        now = self._clock() if now is None else now
        previous = self._state

        if success:
            status = HealthStatus.UP
            failures = 0
        else:
            failures = previous.consecutive_failures + 1
            if failures >= self.failure_threshold:
                status = HealthStatus.DOWN
            else:
                status = previous.status

        transitioned = status is not previous.status
        current = HealthState(
            region_id=self.region_id,
            status=status,
            consecutive_failures=failures,
            last_transition_time=now if transitioned else previous.last_transition_time,
            last_probe_time=now
        )
        self._state = current
        change = HealthChange(self.region_id, previous, current) if transitioned else None
        return current, change
