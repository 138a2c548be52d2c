"""
Region health monitor.

Runs one independent probe loop per region and publishes debounced
UP/DOWN transitions to subscribers. Each region's state has a single
writer (its own loop); readers take immutable snapshots.
"""

import asyncio
import inspect
import logging
import time
from typing import Callable, Dict, List, Optional, Set

from src.config.settings import HealthCheckSettings
from src.models import HealthChange, HealthState, HealthStatus, ProbeResult, Region
from src.monitoring.metrics import MetricsCollector
from .probe import HttpLivenessProbe
from .state import HealthTracker

logger = logging.getLogger(__name__)

HealthCallback = Callable[[HealthChange], object]


class HealthMonitor:
    """Periodically probes every region and tracks its debounced health"""

    def __init__(
        self,
        regions: List[Region],
        settings: HealthCheckSettings,
        probe: Optional[HttpLivenessProbe] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time
    ):
        self.settings = settings
        self.regions: Dict[str, Region] = {region.region_id: region for region in regions}
        self.probe_client = probe or HttpLivenessProbe(settings)
        self.metrics = metrics
        self._clock = clock
        self._trackers: Dict[str, HealthTracker] = {
            region_id: HealthTracker(region_id, settings.failure_threshold, clock=clock)
            for region_id in self.regions
        }
        self._queues: List[asyncio.Queue] = []
        self._callbacks: List[HealthCallback] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._callback_tasks: Set[asyncio.Task] = set()
        self._stopped: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._stopped is not None and not self._stopped.is_set()

    def state(self, region_id: str) -> HealthState:
        """Latest health snapshot of a region"""
        return self._trackers[region_id].state

    def states(self) -> Dict[str, HealthState]:
        return {region_id: tracker.state for region_id, tracker in self._trackers.items()}

    def subscribe(self) -> asyncio.Queue:
        """Event channel receiving every HealthChange from now on"""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def add_callback(self, callback: HealthCallback) -> None:
        self._callbacks.append(callback)

    async def probe(self, region: Region) -> HealthState:
        """Probe a region once and apply the result"""
        result = await self.probe_client.check(region)
        return self._apply(region, result)

    def _apply(self, region: Region, result: ProbeResult) -> HealthState:
        tracker = self._trackers[region.region_id]
        state, change = tracker.record(result.success, self._clock())

        if self.metrics:
            self.metrics.record_probe(
                region.region_id,
                result.success,
                latency_seconds=result.latency_ms / 1000 if result.latency_ms is not None else None,
                reason=result.error
            )
            self.metrics.update_region_health(region.region_id, state.is_up)

        if not result.success:
            logger.info(
                f"Probe of {region.region_id} failed ({result.error}), "
                f"{state.consecutive_failures}/{self.settings.failure_threshold} consecutive"
            )

        if change is not None:
            self._publish(change)
        return state

    def _publish(self, change: HealthChange) -> None:
        if change.current.status is HealthStatus.DOWN:
            logger.warning(
                f"Region {change.region_id} is DOWN after "
                f"{change.current.consecutive_failures} consecutive failed probes"
            )
        else:
            logger.info(f"Region {change.region_id} is UP again")

        for queue in list(self._queues):
            queue.put_nowait(change)
        for callback in list(self._callbacks):
            try:
                result = callback(change)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._callback_tasks.add(task)
                    task.add_done_callback(self._on_callback_done)
            except Exception as e:
                logger.error(f"Health change subscriber failed: {str(e)}")

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Health change subscriber failed: {str(task.exception())}")

    async def start(self) -> None:
        """Start one probe loop per region"""
        if self.running:
            return
        self._stopped = asyncio.Event()
        for region in self.regions.values():
            self._tasks[region.region_id] = asyncio.ensure_future(
                self._run_region(region, self._stopped)
            )
        logger.info(
            f"Health monitor started for {', '.join(self.regions)} "
            f"(interval {self.settings.interval}s, threshold {self.settings.failure_threshold})"
        )

    async def _run_region(self, region: Region, stopped: asyncio.Event) -> None:
        loop = asyncio.get_event_loop()
        while not stopped.is_set():
            started = loop.time()
            try:
                result = await self.probe_client.check(region)
            except Exception as e:
                logger.error(f"Probe loop for {region.region_id} crashed on a probe: {str(e)}")
                result = ProbeResult(region_id=region.region_id, success=False, error=type(e).__name__)

            if stopped.is_set():
                logger.debug(f"Discarding probe result for {region.region_id} after shutdown")
                break
            self._apply(region, result)

            remaining = self.settings.interval - (loop.time() - started)
            if remaining > 0:
                try:
                    await asyncio.wait_for(stopped.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass

    async def stop(self) -> None:
        """Stop scheduling probes; in-flight probes finish on their own timeout and are discarded"""
        if self._stopped is None:
            return
        self._stopped.set()
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._callback_tasks:
            await asyncio.gather(*list(self._callback_tasks), return_exceptions=True)
        logger.info("Health monitor stopped")

    async def close(self) -> None:
        await self.stop()
        await self.probe_client.close()
