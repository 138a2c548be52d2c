"""
Cross-region replication engine.

Propagates committed changes of one region to its peer. Writes that arrived
through replication are tagged as replicas and are never propagated again,
which keeps the bidirectional pair loop-free.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Set

from src.config.settings import ReplicationSettings
from src.errors import (
    ReplicationPermanentError,
    ReplicationTransientError
)
from src.models import AckStatus, ObjectEvent, ReplicatedObject, ReplicationAck, ReplicationRule
from src.monitoring.metrics import MetricsCollector
from src.storage.backends.base import ReplicaStore
from .alarms import ReplicationLagAlarm


def supersedes(current: ReplicatedObject, incoming: ReplicatedObject) -> bool:
    """Last-writer-wins: True if ``current`` is strictly newer than ``incoming``.

    Ties on the origin timestamp are broken by origin region id so that both
    regions pick the same winner. A version whose provenance is unknown never
    wins.
    """
    if not current.provenance_known:
        return False
    return (current.origin_timestamp, current.origin_region) > \
        (incoming.origin_timestamp, incoming.origin_region)


class ReplicationEngine:
    """Replicates one region's changes to its peer according to a single rule"""

    def __init__(
        self,
        rule: ReplicationRule,
        source_store: ReplicaStore,
        dest_store: ReplicaStore,
        settings: Optional[ReplicationSettings] = None,
        alarm: Optional[ReplicationLagAlarm] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable = asyncio.sleep
    ):
        if rule.source_region != source_store.region_id or rule.dest_region != dest_store.region_id:
            raise ValueError(
                f"Rule {rule.source_region}->{rule.dest_region} does not match stores "
                f"{source_store.region_id}->{dest_store.region_id}"
            )
        self.rule = rule
        self.source_store = source_store
        self.dest_store = dest_store
        self.settings = settings or ReplicationSettings()
        self.alarm = alarm or ReplicationLagAlarm(metrics)
        self.metrics = metrics
        self._clock = clock
        self._sleep = sleep
        self._lag: Dict[str, float] = {}
        self._tails: Dict[str, asyncio.Task] = {}  # key -> last scheduled propagation
        self._inflight: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    @property
    def source_region(self) -> str:
        return self.rule.source_region

    @property
    def dest_region(self) -> str:
        return self.rule.dest_region

    @property
    def pending_count(self) -> int:
        return len(self._inflight)

    def lag_seconds(self, key: str) -> Optional[float]:
        """Lag of the last successful delivery of ``key``, None if never delivered"""
        return self._lag.get(key)

    def on_change(self, event: ObjectEvent) -> None:
        """Change-feed listener: schedule propagation without blocking the write"""
        self.submit(event)

    def submit(self, event: ObjectEvent) -> asyncio.Task:
        """Schedule propagation, serialized behind earlier events for the same key"""
        previous = self._tails.get(event.key)
        task = asyncio.ensure_future(self._propagate_after(previous, event))
        self._tails[event.key] = task
        self._inflight.add(task)
        task.add_done_callback(lambda done, key=event.key: self._on_done(key, done))
        self._update_pending()
        return task

    async def _propagate_after(self, previous: Optional[asyncio.Task], event: ObjectEvent) -> ReplicationAck:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        return await self.propagate(event)

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if self._tails.get(key) is task:
            del self._tails[key]
        self._update_pending()

    def _update_pending(self) -> None:
        if self.metrics:
            self.metrics.update_replication_metrics(
                self.source_region, self.dest_region, pending=len(self._inflight)
            )

    async def drain(self) -> None:
        """Wait until every scheduled propagation has finished"""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def propagate(self, event: ObjectEvent) -> ReplicationAck:
        """Propagate one committed change to the peer region"""
        if event.is_replica:
            self.logger.debug(
                f"Not re-replicating {event.key} version {event.version_id}: "
                f"arrived in {event.region_id} as a replica"
            )
            return self._finish(ReplicationAck(AckStatus.SKIPPED_REPLICA, event.key, event.version_id))

        if event.tombstone and not self.rule.delete_marker_replication:
            return self._finish(
                ReplicationAck(AckStatus.SKIPPED_DELETE_DISABLED, event.key, event.version_id)
            )

        try:
            self._validate(event)
        except ReplicationPermanentError as e:
            return self._fail(event, "permanent", e, attempts=0)

        attempts = 0
        delay = self.settings.initial_backoff
        while True:
            attempts += 1
            try:
                status = await asyncio.wait_for(
                    self._deliver(event), timeout=self.settings.attempt_timeout
                )
                break
            except (ReplicationTransientError, asyncio.TimeoutError) as e:
                error = e if str(e) else ReplicationTransientError(
                    f"attempt timed out after {self.settings.attempt_timeout}s"
                )
                if attempts >= self.settings.max_attempts:
                    return self._fail(event, "exhausted", error, attempts)
                self.logger.warning(
                    f"Replication {self.source_region}->{self.dest_region} of {event.key} "
                    f"attempt {attempts} failed: {str(error)}; retrying in {delay:.2f}s"
                )
                if self.metrics:
                    self.metrics.record_replication_retry(self.source_region, self.dest_region)
                await self._sleep(delay)
                delay = min(delay * 2, self.settings.max_backoff)
            except ReplicationPermanentError as e:
                return self._fail(event, "permanent", e, attempts)
            except Exception as e:
                self.logger.exception(f"Unexpected replication failure for {event.key}")
                return self._fail(event, "permanent", e, attempts)

        ack = ReplicationAck(status, event.key, event.version_id, attempts=attempts)
        if status in (AckStatus.REPLICATED, AckStatus.DELETED):
            ack.lag_seconds = max(0.0, self._clock() - event.object.origin_timestamp)
            self._lag[event.key] = ack.lag_seconds
            if self.metrics:
                self.metrics.update_replication_metrics(
                    self.source_region, self.dest_region, lag_seconds=ack.lag_seconds
                )
        self.alarm.clear(self.source_region, self.dest_region, event.key)
        return self._finish(ack)

    def _validate(self, event: ObjectEvent) -> None:
        obj = event.object
        if event.region_id != self.source_region:
            raise ReplicationPermanentError(
                f"Event from {event.region_id} routed to engine for {self.source_region}"
            )
        if not obj.key:
            raise ReplicationPermanentError("Object has an empty key")
        if not obj.version_id:
            raise ReplicationPermanentError(f"Object {obj.key} has no version id")
        if not event.tombstone and not isinstance(obj.payload, (bytes, bytearray)):
            raise ReplicationPermanentError(f"Object {obj.key} payload is not bytes")

    async def _deliver(self, event: ObjectEvent) -> AckStatus:
        """One delivery attempt against the destination store"""
        obj = event.object
        current = await self.dest_store.head(obj.key)

        if current is not None:
            if current.version_id == obj.version_id and current.tombstone == event.tombstone:
                # Already applied by an earlier attempt
                return AckStatus.DELETED if event.tombstone else AckStatus.REPLICATED
            if supersedes(current, obj):
                self.logger.warning(
                    f"Conflict on {obj.key}: {self.dest_region} holds version {current.version_id} "
                    f"from {current.origin_region} newer than {obj.version_id} from {obj.origin_region}"
                )
                if self.metrics:
                    self.metrics.record_replication_conflict(self.source_region, self.dest_region)
                return AckStatus.SUPERSEDED

        if event.tombstone:
            await self.dest_store.delete_replica(obj)
            return AckStatus.DELETED

        await self.dest_store.put_replica(obj, storage_class=self.dest_store.region.storage_class)
        return AckStatus.REPLICATED

    def _fail(self, event: ObjectEvent, reason: str, error: Exception, attempts: int) -> ReplicationAck:
        self.alarm.raise_alarm(
            self.source_region, self.dest_region, event, reason, str(error), attempts
        )
        return self._finish(ReplicationAck(
            AckStatus.FAILED, event.key, event.version_id, attempts=attempts, error=str(error)
        ))

    def _finish(self, ack: ReplicationAck) -> ReplicationAck:
        if self.metrics:
            self.metrics.record_replication(self.source_region, self.dest_region, ack.status.value)
        return ack
