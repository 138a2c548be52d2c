"""Operator-visible alarm for replication events that could not be delivered."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from src.models import ObjectEvent
from src.monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class ReplicationAlarmEntry:
    """An event that exhausted its retries or failed permanently"""
    source_region: str
    dest_region: str
    event: ObjectEvent
    reason: str          # "exhausted" or "permanent"
    error: str
    attempts: int
    raised_at: float = field(default_factory=time.time)


class ReplicationLagAlarm:
    """Collects undeliverable replication events until an operator acknowledges them.

    Entries are keyed by direction and object key; a newer failure for the
    same key replaces the older entry, since re-driving the newest version
    supersedes the older one.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.metrics = metrics
        self._entries: Dict[Tuple[str, str, str], ReplicationAlarmEntry] = {}
        self._subscribers: List[Callable[[ReplicationAlarmEntry], None]] = []

    def subscribe(self, callback: Callable[[ReplicationAlarmEntry], None]) -> None:
        self._subscribers.append(callback)

    def raise_alarm(self, source_region: str, dest_region: str, event: ObjectEvent,
                    reason: str, error: str, attempts: int) -> ReplicationAlarmEntry:
        entry = ReplicationAlarmEntry(
            source_region=source_region,
            dest_region=dest_region,
            event=event,
            reason=reason,
            error=error,
            attempts=attempts
        )
        self._entries[(source_region, dest_region, event.key)] = entry
        logger.error(
            f"Replication alarm {source_region}->{dest_region} for {event.key} "
            f"version {event.version_id}: {reason} after {attempts} attempt(s): {error}"
        )
        if self.metrics:
            self.metrics.record_replication_alarm(source_region, dest_region, reason)
        for callback in list(self._subscribers):
            try:
                callback(entry)
            except Exception as e:
                logger.error(f"Replication alarm subscriber failed: {str(e)}")
        return entry

    def clear(self, source_region: str, dest_region: str, key: str) -> None:
        """Drop the entry for a key once a later event for it was delivered"""
        self._entries.pop((source_region, dest_region, key), None)

    def acknowledge(self, source_region: str, dest_region: str, key: str) -> Optional[ReplicationAlarmEntry]:
        return self._entries.pop((source_region, dest_region, key), None)

    def pending(self) -> List[ReplicationAlarmEntry]:
        return sorted(self._entries.values(), key=lambda entry: entry.raised_at)

    def __len__(self) -> int:
        return len(self._entries)
