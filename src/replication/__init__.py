"""Cross-region replication package."""

from .alarms import ReplicationLagAlarm
from .engine import ReplicationEngine
from .topology import BidirectionalReplicator

__all__ = ["ReplicationEngine", "BidirectionalReplicator", "ReplicationLagAlarm"]
