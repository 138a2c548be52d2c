"""Data models for the active-active failover control plane."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

# Object metadata keys carrying replication provenance across stores
META_REPLICA = "replica"
META_ORIGIN_REGION = "origin-region"
META_ORIGIN_TIMESTAMP = "origin-timestamp"
META_SOURCE_VERSION = "source-version-id"

DEFAULT_FAILOVER_STATUS_CODES = frozenset({403, 404, 500, 502, 503, 504})


class RegionRole(Enum):
    """Logical role of a region. Both roles accept writes."""
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


@dataclass(frozen=True)
class Region:
    """A region hosting one replica of the object store."""
    region_id: str
    role: RegionRole
    endpoint: str
    storage_class: str = "STANDARD"
    bucket: str = ""


@dataclass(frozen=True)
class ReplicatedObject:
    """One version of an object as seen by a replica store."""
    key: str
    version_id: Optional[str]
    payload: bytes = b""
    metadata: Dict[str, str] = field(default_factory=dict)
    origin_region: str = ""
    is_replica: bool = False
    tombstone: bool = False
    origin_timestamp: float = field(default_factory=time.time)
    storage_class: str = "STANDARD"
    # False for versions whose origin region and timestamp could not be recovered
    provenance_known: bool = True


class EventType(Enum):
    """Kind of committed change."""
    PUT = "PUT"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ObjectEvent:
    """A committed write or delete in one region."""
    event_type: EventType
    object: ReplicatedObject
    region_id: str
    sequence: int = 0

    @property
    def key(self) -> str:
        return self.object.key

    @property
    def version_id(self) -> Optional[str]:
        return self.object.version_id

    @property
    def is_replica(self) -> bool:
        return self.object.is_replica

    @property
    def tombstone(self) -> bool:
        return self.event_type is EventType.DELETE or self.object.tombstone


class ReplicationDirection(Enum):
    """Direction of a replication rule relative to region roles."""
    PRIMARY_TO_SECONDARY = "primary-to-secondary"
    SECONDARY_TO_PRIMARY = "secondary-to-primary"


@dataclass(frozen=True)
class ReplicationRule:
    """One direction of the bidirectional replication pair."""
    source_region: str
    dest_region: str
    direction: ReplicationDirection
    delete_marker_replication: bool = True


class AckStatus(Enum):
    """Outcome of propagating one event."""
    REPLICATED = "replicated"
    DELETED = "deleted"
    SKIPPED_REPLICA = "skipped_replica"
    SKIPPED_DELETE_DISABLED = "skipped_delete_disabled"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass
class ReplicationAck:
    """Result of a propagate call."""
    status: AckStatus
    key: str
    version_id: Optional[str] = None
    attempts: int = 0
    lag_seconds: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not AckStatus.FAILED


class HealthStatus(Enum):
    """Debounced health of a region."""
    UP = "UP"
    DOWN = "DOWN"


@dataclass(frozen=True)
class HealthState:
    """Immutable health snapshot of a region, replaced on every probe."""
    region_id: str
    status: HealthStatus = HealthStatus.UP
    consecutive_failures: int = 0
    last_transition_time: Optional[float] = None
    last_probe_time: Optional[float] = None

    @property
    def is_up(self) -> bool:
        return self.status is HealthStatus.UP


@dataclass(frozen=True)
class HealthChange:
    """Published whenever a region's status flips."""
    region_id: str
    previous: HealthState
    current: HealthState


@dataclass(frozen=True)
class ProbeResult:
    """Raw outcome of a single liveness probe."""
    region_id: str
    success: bool
    status_code: Optional[int] = None
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class RecordPriority(Enum):
    """Route 53 style failover role of a DNS record."""
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


@dataclass(frozen=True)
class FailoverRecord:
    """A failover-routed DNS answer record."""
    set_identifier: str
    priority: RecordPriority
    name: str
    target: str
    health_check_ref: Optional[str] = None
    evaluate_target_health: bool = True
    ttl: int = 60
    alias_hosted_zone_id: Optional[str] = None


@dataclass(frozen=True)
class Origin:
    """An upstream origin behind the edge layer."""
    origin_id: str
    base_url: str
    region_id: Optional[str] = None


@dataclass(frozen=True)
class OriginGroup:
    """Ordered primary/secondary origin pair with its failover trigger codes."""
    group_id: str
    primary_origin_id: str
    secondary_origin_id: str
    failover_status_codes: FrozenSet[int] = DEFAULT_FAILOVER_STATUS_CODES


@dataclass
class EdgeRequest:
    """Request as received by the edge layer."""
    method: str
    path: str
    query_string: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class EdgeResponse:
    """Response returned to the edge client."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    origin_id: Optional[str] = None
    failed_over: bool = False
