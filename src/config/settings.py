"""Topology configuration management.

All values are supplied at startup (environment variables, optionally from a
``.env`` file) and are immutable for the lifetime of the process.
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from dotenv import load_dotenv

from src.errors import ConfigurationError
from src.models import DEFAULT_FAILOVER_STATUS_CODES, Region, RegionRole


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == 'true'


def parse_status_range(raw: str) -> Tuple[int, int]:
    """Parse ``"200"`` or ``"200-299"`` into an inclusive range."""
    try:
        if '-' in raw:
            low, high = (int(part) for part in raw.split('-', 1))
        else:
            low = high = int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid expected status {raw!r}")
    if not 100 <= low <= high <= 599:
        raise ConfigurationError(f"Invalid expected status range {raw!r}")
    return low, high


def parse_status_codes(raw: str) -> FrozenSet[int]:
    """Parse a comma separated list of HTTP status codes."""
    try:
        codes = frozenset(int(code) for code in raw.split(',') if code.strip())
    except ValueError:
        raise ConfigurationError(f"Invalid failover status codes {raw!r}")
    if not codes:
        raise ConfigurationError("At least one failover status code is required")
    for code in codes:
        if not 400 <= code <= 599:
            raise ConfigurationError(f"Failover status code {code} is not an error status")
    return codes


@dataclass(frozen=True)
class RegionConfig:
    region_id: str
    role: RegionRole
    endpoint: str
    bucket: str = ""
    storage_class: str = "STANDARD"

    def __post_init__(self):
        if not self.region_id:
            raise ConfigurationError(f"{self.role.value} region id is required")
        if not self.endpoint.startswith(('http://', 'https://')):
            raise ConfigurationError(
                f"Region {self.region_id} endpoint must be an http(s) URL, got {self.endpoint!r}"
            )

    def to_region(self) -> Region:
        return Region(
            region_id=self.region_id,
            role=self.role,
            endpoint=self.endpoint.rstrip('/'),
            storage_class=self.storage_class,
            bucket=self.bucket
        )


@dataclass(frozen=True)
class ReplicationSettings:
    max_attempts: int = 5
    initial_backoff: float = 1.0   # seconds
    max_backoff: float = 30.0      # seconds
    attempt_timeout: float = 10.0  # seconds, per attempt
    delete_marker_replication: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("Replication max_attempts must be at least 1")
        if self.initial_backoff < 0 or self.max_backoff < self.initial_backoff:
            raise ConfigurationError("Replication backoff must satisfy 0 <= initial <= max")
        if self.attempt_timeout <= 0:
            raise ConfigurationError("Replication attempt_timeout must be positive")


@dataclass(frozen=True)
class HealthCheckSettings:
    path: str = "/health"
    interval: float = 30.0
    failure_threshold: int = 3
    timeout: float = 5.0
    expected_status: Tuple[int, int] = (200, 299)

    def __post_init__(self):
        if self.interval <= 0:
            raise ConfigurationError(f"Health check interval must be positive, got {self.interval}")
        if self.failure_threshold <= 0:
            raise ConfigurationError(
                f"Health check failure_threshold must be positive, got {self.failure_threshold}"
            )
        if self.timeout <= 0:
            raise ConfigurationError(f"Health check timeout must be positive, got {self.timeout}")
        if not self.path.startswith('/'):
            raise ConfigurationError(f"Health check path must start with '/', got {self.path!r}")


@dataclass(frozen=True)
class DnsSettings:
    record_name: str
    edge_target: str
    secondary_target: Optional[str] = None  # defaults to edge_target
    hosted_zone_id: Optional[str] = None
    ttl: int = 60
    evaluate_target_health: bool = True
    alias_hosted_zone_id: Optional[str] = None
    primary_health_check_id: Optional[str] = None
    secondary_health_check_id: Optional[str] = None

    def __post_init__(self):
        if not self.record_name:
            raise ConfigurationError("DNS record name is required")
        if not self.edge_target:
            raise ConfigurationError("DNS edge target is required")
        if self.ttl <= 0:
            raise ConfigurationError(f"DNS TTL must be positive, got {self.ttl}")


@dataclass(frozen=True)
class EdgeSettings:
    bind_address: str = "0.0.0.0"
    port: int = 8080
    failover_status_codes: FrozenSet[int] = DEFAULT_FAILOVER_STATUS_CODES
    origin_timeout: float = 10.0

    def __post_init__(self):
        if self.origin_timeout <= 0:
            raise ConfigurationError("Edge origin_timeout must be positive")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid edge port {self.port}")


@dataclass(frozen=True)
class TopologyConfig:
    primary: RegionConfig
    secondary: RegionConfig
    dns: DnsSettings
    replication: ReplicationSettings = field(default_factory=ReplicationSettings)
    health: HealthCheckSettings = field(default_factory=HealthCheckSettings)
    edge: EdgeSettings = field(default_factory=EdgeSettings)
    log_level: str = "INFO"
    metrics_enabled: bool = True
    metrics_port: int = 9100

    def __post_init__(self):
        if self.primary.region_id == self.secondary.region_id:
            raise ConfigurationError(
                f"Primary and secondary regions must differ, both are {self.primary.region_id}"
            )
        if self.primary.role is not RegionRole.PRIMARY or self.secondary.role is not RegionRole.SECONDARY:
            raise ConfigurationError("Region roles must be one PRIMARY and one SECONDARY")

    @property
    def regions(self) -> Tuple[Region, Region]:
        return self.primary.to_region(), self.secondary.to_region()


def load_topology_config(env_file: Optional[str] = None) -> TopologyConfig:
    """Load topology configuration from environment variables."""
    load_dotenv(env_file)

    primary = RegionConfig(
        region_id=os.getenv('PRIMARY_REGION_ID', 'us-east-1'),
        role=RegionRole.PRIMARY,
        endpoint=os.getenv('PRIMARY_ENDPOINT', ''),
        bucket=os.getenv('PRIMARY_BUCKET', ''),
        storage_class=os.getenv('PRIMARY_STORAGE_CLASS', 'STANDARD')
    )

    secondary = RegionConfig(
        region_id=os.getenv('SECONDARY_REGION_ID', 'us-west-2'),
        role=RegionRole.SECONDARY,
        endpoint=os.getenv('SECONDARY_ENDPOINT', ''),
        bucket=os.getenv('SECONDARY_BUCKET', ''),
        storage_class=os.getenv('SECONDARY_STORAGE_CLASS', 'STANDARD')
    )

    replication = ReplicationSettings(
        max_attempts=_env_int('REPLICATION_MAX_ATTEMPTS', 5),
        initial_backoff=_env_float('REPLICATION_INITIAL_BACKOFF', 1.0),
        max_backoff=_env_float('REPLICATION_MAX_BACKOFF', 30.0),
        attempt_timeout=_env_float('REPLICATION_ATTEMPT_TIMEOUT', 10.0),
        delete_marker_replication=_env_bool('DELETE_MARKER_REPLICATION', True)
    )

    health = HealthCheckSettings(
        path=os.getenv('HEALTH_CHECK_PATH', '/health'),
        interval=_env_float('HEALTH_CHECK_INTERVAL', 30.0),
        failure_threshold=_env_int('HEALTH_CHECK_FAILURE_THRESHOLD', 3),
        timeout=_env_float('HEALTH_CHECK_TIMEOUT', 5.0),
        expected_status=parse_status_range(os.getenv('HEALTH_CHECK_EXPECTED_STATUS', '200-299'))
    )

    dns = DnsSettings(
        record_name=os.getenv('RECORD_NAME', ''),
        edge_target=os.getenv('EDGE_TARGET', ''),
        secondary_target=os.getenv('SECONDARY_RECORD_TARGET'),
        hosted_zone_id=os.getenv('HOSTED_ZONE_ID'),
        ttl=_env_int('RECORD_TTL', 60),
        evaluate_target_health=_env_bool('EVALUATE_TARGET_HEALTH', True),
        alias_hosted_zone_id=os.getenv('ALIAS_HOSTED_ZONE_ID'),
        primary_health_check_id=os.getenv('PRIMARY_HEALTH_CHECK_ID'),
        secondary_health_check_id=os.getenv('SECONDARY_HEALTH_CHECK_ID')
    )

    edge = EdgeSettings(
        bind_address=os.getenv('EDGE_BIND_ADDRESS', '0.0.0.0'),
        port=_env_int('EDGE_PORT', 8080),
        failover_status_codes=parse_status_codes(
            os.getenv('FAILOVER_STATUS_CODES', '403,404,500,502,503,504')
        ),
        origin_timeout=_env_float('ORIGIN_TIMEOUT', 10.0)
    )

    return TopologyConfig(
        primary=primary,
        secondary=secondary,
        dns=dns,
        replication=replication,
        health=health,
        edge=edge,
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        metrics_enabled=_env_bool('METRICS_ENABLED', True),
        metrics_port=_env_int('METRICS_PORT', 9100)
    )
