"""Global test configuration and fixtures."""
import time

import pytest

from src.config.settings import (
    DnsSettings,
    EdgeSettings,
    HealthCheckSettings,
    RegionConfig,
    ReplicationSettings,
    TopologyConfig,
)
from src.models import (
    EventType,
    ObjectEvent,
    Region,
    RegionRole,
    ReplicatedObject,
)
from src.storage.backends.memory_backend import InMemoryReplicaStore


@pytest.fixture
def primary_region():
    return Region(
        region_id="us-east-1",
        role=RegionRole.PRIMARY,
        endpoint="http://primary.example.test",
        bucket="site-us-east-1"
    )


@pytest.fixture
def secondary_region():
    return Region(
        region_id="us-west-2",
        role=RegionRole.SECONDARY,
        endpoint="http://secondary.example.test",
        storage_class="STANDARD_IA",
        bucket="site-us-west-2"
    )


@pytest.fixture
def primary_store(primary_region):
    return InMemoryReplicaStore(primary_region)


@pytest.fixture
def secondary_store(secondary_region):
    return InMemoryReplicaStore(secondary_region)


@pytest.fixture
def make_event():
    """Build an ObjectEvent as a store would emit it."""
    def _make(region_id, key="index.html", version_id="v1", payload=b"<html>v1</html>",
              event_type=EventType.PUT, is_replica=False, origin_timestamp=None, origin_region=None):
        obj = ReplicatedObject(
            key=key,
            version_id=version_id,
            payload=payload if event_type is EventType.PUT else b"",
            origin_region=origin_region or region_id,
            is_replica=is_replica,
            tombstone=event_type is EventType.DELETE,
            origin_timestamp=time.time() if origin_timestamp is None else origin_timestamp
        )
        return ObjectEvent(event_type=event_type, object=obj, region_id=region_id)
    return _make


@pytest.fixture
def topology_config():
    """A complete two-region topology with fast timings."""
    return TopologyConfig(
        primary=RegionConfig("us-east-1", RegionRole.PRIMARY, "http://127.0.0.1:9001", "site-east"),
        secondary=RegionConfig("us-west-2", RegionRole.SECONDARY, "http://127.0.0.1:9002", "site-west"),
        dns=DnsSettings(record_name="www.example.com", edge_target="d111111abcdef8.cloudfront.net"),
        replication=ReplicationSettings(max_attempts=3, initial_backoff=0.01, max_backoff=0.05,
                                        attempt_timeout=1.0),
        health=HealthCheckSettings(interval=0.05, failure_threshold=2, timeout=0.5),
        edge=EdgeSettings(bind_address="127.0.0.1", port=18080, origin_timeout=1.0),
        metrics_enabled=False
    )
