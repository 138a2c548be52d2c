"""
Failover control plane wiring.

Builds the replica stores, the bidirectional replicator, the health monitor,
the DNS failover controller and the edge failover group from one
TopologyConfig, and starts and stops them together.
"""

import logging
from typing import Dict, Optional

from src.config.settings import TopologyConfig
from src.models import Origin, OriginGroup
from src.monitoring.metrics import MetricsCollector
from src.health.monitor import HealthMonitor
from src.replication.topology import BidirectionalReplicator
from src.routing.dns_failover import DnsFailoverController, DnsZoneConfig
from src.routing.edge_failover import EdgeFailoverGroup
from src.routing.edge_server import EdgeServer
from src.routing.route53 import Route53FailoverPublisher
from src.storage.backends import ReplicaStore, get_replica_store

logger = logging.getLogger(__name__)

ORIGIN_GROUP_ID = "regional-failover"


def origin_id_for(region_id: str) -> str:
    return f"{region_id}-origin"


class FailoverControlPlane:
    """The complete active-active topology of one deployment"""

    def __init__(
        self,
        config: TopologyConfig,
        stores: Optional[Dict[str, ReplicaStore]] = None,
        store_backend: str = "memory",
        metrics: Optional[MetricsCollector] = None
    ):
        self.config = config
        self.metrics = metrics or MetricsCollector(config.primary.region_id)
        self.primary, self.secondary = config.regions

        if stores is None:
            stores = {
                region.region_id: get_replica_store(region, store_backend)
                for region in (self.primary, self.secondary)
            }
        self.stores = stores

        self.replicator = BidirectionalReplicator(
            self.stores[self.primary.region_id],
            self.stores[self.secondary.region_id],
            settings=config.replication,
            metrics=self.metrics
        )

        self.monitor = HealthMonitor(
            [self.primary, self.secondary], config.health, metrics=self.metrics
        )

        self.zone = DnsZoneConfig.from_settings(config.dns, self.primary, self.secondary)
        self.dns = DnsFailoverController(self.zone, metrics=self.metrics)
        self.dns.bind(self.monitor)

        origins = {
            origin_id_for(region.region_id): Origin(
                origin_id=origin_id_for(region.region_id),
                base_url=region.endpoint,
                region_id=region.region_id
            )
            for region in (self.primary, self.secondary)
        }
        self.edge = EdgeFailoverGroup(
            OriginGroup(
                group_id=ORIGIN_GROUP_ID,
                primary_origin_id=origin_id_for(self.primary.region_id),
                secondary_origin_id=origin_id_for(self.secondary.region_id),
                failover_status_codes=config.edge.failover_status_codes
            ),
            origins,
            timeout=config.edge.origin_timeout,
            metrics=self.metrics
        )
        self.edge_server = EdgeServer(self.edge, config.edge)

    async def publish_dns(self, client=None) -> Optional[str]:
        """Push both failover records to Route 53"""
        publisher = Route53FailoverPublisher(self.zone, client=client)
        return await publisher.publish()

    async def start(self, serve_edge: bool = True) -> None:
        self.replicator.start()
        await self.monitor.start()
        if serve_edge:
            await self.edge_server.start()
        logger.info(
            f"Control plane up: {self.primary.region_id} (PRIMARY) <-> "
            f"{self.secondary.region_id} (SECONDARY), record {self.zone.record_name}"
        )

    async def stop(self) -> None:
        await self.edge_server.stop()
        await self.monitor.close()
        await self.replicator.stop()
        await self.edge.close()
        if self.replicator.alarm.pending():
            logger.warning(f"{len(self.replicator.alarm)} replication alarms still open at shutdown")
        logger.info("Control plane stopped")
