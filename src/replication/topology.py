"""Bidirectional replication between the two regions of the topology."""

import logging
from typing import Dict, List, Optional

from src.config.settings import ReplicationSettings
from src.errors import ConfigurationError
from src.models import Region, RegionRole, ReplicationDirection, ReplicationRule
from src.monitoring.metrics import MetricsCollector
from src.storage.backends.base import ReplicaStore
from .alarms import ReplicationLagAlarm
from .engine import ReplicationEngine

logger = logging.getLogger(__name__)


def build_rule_pair(primary: Region, secondary: Region,
                    delete_marker_replication: bool = True) -> List[ReplicationRule]:
    """The two rules of an active-active pair, one per direction"""
    return [
        ReplicationRule(
            source_region=primary.region_id,
            dest_region=secondary.region_id,
            direction=ReplicationDirection.PRIMARY_TO_SECONDARY,
            delete_marker_replication=delete_marker_replication
        ),
        ReplicationRule(
            source_region=secondary.region_id,
            dest_region=primary.region_id,
            direction=ReplicationDirection.SECONDARY_TO_PRIMARY,
            delete_marker_replication=delete_marker_replication
        ),
    ]


def validate_rule_pair(rules: List[ReplicationRule]) -> None:
    """Exactly two rules forming opposite directions between the same two regions"""
    if len(rules) != 2:
        raise ConfigurationError(f"Expected exactly two replication rules, got {len(rules)}")
    first, second = rules
    if first.source_region == first.dest_region:
        raise ConfigurationError(f"Replication rule replicates {first.source_region} onto itself")
    if (first.source_region, first.dest_region) != (second.dest_region, second.source_region):
        raise ConfigurationError(
            f"Replication rules {first.source_region}->{first.dest_region} and "
            f"{second.source_region}->{second.dest_region} do not form a bidirectional pair"
        )
    if first.direction == second.direction:
        raise ConfigurationError(f"Both replication rules have direction {first.direction.value}")


class BidirectionalReplicator:
    """Owns the two replication engines of an active-active pair and wires them
    to their stores' change feeds."""

    def __init__(
        self,
        primary_store: ReplicaStore,
        secondary_store: ReplicaStore,
        rules: Optional[List[ReplicationRule]] = None,
        settings: Optional[ReplicationSettings] = None,
        alarm: Optional[ReplicationLagAlarm] = None,
        metrics: Optional[MetricsCollector] = None,
        **engine_kwargs
    ):
        if primary_store.region.role is not RegionRole.PRIMARY:
            raise ConfigurationError(f"Store for {primary_store.region_id} is not the PRIMARY region")
        if secondary_store.region.role is not RegionRole.SECONDARY:
            raise ConfigurationError(f"Store for {secondary_store.region_id} is not the SECONDARY region")

        self.settings = settings or ReplicationSettings()
        self.rules = rules or build_rule_pair(
            primary_store.region, secondary_store.region, self.settings.delete_marker_replication
        )
        validate_rule_pair(self.rules)

        self.stores: Dict[str, ReplicaStore] = {
            primary_store.region_id: primary_store,
            secondary_store.region_id: secondary_store,
        }
        for rule in self.rules:
            if rule.source_region not in self.stores or rule.dest_region not in self.stores:
                raise ConfigurationError(
                    f"Replication rule {rule.source_region}->{rule.dest_region} "
                    f"references an unknown region"
                )

        self.alarm = alarm or ReplicationLagAlarm(metrics)
        self.engines: Dict[str, ReplicationEngine] = {
            rule.source_region: ReplicationEngine(
                rule,
                self.stores[rule.source_region],
                self.stores[rule.dest_region],
                settings=self.settings,
                alarm=self.alarm,
                metrics=metrics,
                **engine_kwargs
            )
            for rule in self.rules
        }
        self._started = False

    def engine_for(self, source_region: str) -> ReplicationEngine:
        return self.engines[source_region]

    def start(self) -> None:
        """Subscribe each engine to its source store's change feed"""
        if self._started:
            return
        for region_id, engine in self.engines.items():
            self.stores[region_id].add_listener(engine.on_change)
        self._started = True
        logger.info(
            "Bidirectional replication started: "
            + ", ".join(f"{r.source_region}->{r.dest_region}" for r in self.rules)
        )

    async def drain(self) -> None:
        """Wait until both directions are quiescent"""
        while any(engine.pending_count for engine in self.engines.values()):
            for engine in self.engines.values():
                await engine.drain()

    async def stop(self) -> None:
        """Stop accepting new changes and finish in-flight propagation"""
        if not self._started:
            return
        for region_id, engine in self.engines.items():
            self.stores[region_id].remove_listener(engine.on_change)
        self._started = False
        await self.drain()
        logger.info("Bidirectional replication stopped")
