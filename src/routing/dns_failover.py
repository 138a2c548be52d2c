"""
DNS failover controller.

Two failover-routed records share one query name. Which one answers is
decided at resolution time from the health check bound to the PRIMARY
record; the controller never polls and never rewrites records.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from src.config.settings import DnsSettings
from src.errors import ConfigurationError, HealthCheckUnavailable
from src.models import FailoverRecord, HealthChange, HealthState, HealthStatus, RecordPriority, Region
from src.monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)

HealthSource = Callable[[str], HealthState]


def normalize_name(name: str) -> str:
    return name.lower().rstrip('.')


@dataclass(frozen=True)
class DnsZoneConfig:
    """Explicitly owned zone configuration: one name, two failover records"""
    record_name: str
    primary: FailoverRecord
    secondary: FailoverRecord
    hosted_zone_id: Optional[str] = None
    health_check_regions: Dict[str, str] = field(default_factory=dict)  # health check ref -> region id
    # Refs made up for in-process resolution; they name no Route 53 health check
    local_health_check_refs: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if self.primary.priority is not RecordPriority.PRIMARY:
            raise ConfigurationError(f"Record {self.primary.set_identifier} is not PRIMARY")
        if self.secondary.priority is not RecordPriority.SECONDARY:
            raise ConfigurationError(f"Record {self.secondary.set_identifier} is not SECONDARY")
        for record in (self.primary, self.secondary):
            if normalize_name(record.name) != normalize_name(self.record_name):
                raise ConfigurationError(
                    f"Record {record.set_identifier} answers {record.name}, not {self.record_name}"
                )
        if self.primary.set_identifier == self.secondary.set_identifier:
            raise ConfigurationError("Failover records must have distinct set identifiers")

    @classmethod
    def from_settings(cls, dns: DnsSettings, primary: Region, secondary: Region) -> "DnsZoneConfig":
        primary_ref = dns.primary_health_check_id or f"hc-{primary.region_id}"
        secondary_ref = dns.secondary_health_check_id or f"hc-{secondary.region_id}"
        return cls(
            record_name=dns.record_name,
            hosted_zone_id=dns.hosted_zone_id,
            primary=FailoverRecord(
                set_identifier=f"{primary.region_id}-primary",
                priority=RecordPriority.PRIMARY,
                name=dns.record_name,
                target=dns.edge_target,
                health_check_ref=primary_ref,
                evaluate_target_health=dns.evaluate_target_health,
                ttl=dns.ttl,
                alias_hosted_zone_id=dns.alias_hosted_zone_id
            ),
            secondary=FailoverRecord(
                set_identifier=f"{secondary.region_id}-secondary",
                priority=RecordPriority.SECONDARY,
                name=dns.record_name,
                target=dns.secondary_target or dns.edge_target,
                health_check_ref=secondary_ref,
                evaluate_target_health=dns.evaluate_target_health,
                ttl=dns.ttl,
                alias_hosted_zone_id=dns.alias_hosted_zone_id
            ),
            health_check_regions={primary_ref: primary.region_id, secondary_ref: secondary.region_id},
            local_health_check_refs=frozenset(
                ref for ref, configured in (
                    (primary_ref, dns.primary_health_check_id),
                    (secondary_ref, dns.secondary_health_check_id),
                )
                if not configured
            )
        )

    @property
    def records(self) -> Tuple[FailoverRecord, FailoverRecord]:
        return self.primary, self.secondary


class DnsFailoverController:
    """Selects the effective failover record for the zone's query name"""

    def __init__(self, zone: DnsZoneConfig, health_source: Optional[HealthSource] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.zone = zone
        self.metrics = metrics
        self._health_source = health_source
        self._health: Dict[str, HealthState] = {}
        self._selected = zone.primary
        self.transitions = 0

    def on_health_change(self, region_id: str, state: HealthState) -> None:
        """Record the latest health of a region and log any change of the effective answer"""
        # Copy-on-write so concurrent resolvers always read a consistent mapping
        health = dict(self._health)
        health[region_id] = state
        self._health = health

        selected = self.resolve()
        if selected.set_identifier != self._selected.set_identifier:
            previous, self._selected = self._selected, selected
            self.transitions += 1
            logger.warning(
                f"DNS answer for {self.zone.record_name} moved from {previous.priority.value} "
                f"({previous.target}) to {selected.priority.value} ({selected.target})"
            )
            if self.metrics:
                self.metrics.record_dns_transition(self.zone.record_name, selected.priority.value)

    def handle_change(self, change: HealthChange) -> None:
        self.on_health_change(change.region_id, change.current)

    def bind(self, monitor) -> None:
        """Seed from a HealthMonitor's current snapshots and follow its transitions"""
        for region_id, state in monitor.states().items():
            if state.last_probe_time is not None:
                self.on_health_change(region_id, state)
        monitor.add_callback(self.handle_change)

    def lookup_health(self, health_check_ref: str) -> HealthState:
        """Health state behind a health check; raises HealthCheckUnavailable"""
        if self._health_source is not None:
            return self._health_source(health_check_ref)
        region_id = self.zone.health_check_regions.get(health_check_ref)
        if region_id is None:
            raise HealthCheckUnavailable(health_check_ref)
        state = self._health.get(region_id)
        if state is None:
            raise HealthCheckUnavailable(health_check_ref)
        return state

    def resolve(self, name: Optional[str] = None) -> FailoverRecord:
        """The record answering ``name`` right now. Side-effect free."""
        if name is not None and normalize_name(name) != normalize_name(self.zone.record_name):
            raise KeyError(f"{name} is not served by this zone")

        primary = self.zone.primary
        if not primary.evaluate_target_health or primary.health_check_ref is None:
            return primary
        try:
            state = self.lookup_health(primary.health_check_ref)
        except HealthCheckUnavailable as e:
            logger.debug(f"{e.message}; answering with PRIMARY")
            return primary
        if state.status is HealthStatus.DOWN:
            return self.zone.secondary
        return primary

    def answers(self) -> List[Tuple[FailoverRecord, bool]]:
        """Both records, each flagged with whether it is the effective answer"""
        selected = self.resolve()
        return [
            (record, record.set_identifier == selected.set_identifier)
            for record in self.zone.records
        ]
