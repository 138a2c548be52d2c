from prometheus_client import Counter, Histogram, Gauge

# Replication Metrics
REPLICATION_EVENTS = Counter(
    'aafo_replication_events_total',
    'Replication events by outcome',
    ['source_region', 'dest_region', 'status', 'instance']
)

REPLICATION_LAG = Gauge(
    'aafo_replication_lag_seconds',
    'Lag between origin commit and peer delivery of the last replicated event',
    ['source_region', 'dest_region', 'instance']
)

REPLICATION_PENDING = Gauge(
    'aafo_replication_pending_events',
    'Events accepted but not yet delivered to the peer region',
    ['source_region', 'dest_region', 'instance']
)

REPLICATION_RETRIES = Counter(
    'aafo_replication_retries_total',
    'Replication attempts retried after a transient error',
    ['source_region', 'dest_region', 'instance']
)

REPLICATION_ALARMS = Counter(
    'aafo_replication_alarms_total',
    'Replication events surfaced to the operator alarm',
    ['source_region', 'dest_region', 'reason', 'instance']
)

REPLICATION_CONFLICTS = Counter(
    'aafo_replication_conflicts_total',
    'Events superseded by a newer version already present in the peer region',
    ['source_region', 'dest_region', 'instance']
)

# Health Metrics
REGION_HEALTH = Gauge(
    'aafo_region_health',
    'Region health status (1 for UP, 0 for DOWN)',
    ['region', 'instance']
)

PROBE_LATENCY = Histogram(
    'aafo_probe_latency_seconds',
    'Liveness probe latency in seconds',
    ['region', 'instance'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

PROBE_FAILURES = Counter(
    'aafo_probe_failures_total',
    'Failed liveness probes',
    ['region', 'reason', 'instance']
)

# DNS Metrics
DNS_TRANSITIONS = Counter(
    'aafo_dns_transitions_total',
    'Changes of the effective DNS answer',
    ['record_name', 'priority', 'instance']
)

# Edge Metrics
EDGE_REQUESTS = Counter(
    'aafo_edge_requests_total',
    'Requests routed by the edge failover group',
    ['group', 'origin', 'status', 'instance']
)

EDGE_FAILOVERS = Counter(
    'aafo_edge_failovers_total',
    'Requests retried against the secondary origin',
    ['group', 'reason', 'instance']
)


class MetricsCollector:
    def __init__(self, instance_id):
        self.instance_id = instance_id

    def record_replication(self, source_region, dest_region, status):
        """Record the outcome of one propagated event"""
        REPLICATION_EVENTS.labels(
            source_region=source_region,
            dest_region=dest_region,
            status=status,
            instance=self.instance_id
        ).inc()

    def update_replication_metrics(self, source_region, dest_region, lag_seconds=None, pending=None):
        """Update replication lag and queue depth"""
        if lag_seconds is not None:
            REPLICATION_LAG.labels(
                source_region=source_region,
                dest_region=dest_region,
                instance=self.instance_id
            ).set(lag_seconds)

        if pending is not None:
            REPLICATION_PENDING.labels(
                source_region=source_region,
                dest_region=dest_region,
                instance=self.instance_id
            ).set(pending)

    def record_replication_retry(self, source_region, dest_region):
        REPLICATION_RETRIES.labels(
            source_region=source_region,
            dest_region=dest_region,
            instance=self.instance_id
        ).inc()

    def record_replication_alarm(self, source_region, dest_region, reason):
        REPLICATION_ALARMS.labels(
            source_region=source_region,
            dest_region=dest_region,
            reason=reason,
            instance=self.instance_id
        ).inc()

    def record_replication_conflict(self, source_region, dest_region):
        REPLICATION_CONFLICTS.labels(
            source_region=source_region,
            dest_region=dest_region,
            instance=self.instance_id
        ).inc()

    def update_region_health(self, region, is_up):
        """Update region health status"""
        REGION_HEALTH.labels(region=region, instance=self.instance_id).set(1 if is_up else 0)

    def record_probe(self, region, success, latency_seconds=None, reason=None):
        """Record a liveness probe and its latency"""
        if latency_seconds is not None:
            PROBE_LATENCY.labels(region=region, instance=self.instance_id).observe(latency_seconds)
        if not success:
            PROBE_FAILURES.labels(
                region=region,
                reason=reason or 'unknown',
                instance=self.instance_id
            ).inc()

    def record_dns_transition(self, record_name, priority):
        DNS_TRANSITIONS.labels(
            record_name=record_name,
            priority=priority,
            instance=self.instance_id
        ).inc()

    def record_edge_request(self, group, origin, status):
        EDGE_REQUESTS.labels(
            group=group,
            origin=origin,
            status=str(status),
            instance=self.instance_id
        ).inc()

    def record_edge_failover(self, group, reason):
        EDGE_FAILOVERS.labels(group=group, reason=reason, instance=self.instance_id).inc()
