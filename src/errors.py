"""Error taxonomy for the failover control plane."""


class FailoverControlError(Exception):
    """Base class for control plane errors."""
    def __init__(self, message, code='InternalError'):
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(FailoverControlError):
    """Invalid startup configuration. Fatal, never retried."""
    def __init__(self, message):
        super().__init__(message, "ConfigurationError")


class ProbeTimeout(FailoverControlError):
    """A liveness probe did not answer within its deadline."""
    def __init__(self, region_id, timeout):
        super().__init__(
            f"Probe for region {region_id} timed out after {timeout}s", "ProbeTimeout"
        )
        self.region_id = region_id
        self.timeout = timeout


class ProbeConnectionError(FailoverControlError):
    """A liveness probe could not reach the region endpoint."""
    def __init__(self, region_id, reason):
        super().__init__(
            f"Probe for region {region_id} failed to connect: {reason}",
            "ProbeConnectionError"
        )
        self.region_id = region_id


class ReplicationError(FailoverControlError):
    """Base class for replication failures."""


class ReplicationTransientError(ReplicationError):
    """Network or storage backpressure. Retried with backoff."""
    def __init__(self, message):
        super().__init__(message, "ReplicationTransientError")


class ReplicationPermanentError(ReplicationError):
    """Replication can never succeed for this event (e.g. malformed object)."""
    def __init__(self, message):
        super().__init__(message, "ReplicationPermanentError")


class ObjectNotFound(FailoverControlError):
    """Object key does not exist, or its latest version is a tombstone."""
    def __init__(self, key, region_id=None):
        where = f" in region {region_id}" if region_id else ""
        super().__init__(f"The specified key does not exist{where}: {key}", "NoSuchKey")
        self.key = key
        self.region_id = region_id


class HealthCheckUnavailable(FailoverControlError):
    """The health check backing a DNS record cannot be consulted."""
    def __init__(self, health_check_ref):
        super().__init__(
            f"Health check {health_check_ref} is unavailable", "HealthCheckUnavailable"
        )
        self.health_check_ref = health_check_ref
