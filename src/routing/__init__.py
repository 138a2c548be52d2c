"""DNS and edge routing package."""

from .dns_failover import DnsFailoverController, DnsZoneConfig
from .edge_failover import EdgeFailoverGroup
from .edge_server import EdgeServer
from .route53 import Route53FailoverPublisher

__all__ = [
    "DnsFailoverController",
    "DnsZoneConfig",
    "EdgeFailoverGroup",
    "EdgeServer",
    "Route53FailoverPublisher",
]
