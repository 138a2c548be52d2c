"""Publishes the failover record pair to Amazon Route 53."""

import asyncio
import ipaddress
import logging
from typing import Any, Dict, Optional

import boto3

from src.errors import ConfigurationError
from src.models import FailoverRecord
from .dns_failover import DnsZoneConfig

logger = logging.getLogger(__name__)


def _is_ipv4(value: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(value), ipaddress.IPv4Address)
    except ValueError:
        return False


class Route53FailoverPublisher:
    """Renders both failover records as a Route 53 change batch and UPSERTs it"""

    def __init__(self, zone: DnsZoneConfig, client=None):
        if not zone.hosted_zone_id:
            raise ConfigurationError("A hosted zone id is required to publish records")
        self.zone = zone
        self.route53 = client or boto3.client('route53')

    def record_set(self, record: FailoverRecord) -> Dict[str, Any]:
        record_set: Dict[str, Any] = {
            'Name': record.name,
            'SetIdentifier': record.set_identifier,
            'Failover': record.priority.value,
        }
        if record.health_check_ref and record.health_check_ref not in self.zone.local_health_check_refs:
            record_set['HealthCheckId'] = record.health_check_ref
        else:
            logger.warning(f"Record {record.set_identifier} is published without a Route 53 health check")

        if record.alias_hosted_zone_id:
            record_set['Type'] = 'A'
            record_set['AliasTarget'] = {
                'HostedZoneId': record.alias_hosted_zone_id,
                'DNSName': record.target,
                'EvaluateTargetHealth': record.evaluate_target_health,
            }
        else:
            record_set['Type'] = 'A' if _is_ipv4(record.target) else 'CNAME'
            record_set['TTL'] = record.ttl
            record_set['ResourceRecords'] = [{'Value': record.target}]
        return record_set

    def change_batch(self) -> Dict[str, Any]:
        return {
            'Comment': f"Failover records for {self.zone.record_name}",
            'Changes': [
                {'Action': 'UPSERT', 'ResourceRecordSet': self.record_set(record)}
                for record in self.zone.records
            ],
        }

    async def publish(self) -> Optional[str]:
        """UPSERT both records; returns the Route 53 change id"""
        batch = self.change_batch()
        loop = asyncio.get_event_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self.route53.change_resource_record_sets(
                HostedZoneId=self.zone.hosted_zone_id,
                ChangeBatch=batch
            )
        )
        change_id = response.get('ChangeInfo', {}).get('Id')
        logger.info(f"Published failover records for {self.zone.record_name} (change {change_id})")
        return change_id
