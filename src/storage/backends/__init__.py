"""
Replica store adapter initialization module.
"""

from typing import Optional

from src.models import Region
from .base import ReplicaStore
from .memory_backend import InMemoryReplicaStore
from .aws_backend import S3ReplicaStore


def get_replica_store(region: Region, backend: str = "memory",
                      endpoint_url: Optional[str] = None) -> ReplicaStore:
    """Factory function to get the replica store adapter for a region"""
    if backend == "s3":
        return S3ReplicaStore(region, endpoint_url=endpoint_url)
    if backend == "memory":
        return InMemoryReplicaStore(region)
    raise ValueError(f"Unknown replica store backend {backend!r}")


__all__ = [
    "get_replica_store",
    "ReplicaStore",
    "InMemoryReplicaStore",
    "S3ReplicaStore",
]
