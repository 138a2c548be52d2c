"""
In-memory replica store, used for local runs and tests.
"""

import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from src.errors import ObjectNotFound
from src.models import Region, ReplicatedObject
from .base import ReplicaStore, parse_provenance

logger = logging.getLogger(__name__)


class InMemoryReplicaStore(ReplicaStore):
    """Versioned in-memory object store for a single region"""

    def __init__(self, region: Region, clock: Callable[[], float] = time.time):
        super().__init__(region, clock=clock)
        self.versions: Dict[str, List[ReplicatedObject]] = {}  # key -> versions, oldest first

    def _new_version_id(self) -> str:
        return uuid.uuid4().hex

    def _record(self, key: str, payload: bytes, metadata: Dict[str, str],
                storage_class: str, tombstone: bool) -> ReplicatedObject:
        provenance = parse_provenance(metadata, self.region_id)
        obj = ReplicatedObject(
            key=key,
            version_id=provenance['source_version'] or self._new_version_id(),
            payload=b"" if tombstone else payload,
            metadata=metadata,
            origin_region=provenance['origin_region'],
            is_replica=provenance['is_replica'],
            tombstone=tombstone,
            origin_timestamp=provenance['origin_timestamp'],
            storage_class=storage_class
        )
        self.versions.setdefault(key, []).append(obj)
        logger.debug(
            f"{self.region_id}: {'tombstone' if tombstone else 'put'} {key} "
            f"version {obj.version_id} (replica={obj.is_replica})"
        )
        return obj

    async def _put_object(self, key, payload, metadata, storage_class):
        return self._record(key, payload, metadata, storage_class, tombstone=False)

    async def _delete_object(self, key, metadata):
        return self._record(key, b"", metadata, self.region.storage_class, tombstone=True)

    def _latest(self, key: str) -> Optional[ReplicatedObject]:
        history = self.versions.get(key)
        return history[-1] if history else None

    async def get(self, key: str) -> ReplicatedObject:
        latest = self._latest(key)
        if latest is None or latest.tombstone:
            raise ObjectNotFound(key, self.region_id)
        return latest

    async def head(self, key: str) -> Optional[ReplicatedObject]:
        return self._latest(key)

    async def get_version(self, key: str, version_id: str) -> ReplicatedObject:
        for obj in self.versions.get(key, []):
            if obj.version_id == version_id:
                return obj
        raise ObjectNotFound(f"{key}?versionId={version_id}", self.region_id)

    async def list(self, prefix: str = "") -> List[str]:
        return sorted(
            key for key, history in self.versions.items()
            if key.startswith(prefix) and not history[-1].tombstone
        )
