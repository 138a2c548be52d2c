"""
Base class for replica store adapters.

A replica store is the versioned object store of one region. The control
plane only orchestrates on top of it: every adapter exposes the same
get/put/delete/list surface and publishes an ``ObjectEvent`` to its
listeners after each committed change.

Client writes go through ``put``/``delete`` and are stamped with this
region as their origin. Only the replication engine writes through
``put_replica``/``delete_replica``, which carry the provenance of the
version in its origin region.
"""

from abc import ABC, abstractmethod
import asyncio
import inspect
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from src.models import (
    EventType,
    ObjectEvent,
    Region,
    ReplicatedObject,
    META_ORIGIN_REGION,
    META_ORIGIN_TIMESTAMP,
    META_REPLICA,
    META_SOURCE_VERSION
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[ObjectEvent], Any]

PROVENANCE_KEYS = frozenset({META_REPLICA, META_ORIGIN_REGION, META_ORIGIN_TIMESTAMP, META_SOURCE_VERSION})


def client_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
    """User metadata with replication provenance keys removed."""
    return {
        name: value for name, value in (metadata or {}).items()
        if name.lower() not in PROVENANCE_KEYS
    }


def replica_metadata(obj: ReplicatedObject) -> Dict[str, str]:
    """Metadata for writing ``obj`` into the peer region as a replica."""
    metadata = client_metadata(obj.metadata)
    metadata.update({
        META_REPLICA: 'true',
        META_ORIGIN_REGION: obj.origin_region,
        META_ORIGIN_TIMESTAMP: repr(obj.origin_timestamp),
    })
    if obj.version_id:
        metadata[META_SOURCE_VERSION] = obj.version_id
    return metadata


def parse_provenance(metadata: Optional[Dict[str, str]], default_region: str) -> Dict[str, Any]:
    """Extract replication provenance from object metadata."""
    metadata = metadata or {}
    timestamp = metadata.get(META_ORIGIN_TIMESTAMP)
    try:
        origin_timestamp = float(timestamp) if timestamp is not None else time.time()
    except ValueError:
        origin_timestamp = time.time()
    return {
        'is_replica': metadata.get(META_REPLICA, 'false').lower() == 'true',
        'origin_region': metadata.get(META_ORIGIN_REGION) or default_region,
        'origin_timestamp': origin_timestamp,
        'source_version': metadata.get(META_SOURCE_VERSION),
    }


class ReplicaStore(ABC):
    """Versioned key/object store of a single region"""

    def __init__(self, region: Region, clock: Callable[[], float] = time.time):
        self.region = region
        self._clock = clock
        self._listeners: List[ChangeListener] = []
        self._sequence = itertools.count(1)

    @property
    def region_id(self) -> str:
        return self.region.region_id

    def add_listener(self, listener: ChangeListener) -> None:
        """Subscribe to committed changes. Coroutine listeners are awaited."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event_type: EventType, obj: ReplicatedObject) -> None:
        event = ObjectEvent(
            event_type=event_type,
            object=obj,
            region_id=self.region_id,
            sequence=next(self._sequence)
        )
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # A failing subscriber must not fail the write that was already committed
                logger.error(f"Change listener failed for {event.key} in {self.region_id}: {str(e)}")

    def _origin_metadata(self, metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Client metadata stamped with this region as the origin of the write"""
        metadata = client_metadata(metadata)
        metadata.update({
            META_ORIGIN_REGION: self.region_id,
            META_ORIGIN_TIMESTAMP: repr(self._clock()),
        })
        return metadata

    async def put(self, key: str, payload: bytes, metadata: Optional[Dict[str, str]] = None,
                  storage_class: Optional[str] = None) -> str:
        """Store a new version of ``key`` and return its version id"""
        obj = await self._put_object(
            key, payload, self._origin_metadata(metadata), storage_class or self.region.storage_class
        )
        await self._emit(EventType.PUT, obj)
        return obj.version_id

    async def delete(self, key: str, metadata: Optional[Dict[str, str]] = None) -> str:
        """Write a tombstone for ``key`` and return the tombstone version id"""
        obj = await self._delete_object(key, self._origin_metadata(metadata))
        await self._emit(EventType.DELETE, obj)
        return obj.version_id

    async def put_replica(self, obj: ReplicatedObject, storage_class: Optional[str] = None) -> str:
        """Apply a version replicated from the peer region, keeping its provenance"""
        stored = await self._put_object(
            obj.key, bytes(obj.payload), replica_metadata(obj), storage_class or self.region.storage_class
        )
        await self._emit(EventType.PUT, stored)
        return stored.version_id

    async def delete_replica(self, obj: ReplicatedObject) -> str:
        """Apply a tombstone replicated from the peer region"""
        stored = await self._delete_object(obj.key, replica_metadata(obj))
        await self._emit(EventType.DELETE, stored)
        return stored.version_id

    @abstractmethod
    async def get(self, key: str) -> ReplicatedObject:
        """Latest live version of ``key``; raises ObjectNotFound if absent or deleted"""
        pass

    @abstractmethod
    async def head(self, key: str) -> Optional[ReplicatedObject]:
        """Latest version of ``key`` including tombstones, without payload; None if never written"""
        pass

    @abstractmethod
    async def list(self, prefix: str = "") -> List[str]:
        """Keys whose latest version is live"""
        pass

    @abstractmethod
    async def _put_object(self, key: str, payload: bytes, metadata: Dict[str, str],
                          storage_class: str) -> ReplicatedObject:
        pass

    @abstractmethod
    async def _delete_object(self, key: str, metadata: Dict[str, str]) -> ReplicatedObject:
        pass

    async def _run_blocking(self, func, *args, **kwargs):
        """Run a blocking client call off the event loop"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))
