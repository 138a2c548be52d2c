"""Unit tests for the in-memory replica store."""
import pytest

from src.errors import ObjectNotFound
from src.models import EventType, META_ORIGIN_REGION, META_REPLICA, META_SOURCE_VERSION
from src.storage.backends import get_replica_store
from src.storage.backends.base import client_metadata, parse_provenance, replica_metadata
from src.storage.backends.memory_backend import InMemoryReplicaStore


@pytest.mark.asyncio
async def test_put_get_and_list(primary_store):
    version_id = await primary_store.put("index.html", b"<html>v1</html>", {"content-type": "text/html"})

    obj = await primary_store.get("index.html")
    assert obj.version_id == version_id
    assert obj.payload == b"<html>v1</html>"
    assert obj.origin_region == "us-east-1"
    assert obj.is_replica is False
    assert obj.metadata["content-type"] == "text/html"
    assert await primary_store.list() == ["index.html"]


@pytest.mark.asyncio
async def test_delete_writes_tombstone(primary_store):
    await primary_store.put("index.html", b"v1")
    tombstone_id = await primary_store.delete("index.html")

    with pytest.raises(ObjectNotFound):
        await primary_store.get("index.html")
    head = await primary_store.head("index.html")
    assert head.tombstone is True
    assert head.version_id == tombstone_id
    assert await primary_store.list() == []
    # History is kept
    assert len(primary_store.versions["index.html"]) == 2


@pytest.mark.asyncio
async def test_missing_key(primary_store):
    assert await primary_store.head("nope") is None
    with pytest.raises(ObjectNotFound) as exc:
        await primary_store.get("nope")
    assert exc.value.code == "NoSuchKey"


@pytest.mark.asyncio
async def test_listeners_receive_events_in_order(primary_store):
    events = []
    primary_store.add_listener(events.append)

    await primary_store.put("a.txt", b"a")
    await primary_store.delete("a.txt")

    assert [e.event_type for e in events] == [EventType.PUT, EventType.DELETE]
    assert [e.sequence for e in events] == [1, 2]
    assert events[1].tombstone is True
    assert all(e.region_id == "us-east-1" for e in events)


@pytest.mark.asyncio
async def test_failing_listener_does_not_fail_write(primary_store):
    def broken(event):
        raise RuntimeError("subscriber down")

    primary_store.add_listener(broken)
    version_id = await primary_store.put("a.txt", b"a")
    assert (await primary_store.get("a.txt")).version_id == version_id


@pytest.mark.asyncio
async def test_async_listener_is_awaited(primary_store):
    seen = []

    async def listener(event):
        seen.append(event.key)

    primary_store.add_listener(listener)
    await primary_store.put("a.txt", b"a")
    assert seen == ["a.txt"]

    primary_store.remove_listener(listener)
    await primary_store.put("b.txt", b"b")
    assert seen == ["a.txt"]


@pytest.mark.asyncio
async def test_replica_write_keeps_source_version(primary_store, secondary_store):
    await primary_store.put("logo.png", b"png")
    original = await primary_store.get("logo.png")

    await secondary_store.put_replica(original)
    replica = await secondary_store.get("logo.png")

    assert replica.version_id == original.version_id
    assert replica.is_replica is True
    assert replica.origin_region == "us-east-1"
    assert replica.origin_timestamp == original.origin_timestamp
    assert await secondary_store.get_version("logo.png", original.version_id) is replica


@pytest.mark.asyncio
async def test_client_writes_cannot_claim_replica_provenance(secondary_region, make_event):
    store = InMemoryReplicaStore(secondary_region, clock=lambda: 500.0)
    forged = replica_metadata(make_event("us-east-1", origin_timestamp=100.0).object)
    forged["content-type"] = "text/html"
    events = []
    store.add_listener(events.append)

    version_id = await store.put("index.html", b"mine", forged)
    tombstone_id = await store.delete("index.html", forged)

    put_event, delete_event = events
    assert put_event.version_id == version_id != "v1"
    assert tombstone_id not in (version_id, "v1")
    for event in (put_event, delete_event):
        assert event.is_replica is False
        assert event.object.origin_region == "us-west-2"
        assert event.object.origin_timestamp == 500.0
    assert put_event.object.metadata["content-type"] == "text/html"
    assert META_SOURCE_VERSION not in put_event.object.metadata


def test_client_metadata_drops_provenance_keys():
    assert client_metadata({"Replica": "true", "origin-region": "us-east-1", "cache-control": "no-cache"}) == {
        "cache-control": "no-cache"
    }
    assert client_metadata(None) == {}


def test_replica_metadata_and_provenance(make_event):
    obj = make_event("us-east-1", origin_timestamp=1700000000.25).object
    metadata = replica_metadata(obj)

    assert metadata[META_REPLICA] == "true"
    assert metadata[META_ORIGIN_REGION] == "us-east-1"
    assert metadata[META_SOURCE_VERSION] == "v1"

    provenance = parse_provenance(metadata, "us-west-2")
    assert provenance == {
        "is_replica": True,
        "origin_region": "us-east-1",
        "origin_timestamp": 1700000000.25,
        "source_version": "v1",
    }


def test_provenance_defaults_for_plain_writes():
    provenance = parse_provenance({"content-type": "text/plain"}, "us-west-2")
    assert provenance["is_replica"] is False
    assert provenance["origin_region"] == "us-west-2"
    assert provenance["source_version"] is None


def test_store_factory(primary_region):
    assert isinstance(get_replica_store(primary_region), InMemoryReplicaStore)
    with pytest.raises(ValueError):
        get_replica_store(primary_region, backend="tape")
