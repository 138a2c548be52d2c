"""Unit tests for the bidirectional replication pair."""
from dataclasses import replace

import pytest

from src.errors import ConfigurationError, ObjectNotFound
from src.models import RegionRole, ReplicationDirection, ReplicationRule
from src.replication.alarms import ReplicationLagAlarm
from src.replication.topology import BidirectionalReplicator, build_rule_pair, validate_rule_pair
from src.storage.backends.memory_backend import InMemoryReplicaStore


@pytest.fixture
def replicator(primary_store, secondary_store):
    replicator = BidirectionalReplicator(primary_store, secondary_store)
    replicator.start()
    return replicator


class TestRules:
    def test_rule_pair_is_opposite(self, primary_region, secondary_region):
        rules = build_rule_pair(primary_region, secondary_region)
        forward, backward = rules

        assert (forward.source_region, forward.dest_region) == ("us-east-1", "us-west-2")
        assert (backward.source_region, backward.dest_region) == ("us-west-2", "us-east-1")
        assert forward.direction is ReplicationDirection.PRIMARY_TO_SECONDARY
        validate_rule_pair(rules)

    def test_single_rule_is_rejected(self, primary_region, secondary_region):
        with pytest.raises(ConfigurationError):
            validate_rule_pair(build_rule_pair(primary_region, secondary_region)[:1])

    def test_same_direction_twice_is_rejected(self):
        rule = ReplicationRule("a", "b", ReplicationDirection.PRIMARY_TO_SECONDARY)
        with pytest.raises(ConfigurationError):
            validate_rule_pair([rule, rule])

    def test_self_replication_is_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_rule_pair([
                ReplicationRule("a", "a", ReplicationDirection.PRIMARY_TO_SECONDARY),
                ReplicationRule("a", "a", ReplicationDirection.SECONDARY_TO_PRIMARY),
            ])

    def test_store_roles_are_checked(self, primary_region, secondary_region):
        swapped_primary = InMemoryReplicaStore(replace(primary_region, role=RegionRole.SECONDARY))
        with pytest.raises(ConfigurationError):
            BidirectionalReplicator(swapped_primary, InMemoryReplicaStore(secondary_region))


class TestBidirectionalReplication:
    @pytest.mark.asyncio
    async def test_write_then_delete_converges_without_loops(self, replicator, primary_store, secondary_store):
        """index.html written and deleted in the primary reaches the secondary exactly once."""
        version_id = await primary_store.put("index.html", b"<html>v1</html>")
        await replicator.drain()

        replica = await secondary_store.get("index.html")
        assert replica.version_id == version_id
        assert replica.is_replica is True
        assert replica.payload == b"<html>v1</html>"
        # The replica was not sent back to the primary
        assert len(primary_store.versions["index.html"]) == 1

        tombstone_id = await primary_store.delete("index.html")
        await replicator.drain()

        with pytest.raises(ObjectNotFound):
            await secondary_store.get("index.html")
        assert (await secondary_store.head("index.html")).version_id == tombstone_id
        assert len(primary_store.versions["index.html"]) == 2
        assert len(secondary_store.versions["index.html"]) == 2
        assert len(replicator.alarm) == 0

    @pytest.mark.asyncio
    async def test_writes_flow_both_ways(self, replicator, primary_store, secondary_store):
        await primary_store.put("east.txt", b"east")
        await secondary_store.put("west.txt", b"west")
        await replicator.drain()

        assert await primary_store.list() == ["east.txt", "west.txt"]
        assert await secondary_store.list() == ["east.txt", "west.txt"]
        assert (await primary_store.get("west.txt")).origin_region == "us-west-2"

    @pytest.mark.asyncio
    async def test_concurrent_writes_converge_on_last_writer(self, replicator, primary_store, secondary_store):
        primary_store._clock = lambda: 100.0
        secondary_store._clock = lambda: 200.0
        await primary_store.put("index.html", b"from-east")
        west_version = await secondary_store.put("index.html", b"from-west")
        await replicator.drain()

        east = await primary_store.get("index.html")
        west = await secondary_store.get("index.html")
        assert east.version_id == west.version_id == west_version
        assert east.payload == west.payload == b"from-west"

    @pytest.mark.asyncio
    async def test_rewrite_with_copied_metadata_replicates_back(self, replicator, primary_store, secondary_store):
        """A get-then-put in the secondary that keeps the replica's metadata is a new client write."""
        primary_store._clock = lambda: 100.0
        secondary_store._clock = lambda: 200.0
        await primary_store.put("a.txt", b"v1", {"content-type": "text/plain"})
        await replicator.drain()
        copied = await secondary_store.get("a.txt")
        assert copied.is_replica is True

        edit_version = await secondary_store.put("a.txt", b"edited in DR", copied.metadata)
        await replicator.drain()

        edited = await secondary_store.get("a.txt")
        assert edited.is_replica is False
        assert edited.origin_region == "us-west-2"
        assert edited.metadata["content-type"] == "text/plain"
        restored = await primary_store.get("a.txt")
        assert restored.payload == b"edited in DR"
        assert restored.version_id == edit_version
        assert len(replicator.alarm) == 0

    @pytest.mark.asyncio
    async def test_stop_detaches_change_feeds(self, replicator, primary_store, secondary_store):
        await replicator.stop()
        await primary_store.put("late.txt", b"late")
        await replicator.drain()

        assert await secondary_store.list() == []

    @pytest.mark.asyncio
    async def test_engines_share_the_alarm(self, primary_store, secondary_store):
        alarm = ReplicationLagAlarm()
        replicator = BidirectionalReplicator(primary_store, secondary_store, alarm=alarm)

        assert replicator.engine_for("us-east-1").alarm is alarm
        assert replicator.engine_for("us-west-2").alarm is alarm
        assert replicator.engine_for("us-west-2").dest_region == "us-east-1"
