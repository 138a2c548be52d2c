"""Unit tests for the health monitor."""
import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from src.config.settings import HealthCheckSettings
from src.health.monitor import HealthMonitor
from src.models import HealthStatus, ProbeResult
from src.monitoring.metrics import MetricsCollector


class ScriptedProbe:
    """Probe returning scripted outcomes per region; succeeds once a script runs out"""

    def __init__(self, outcomes=None):
        self.outcomes = {region_id: list(results) for region_id, results in (outcomes or {}).items()}
        self.calls = []
        self.gate = None
        self.started = asyncio.Event()

    async def check(self, region):
        self.calls.append(region.region_id)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        script = self.outcomes.get(region.region_id, [])
        success = script.pop(0) if script else True
        return ProbeResult(
            region_id=region.region_id,
            success=success,
            status_code=200 if success else 503,
            latency_ms=1.0,
            error=None if success else "UnexpectedStatus503"
        )

    async def close(self):
        pass


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def settings():
    return HealthCheckSettings(interval=0.02, failure_threshold=2, timeout=0.01)


class TestProbeApplication:
    @pytest.mark.asyncio
    async def test_debounced_transitions_are_published(self, primary_region, secondary_region, settings):
        probe = ScriptedProbe({"us-east-1": [False, False, True]})
        clock = FakeClock()
        monitor = HealthMonitor([primary_region, secondary_region], settings, probe=probe, clock=clock)
        queue = monitor.subscribe()

        await monitor.probe(primary_region)
        assert monitor.state("us-east-1").status is HealthStatus.UP
        assert queue.empty()

        clock.now = 30.0
        await monitor.probe(primary_region)
        change = queue.get_nowait()
        assert change.region_id == "us-east-1"
        assert change.current.status is HealthStatus.DOWN
        assert change.current.last_transition_time == 30.0

        clock.now = 60.0
        await monitor.probe(primary_region)
        assert queue.get_nowait().current.status is HealthStatus.UP
        assert monitor.state("us-west-2").last_probe_time is None

    @pytest.mark.asyncio
    async def test_callbacks_and_metrics(self, primary_region, secondary_region, settings):
        probe = ScriptedProbe({"us-west-2": [False, False]})
        metrics = MagicMock(spec=MetricsCollector)
        monitor = HealthMonitor([primary_region, secondary_region], settings, probe=probe, metrics=metrics)
        seen = []
        monitor.add_callback(seen.append)

        received = []

        async def async_callback(change):
            received.append(change.region_id)

        monitor.add_callback(async_callback)

        await monitor.probe(secondary_region)
        await monitor.probe(secondary_region)
        await asyncio.sleep(0)

        assert [change.current.status for change in seen] == [HealthStatus.DOWN]
        assert received == ["us-west-2"]
        metrics.update_region_health.assert_called_with("us-west-2", False)
        metrics.record_probe.assert_called_with(
            "us-west-2", False, latency_seconds=0.001, reason="UnexpectedStatus503"
        )

    @pytest.mark.asyncio
    async def test_failing_async_callback_is_logged(self, primary_region, settings, caplog):
        probe = ScriptedProbe({"us-east-1": [False, False]})
        monitor = HealthMonitor([primary_region], settings, probe=probe)

        async def broken_callback(change):
            raise RuntimeError(f"cannot route around {change.region_id}")

        monitor.add_callback(broken_callback)

        with caplog.at_level(logging.ERROR, logger="src.health.monitor"):
            await monitor.probe(primary_region)
            await monitor.probe(primary_region)
            assert len(monitor._callback_tasks) == 1
            await asyncio.gather(*monitor._callback_tasks, return_exceptions=True)
            await asyncio.sleep(0)

        assert monitor._callback_tasks == set()
        assert "cannot route around us-east-1" in caplog.text

    @pytest.mark.asyncio
    async def test_unsubscribe(self, primary_region, settings):
        monitor = HealthMonitor([primary_region], settings, probe=ScriptedProbe({"us-east-1": [False] * 2}))
        queue = monitor.subscribe()
        monitor.unsubscribe(queue)

        await monitor.probe(primary_region)
        await monitor.probe(primary_region)
        assert queue.empty()


class TestProbeLoops:
    @pytest.mark.asyncio
    async def test_each_region_is_probed_independently(self, primary_region, secondary_region, settings):
        probe = ScriptedProbe({"us-east-1": [False] * 100})
        monitor = HealthMonitor([primary_region, secondary_region], settings, probe=probe)
        queue = monitor.subscribe()

        await monitor.start()
        assert monitor.running
        change = await asyncio.wait_for(queue.get(), timeout=2.0)
        await monitor.stop()

        assert change.region_id == "us-east-1"
        assert change.current.status is HealthStatus.DOWN
        assert monitor.state("us-west-2").status is HealthStatus.UP
        assert probe.calls.count("us-west-2") >= 1
        assert not monitor.running

    @pytest.mark.asyncio
    async def test_result_arriving_after_stop_is_discarded(self, primary_region, settings):
        probe = ScriptedProbe({"us-east-1": [False] * 10})
        probe.gate = asyncio.Event()
        monitor = HealthMonitor([primary_region], settings, probe=probe)

        await monitor.start()
        await asyncio.wait_for(probe.started.wait(), timeout=1.0)

        stopping = asyncio.ensure_future(monitor.stop())
        await asyncio.sleep(0)
        probe.gate.set()
        await stopping

        state = monitor.state("us-east-1")
        assert state.last_probe_time is None
        assert state.consecutive_failures == 0
        assert probe.calls == ["us-east-1"]

    @pytest.mark.asyncio
    async def test_stop_without_start(self, primary_region, settings):
        monitor = HealthMonitor([primary_region], settings, probe=ScriptedProbe())
        await monitor.stop()
        await monitor.close()
