"""Tests for relay/broadcaster.py"""

import time

from relay.broadcaster import MetricsBroadcaster
from relay.hub import Hub
from relay.models import METRICS


class CountingSampler:
    def __init__(self):
        self.calls = 0

    def sample_now(self):
        self.calls += 1
        return {"cpu": {"usage_percent": 1.0}, "seq": self.calls}


class BrokenSampler:
    def sample_now(self):
        raise OSError("no /proc")


class TestTick:
    def test_tick_publishes_snapshot(self):
        hub = Hub()
        hub.start()
        try:
            sub = hub.register()
            broadcaster = MetricsBroadcaster(hub, CountingSampler(), interval=60)
            assert broadcaster.tick() is True
            envelope = sub.get(timeout=2)
            assert envelope.kind == METRICS
            assert envelope.payload["seq"] == 1
            assert broadcaster.published == 1
        finally:
            hub.stop()

    def test_sampling_failure_skipped(self):
        hub = Hub()
        hub.start()
        try:
            broadcaster = MetricsBroadcaster(hub, BrokenSampler(), interval=60)
            assert broadcaster.tick() is False
            assert broadcaster.published == 0
        finally:
            hub.stop()

    def test_stopped_hub_not_counted(self):
        broadcaster = MetricsBroadcaster(Hub(), CountingSampler(), interval=60)
        assert broadcaster.tick() is False


class TestLoop:
    def test_publishes_on_interval_until_stopped(self):
        hub = Hub()
        hub.start()
        sampler = CountingSampler()
        broadcaster = MetricsBroadcaster(hub, sampler, interval=0.05)
        try:
            broadcaster.start()
            time.sleep(0.4)
        finally:
            broadcaster.stop()
            hub.stop()
        assert sampler.calls >= 2
        calls = sampler.calls
        time.sleep(0.15)
        assert sampler.calls == calls
