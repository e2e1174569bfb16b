"""Tests for relay/sse.py"""

import json
import queue

import pytest

from relay.errors import HubStopped
from relay.hub import Hub
from relay.models import Envelope
from relay.sse import KEEPALIVE, format_envelope, format_event, stream_subscription


@pytest.fixture
def hub():
    h = Hub()
    h.start()
    yield h
    h.stop()


class TestFormatting:
    def test_unnamed_event(self):
        assert format_event('{"a": 1}') == 'data: {"a": 1}\n\n'

    def test_named_event(self):
        assert format_event("x", event="metrics") == "event: metrics\ndata: x\n\n"

    def test_multiline_data_split(self):
        assert format_event("a\nb") == "data: a\ndata: b\n\n"

    def test_envelope_frame(self):
        frame = format_envelope(Envelope.metrics({"cpu": {"usage_percent": 3.5}}))
        event_line, data_line, _, _ = frame.split("\n")
        assert event_line == "event: metrics"
        assert json.loads(data_line[len("data: "):]) == {"cpu": {"usage_percent": 3.5}}


class TestStreamSubscription:
    def test_yields_frames_then_keepalive(self, hub):
        sub = hub.register()
        hub.publish(Envelope.metrics({"seq": 1}))
        stream = stream_subscription(sub, keepalive_interval=0.1)
        assert next(stream).startswith("event: metrics\n")
        assert next(stream) == KEEPALIVE
        stream.close()
        hub.flush(timeout=2)
        assert hub.subscriber_count == 0

    def test_ends_when_subscription_closes(self, hub):
        closed = []
        sub = hub.register()
        hub.publish(Envelope.metrics({"seq": 1}))
        sub.unregister()
        frames = list(stream_subscription(sub, keepalive_interval=1.0, named=False,
                                          on_close=lambda: closed.append(True)))
        assert frames == ['data: {"seq": 1}\n\n']
        assert closed == [True]

    def test_on_close_runs_when_unregister_fails(self):
        class StuckSubscription:
            def get(self, timeout=None):
                raise queue.Empty

            def unregister(self):
                raise HubStopped("control channel unavailable")

        closed = []
        stream = stream_subscription(StuckSubscription(), keepalive_interval=0.01,
                                     on_close=lambda: closed.append(True))
        assert next(stream) == KEEPALIVE
        with pytest.raises(HubStopped):
            stream.close()
        assert closed == [True]
