"""Tests for relay/tail.py"""

from conftest import ScriptSource, chunks_script, print_script
from relay.adapter import FollowOutcome
from relay.errors import SourceUnavailable, StreamInterrupted
from relay.filters import LogFilter
from relay.models import LOG, LogEntry
from relay.tail import LogTail


def _collect(subscription):
    return list(subscription)


class TestLogTail:
    def test_delivers_records_as_log_envelopes(self, make_adapter):
        source = ScriptSource(follow_script=chunks_script([
            "2024/01/01 10:00:00 [x] [INFO] hello\n2024/01/01 10:00:01 [x] [WARN] careful\n",
        ]))
        tail = LogTail(make_adapter(source), "svc", LogFilter(level="WARN"))
        subscription = tail.start()
        try:
            envelope = subscription.get(timeout=5)
        finally:
            tail.stop()
        assert envelope.kind == LOG
        assert isinstance(envelope.payload, LogEntry)
        assert envelope.payload.message == "careful"
        assert tail.outcome is FollowOutcome.CANCELLED
        assert not tail.running
        assert source.processes[0].poll() is not None
        assert not subscription.alive

    def test_stream_error_becomes_error_record(self, make_adapter):
        source = ScriptSource(follow_script=print_script(
            ["2024/01/01 10:00:00 [x] [INFO] before failure"], exit_code=1, stderr="Failed to follow journal",
        ))
        tail = LogTail(make_adapter(source), "svc", LogFilter())
        subscription = tail.start()
        try:
            envelopes = _collect(subscription)
        finally:
            tail.stop()
        messages = [e.payload.message for e in envelopes]
        assert messages[0] == "before failure"
        assert envelopes[-1].payload.level == "ERROR"
        assert messages[-1].startswith("Log stream error: ")
        assert "Failed to follow journal" in messages[-1]
        assert isinstance(tail.error, StreamInterrupted)

    def test_unavailable_source_reported_in_band(self, make_adapter):
        source = ScriptSource()
        source.follow_command = lambda unit: ["/nonexistent/journalctl", "-f"]
        tail = LogTail(make_adapter(source), "svc", LogFilter())
        subscription = tail.start()
        try:
            envelopes = _collect(subscription)
        finally:
            tail.stop()
        assert len(envelopes) == 1
        assert envelopes[0].payload.level == "ERROR"
        assert isinstance(tail.error, SourceUnavailable)

    def test_natural_end_closes_subscription(self, make_adapter):
        source = ScriptSource(follow_script=print_script(["2024/01/01 10:00:00 [x] [INFO] only"]))
        with LogTail(make_adapter(source), "svc", LogFilter()) as tail:
            envelopes = _collect(tail._subscription)
        assert [e.payload.message for e in envelopes] == ["only"]
        assert tail.outcome is FollowOutcome.ENDED
        assert tail.error is None

    def test_reader_gone_cancels_follow(self, make_adapter):
        source = ScriptSource(follow_script=chunks_script(
            [f"2024/01/01 10:00:{i:02d} [x] [INFO] n{i}\n" for i in range(50)], delay=0.02,
        ))
        tail = LogTail(make_adapter(source), "svc", LogFilter())
        subscription = tail.start()
        try:
            subscription.get(timeout=5)
            subscription.unregister()
            tail._thread.join(timeout=5)
            assert not tail.running
            assert tail.outcome is FollowOutcome.CANCELLED
        finally:
            tail.stop()
        assert source.processes[0].poll() is not None

    def test_unexpected_error_reported_in_band(self):
        class BrokenAdapter:
            def follow(self, unit, log_filter, on_entry, cancel):
                raise OSError("read failed")

        tail = LogTail(BrokenAdapter(), "svc", LogFilter())
        subscription = tail.start()
        try:
            envelopes = _collect(subscription)
        finally:
            tail.stop()
        assert len(envelopes) == 1
        assert envelopes[0].payload.level == "ERROR"
        assert envelopes[0].payload.message == "Log stream error: read failed"
        assert isinstance(tail.error, OSError)
