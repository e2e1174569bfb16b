import sys
import textwrap
from datetime import datetime

import pytest

from relay.adapter import LogAdapter
from relay.source import JournalSource


def print_script(lines, exit_code=0, stderr="", trailing_newline=True):
    """Python source that prints ``lines`` and exits."""
    text = "\n".join(lines) + ("\n" if trailing_newline and lines else "")
    return textwrap.dedent(f"""
        import sys
        sys.stdout.write({text!r})
        sys.stdout.flush()
        sys.stderr.write({stderr!r})
        sys.exit({exit_code})
    """)


def chunks_script(chunks, delay=0.1, then_sleep=60.0, exit_code=0, stderr=""):
    """Python source that writes raw chunks with pauses, then idles or exits."""
    return textwrap.dedent(f"""
        import sys, time
        for chunk in {list(chunks)!r}:
            sys.stdout.write(chunk)
            sys.stdout.flush()
            time.sleep({delay!r})
        sys.stderr.write({stderr!r})
        sys.stderr.flush()
        time.sleep({then_sleep!r})
        sys.exit({exit_code})
    """)


class ScriptSource(JournalSource):
    """Runs Python snippets in place of journalctl/systemctl."""

    def __init__(self, query_script="", follow_script="", units_script="", poll_interval=0.05):
        super().__init__(poll_interval=poll_interval)
        self.query_script = query_script
        self.follow_script = follow_script
        self.units_script = units_script
        self.query_calls = []
        self.processes = []

    def query_command(self, unit, max_lines=None, since=None):
        self.query_calls.append({"unit": unit, "max_lines": max_lines, "since": since})
        return [sys.executable, "-c", self.query_script]

    def follow_command(self, unit):
        return [sys.executable, "-u", "-c", self.follow_script]

    def units_command(self):
        return [sys.executable, "-c", self.units_script]

    def open_follow(self, unit):
        proc = super().open_follow(unit)
        self.processes.append(proc)
        return proc


SCENARIO_LINES = [
    "2024/01/01 10:00:00 [x] [ERROR] boom",
    "stack trace line 1",
    "stack trace line 2",
    "2024/01/01 10:00:01 [x] [INFO] ok",
]


def local(*args) -> datetime:
    return datetime(*args).astimezone()


@pytest.fixture
def fixed_now():
    return local(2024, 1, 1, 10, 30, 0)


@pytest.fixture
def make_adapter(fixed_now):
    def _make(source, **kwargs):
        kwargs.setdefault("poll_interval", 0.05)
        kwargs.setdefault("idle_flush", 0.2)
        kwargs.setdefault("terminate_grace", 1.0)
        kwargs.setdefault("fetch_timeout", 10.0)
        kwargs.setdefault("clock", lambda: fixed_now)
        return LogAdapter(source, **kwargs)
    return _make
