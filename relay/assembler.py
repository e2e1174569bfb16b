"""Line assembler: turns raw source lines into complete, possibly multi-line log records.

A header line looks like::

    2024/01/01 10:00:00 [main.go:42] [ERROR] something broke

and opens a new record. Any other line is a continuation and is appended to
the open record's message with a newline separator.
"""

import logging
import re
from datetime import datetime
from typing import Callable, Iterable

from relay.models import INFO, LogEntry

logger = logging.getLogger(__name__)

HEADER_PATTERN = re.compile(
    r"^(\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2}) \[.*?\] \[([A-Za-z]+)\] ?(.*)"
)

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"

# What to do with a continuation line when no record is open.
ORPHAN_STANDALONE = "standalone"   # bounded fetch: becomes its own INFO record
ORPHAN_DROP = "drop"               # follow mode: discarded


def now() -> datetime:
    return datetime.now().astimezone()


def parse_timestamp(value: str) -> datetime | None:
    """Parse a header timestamp as local time. Returns None if it is not a real date."""
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).astimezone()
    except ValueError:
        return None


class _Pending:
    __slots__ = ("timestamp", "level", "lines", "parsed")

    def __init__(self, timestamp: datetime, level: str, message: str, parsed: bool):
        self.timestamp = timestamp
        self.level = level
        self.lines = [message]
        self.parsed = parsed

    def build(self) -> LogEntry:
        return LogEntry(timestamp=self.timestamp, level=self.level, message="\n".join(self.lines))


class LineAssembler:
    """Stateful parser; one instance per fetch or follow invocation.

    ``feed`` returns the records completed by the line (zero or one) and
    ``flush`` returns the record still open at end of stream.

    With ``merge_same_tick`` a header whose parsed timestamp and level equal
    those of the open record is folded into it instead of starting a new
    one. This is a best-effort heuristic for sources that split one logical
    message across several header lines in the same second.
    """

    def __init__(self, orphan_policy: str = ORPHAN_STANDALONE, merge_same_tick: bool = False,
                 clock: Callable[[], datetime] = now):
        if orphan_policy not in (ORPHAN_STANDALONE, ORPHAN_DROP):
            raise ValueError(f"unknown orphan policy: {orphan_policy}")
        self._orphan_policy = orphan_policy
        self._merge_same_tick = merge_same_tick
        self._clock = clock
        self._pending: _Pending | None = None
        self._last: _Pending | None = None
        self._fallbacks = 0
        self._dropped = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def timestamp_fallbacks(self) -> int:
        return self._fallbacks

    @property
    def dropped_lines(self) -> int:
        return self._dropped

    def feed(self, line: str) -> list[LogEntry]:
        line = line.rstrip("\r\n").rstrip()
        if not line.strip():
            return []

        match = HEADER_PATTERN.match(line.lstrip())
        if match is None:
            return self._continuation(line)

        ts_raw, level, message = match.groups()
        timestamp = parse_timestamp(ts_raw)
        parsed = timestamp is not None
        if not parsed:
            self._fallbacks += 1
            logger.warning("Unparseable timestamp %r, using current time", ts_raw)
            timestamp = self._clock()

        pending = self._pending
        if (self._merge_same_tick and pending is not None and parsed and pending.parsed
                and pending.timestamp == timestamp and pending.level == level):
            pending.lines.append(message)
            return []

        completed = self.flush()
        self._pending = _Pending(timestamp, level, message, parsed)
        return completed

    def feed_all(self, lines: Iterable[str]) -> list[LogEntry]:
        """Assemble a finite sequence of lines, flushing at the end."""
        entries = []
        for line in lines:
            entries.extend(self.feed(line))
        entries.extend(self.flush())
        return entries

    def flush(self) -> list[LogEntry]:
        if self._pending is None:
            return []
        entry = self._pending.build()
        self._last = self._pending
        self._pending = None
        return [entry]

    def _continuation(self, line: str) -> list[LogEntry]:
        if self._pending is not None:
            self._pending.lines.append(line)
            return []
        if self._last is not None:
            # The record was flushed early (idle flush); the rest of its body
            # becomes a record of its own with the same timestamp and level.
            self._pending = _Pending(self._last.timestamp, self._last.level, line, parsed=False)
            return []
        if self._orphan_policy == ORPHAN_STANDALONE:
            self._pending = _Pending(self._clock(), INFO, line.strip(), parsed=False)
            return []
        self._dropped += 1
        logger.debug("Dropping continuation line with no open record: %r", line)
        return []
