"""Log source adapter: bounded historical fetch and live, cancellable follow."""

import enum
import logging
import os
import re
import selectors
import subprocess
import threading
import time
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Callable

from relay.assembler import ORPHAN_DROP, ORPHAN_STANDALONE, LineAssembler, now
from relay.errors import StreamInterrupted
from relay.filters import LogFilter, build_filter_chain, parse_since
from relay.models import LogEntry
from relay.source import JournalSource, terminate_process

logger = logging.getLogger(__name__)

UNIT_PATTERN = re.compile(r"^[A-Za-z0-9@._:+-]+$")

_READ_SIZE = 4096
_STDERR_LIMIT = 64 * 1024


class FollowOutcome(enum.Enum):
    CANCELLED = "cancelled"
    ENDED = "ended"


@dataclass
class LogQueryResult:
    entries: list[LogEntry] = field(default_factory=list)
    total: int = 0
    unit: str = ""

    def to_dict(self) -> dict:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "total": self.total,
            "unit": self.unit,
        }


def validate_unit(unit: str) -> str:
    if not unit or unit.startswith("-") or not UNIT_PATTERN.match(unit):
        raise ValueError(f"invalid unit name: {unit!r}")
    return unit


class LogAdapter:
    def __init__(self, source: JournalSource, fetch_timeout: float = 10.0,
                 poll_interval: float = 0.1, idle_flush: float = 0.5,
                 terminate_grace: float = 2.0, clock: Callable = now):
        self._source = source
        self._fetch_timeout = fetch_timeout
        self._poll_interval = poll_interval
        self._idle_flush = idle_flush
        self._terminate_grace = terminate_grace
        self._clock = clock

    def fetch(self, unit: str, log_filter: LogFilter,
              cancel: threading.Event | None = None) -> LogQueryResult:
        """Run a bounded query, assemble records, filter them and sort by timestamp.

        Filters see fully assembled records, so a multi-line record is kept
        or dropped as a whole. The sort is stable: records sharing a
        timestamp stay in source order.
        """
        validate_unit(unit)
        since = parse_since(log_filter.since, self._clock()) if log_filter.since else None

        raw = self._source.run_bounded_query(
            unit,
            max_lines=log_filter.max_lines,
            since=since.source_arg if since else None,
            timeout=self._fetch_timeout,
            cancel=cancel,
        )

        assembler = LineAssembler(orphan_policy=ORPHAN_STANDALONE, clock=self._clock)
        entries = assembler.feed_all(raw.decode("utf-8", errors="replace").split("\n"))

        keep = build_filter_chain(log_filter, since.bound if since else None)
        entries = sorted((e for e in entries if keep(e)), key=attrgetter("timestamp"))
        return LogQueryResult(entries=entries, total=len(entries), unit=unit)

    def list_units(self, timeout: float = 5.0) -> list[str]:
        return self._source.list_units(timeout=timeout)

    def follow(self, unit: str, log_filter: LogFilter, on_entry: Callable[[LogEntry], None],
               cancel: threading.Event) -> FollowOutcome:
        """Stream new records to ``on_entry`` until cancelled or the source exits.

        Returns CANCELLED or ENDED. Raises StreamInterrupted if the source
        exits with an error; the open record is delivered first. The child
        process is always terminated before this returns or raises.
        """
        validate_unit(unit)
        if cancel.is_set():
            return FollowOutcome.CANCELLED

        keep = build_filter_chain(log_filter.live())
        assembler = LineAssembler(orphan_policy=ORPHAN_DROP, merge_same_tick=True, clock=self._clock)

        def emit(entries):
            for entry in entries:
                if keep(entry):
                    on_entry(entry)

        proc = self._source.open_follow(unit)
        logger.info("Following unit %s (pid %d)", unit, proc.pid)
        selector = selectors.DefaultSelector()
        try:
            selector.register(proc.stdout, selectors.EVENT_READ, "stdout")
            selector.register(proc.stderr, selectors.EVENT_READ, "stderr")
            pending = b""
            stderr = bytearray()
            last_data = time.monotonic()
            stdout_open = True

            while stdout_open:
                if cancel.is_set():
                    logger.info("Follow of %s cancelled", unit)
                    return FollowOutcome.CANCELLED

                events = selector.select(timeout=self._poll_interval)
                if not events:
                    if assembler.has_pending and time.monotonic() - last_data >= self._idle_flush:
                        emit(assembler.flush())
                    continue

                for key, _ in events:
                    chunk = os.read(key.fd, _READ_SIZE)
                    if not chunk:
                        selector.unregister(key.fileobj)
                        if key.data == "stdout":
                            stdout_open = False
                        continue
                    if key.data == "stderr":
                        stderr.extend(chunk[: max(0, _STDERR_LIMIT - len(stderr))])
                        continue
                    # Reads may stop mid-line; keep the tail until its newline arrives.
                    lines = (pending + chunk).split(b"\n")
                    pending = lines.pop()
                    for line in lines:
                        emit(assembler.feed(line.decode("utf-8", errors="replace")))
                    last_data = time.monotonic()

            returncode = self._wait_exit(proc)
            if proc.stderr is not None and not proc.stderr.closed and returncode is not None:
                stderr.extend(proc.stderr.read()[: max(0, _STDERR_LIMIT - len(stderr))])

            if returncode == 0:
                if pending:
                    emit(assembler.feed(pending.decode("utf-8", errors="replace")))
                emit(assembler.flush())
                logger.info("Follow of %s ended", unit)
                return FollowOutcome.ENDED

            emit(assembler.flush())
            diagnostic = stderr.decode("utf-8", errors="replace")
            logger.warning("Follow of %s interrupted (status %s): %s", unit, returncode, diagnostic.strip())
            raise StreamInterrupted(returncode, diagnostic)
        finally:
            selector.close()
            terminate_process(proc, self._terminate_grace)

    def _wait_exit(self, proc: subprocess.Popen) -> int | None:
        try:
            return proc.wait(timeout=self._terminate_grace)
        except subprocess.TimeoutExpired:
            return None
