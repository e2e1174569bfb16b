"""Log filters: level, search, since. Combined as a conjunction."""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Mapping

from relay.models import LogEntry

_RELATIVE_PATTERN = re.compile(
    r"^(\d+)\s*(m|min|mins|minutes?|h|hours?|d|days?)(?:\s+ago)?$", re.IGNORECASE
)

_UNIT_WORDS = {"m": "minutes", "h": "hours", "d": "days"}

_ABSOLUTE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)


@dataclass(frozen=True)
class SinceSpec:
    source_arg: str                 # what the log source is given
    bound: datetime | None          # local lower bound, None if unknown


@dataclass(frozen=True)
class LogFilter:
    max_lines: int | None = None
    level: str | None = None
    since: str | None = None
    search: str | None = None

    def __post_init__(self):
        if self.max_lines is not None and self.max_lines <= 0:
            raise ValueError(f"max_lines must be positive, got {self.max_lines}")

    @classmethod
    def from_params(cls, params: Mapping[str, str], default_lines: int | None = None) -> "LogFilter":
        """Build a filter from request parameters (lines, level, since, search)."""
        max_lines = default_lines
        raw_lines = params.get("lines")
        if raw_lines:
            try:
                value = int(raw_lines)
            except ValueError:
                value = 0
            if value > 0:
                max_lines = value

        return cls(
            max_lines=max_lines,
            level=params.get("level") or None,
            since=params.get("since") or None,
            search=params.get("search") or None,
        )

    def live(self) -> "LogFilter":
        """Follow mode only honours level and search."""
        return LogFilter(level=self.level, search=self.search)


def parse_since(spec: str, now: datetime) -> SinceSpec:
    """Normalize a since spec for the source and resolve it to a local bound.

    "5m", "1h ago", "2 days" are relative; ISO-8601 and YYYY-MM-DD[ HH:MM[:SS]]
    are absolute. Anything else goes to the source untouched with no bound.
    """
    spec = spec.strip()
    match = _RELATIVE_PATTERN.match(spec)
    if match:
        amount = int(match.group(1))
        unit = match.group(2)[0].lower()
        delta = {
            "m": timedelta(minutes=amount),
            "h": timedelta(hours=amount),
            "d": timedelta(days=amount),
        }[unit]
        return SinceSpec(f"{amount} {_UNIT_WORDS[unit]} ago", now - delta)

    bound = _parse_absolute(spec)
    if bound is not None and bound.tzinfo is None:
        bound = bound.astimezone()
    return SinceSpec(spec, bound)


def _parse_absolute(spec: str) -> datetime | None:
    for fmt in _ABSOLUTE_FORMATS:
        try:
            return datetime.strptime(spec, fmt)
        except ValueError:
            continue
    try:
        # fromisoformat only accepts a trailing "Z" from Python 3.11 on.
        if spec.endswith(("Z", "z")):
            spec = spec[:-1] + "+00:00"
        return datetime.fromisoformat(spec)
    except ValueError:
        return None


def filter_by_level(entry: LogEntry, level: str) -> bool:
    """Literal comparison: unknown levels are never normalized."""
    return entry.level == level


def filter_by_search(entry: LogEntry, text: str) -> bool:
    """Case-insensitive substring of the message or the level."""
    needle = text.lower()
    return needle in entry.message.lower() or needle in entry.level.lower()


def filter_by_since(entry: LogEntry, bound: datetime) -> bool:
    return entry.timestamp >= bound


def build_filter_chain(log_filter: LogFilter, bound: datetime | None = None) -> Callable[[LogEntry], bool]:
    """AND together every predicate present in the filter.

    ``bound`` is the resolved since bound; it is passed separately because
    resolving it depends on the moment the query runs.
    """
    predicates = []

    if log_filter.level:
        level = log_filter.level
        predicates.append(lambda entry, l=level: filter_by_level(entry, l))

    if log_filter.search:
        text = log_filter.search
        predicates.append(lambda entry, t=text: filter_by_search(entry, t))

    if bound is not None:
        predicates.append(lambda entry, b=bound: filter_by_since(entry, b))

    if not predicates:
        return lambda entry: True

    def combined(entry: LogEntry) -> bool:
        return all(p(entry) for p in predicates)

    return combined
