"""Record and envelope types passed between the log adapter, the hub and the transport."""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

DEBUG = "DEBUG"
INFO = "INFO"
WARN = "WARN"
ERROR = "ERROR"
FATAL = "FATAL"

# Levels the source is known to emit. Anything else is kept verbatim.
KNOWN_LEVELS = (DEBUG, INFO, WARN, ERROR, FATAL)


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str   # may contain embedded newlines

    def to_dict(self) -> dict:
        """Wire shape, identical for batch JSON and per-event pushes."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            level=data["level"],
            message=data["message"],
        )


METRICS = "metrics"
LOG = "log"


@dataclass(frozen=True)
class Envelope:
    """Opaque unit published through the hub.

    ``kind`` is one of ``metrics`` or ``log``; the hub never looks inside
    ``payload``, it only forwards it.
    """

    kind: str
    payload: Any

    @classmethod
    def metrics(cls, snapshot: dict) -> "Envelope":
        return cls(kind=METRICS, payload=snapshot)

    @classmethod
    def log(cls, entry: LogEntry) -> "Envelope":
        return cls(kind=LOG, payload=entry)

    def payload_dict(self):
        if isinstance(self.payload, LogEntry):
            return self.payload.to_dict()
        return self.payload

    def to_json(self) -> str:
        return json.dumps(self.payload_dict())
