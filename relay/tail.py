"""Live-tail session: a follow running on its own thread, feeding a private single-subscriber hub."""

import logging
import threading

from relay.adapter import FollowOutcome, LogAdapter
from relay.assembler import now
from relay.errors import RelayError
from relay.filters import LogFilter
from relay.hub import Hub, Subscription
from relay.models import ERROR, Envelope, LogEntry

logger = logging.getLogger(__name__)


class LogTail:
    def __init__(self, adapter: LogAdapter, unit: str, log_filter: LogFilter,
                 outbox_capacity: int = 256, join_timeout: float = 5.0):
        self._adapter = adapter
        self._unit = unit
        self._filter = log_filter.live()
        self._join_timeout = join_timeout
        self._hub = Hub(outbox_capacity=outbox_capacity, control_capacity=outbox_capacity,
                        name=f"tail-{unit}")
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self._subscription: Subscription | None = None
        self.outcome: FollowOutcome | None = None
        self.error: Exception | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> Subscription:
        """Start following and return the channel the caller drains."""
        self._hub.start()
        self._subscription = self._hub.register()
        self._thread = threading.Thread(target=self._run, name=f"follow-{self._unit}", daemon=True)
        self._thread.start()
        logger.info("Tail of %s started (level=%s, search=%s)",
                    self._unit, self._filter.level, self._filter.search)
        return self._subscription

    def stop(self):
        self._cancel.set()
        if self._thread:
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("Follow thread for %s did not exit in %.1fs", self._unit, self._join_timeout)
        self._hub.stop()
        logger.info("Tail of %s stopped", self._unit)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def _run(self):
        try:
            self.outcome = self._adapter.follow(self._unit, self._filter, self._deliver, self._cancel)
        except RelayError as exc:
            self.error = exc
            logger.warning("Tail of %s failed: %s", self._unit, exc)
            self._publish_error(exc)
        except Exception as exc:
            self.error = exc
            logger.exception("Tail of %s crashed", self._unit)
            self._publish_error(exc)
        finally:
            # Queued behind any pending publish, so the error record is delivered first.
            self._subscription.unregister()

    def _publish_error(self, exc: Exception):
        self._hub.publish(Envelope.log(
            LogEntry(timestamp=now(), level=ERROR, message=f"Log stream error: {exc}")
        ))

    def _deliver(self, entry: LogEntry):
        if not self._subscription.alive:
            # Dropped for overflow or the reader went away.
            self._cancel.set()
            return
        self._hub.publish(Envelope.log(entry))
