"""Periodic metrics publisher."""

import logging
import threading

from relay.hub import Hub
from relay.models import Envelope

logger = logging.getLogger(__name__)


class MetricsBroadcaster:
    """Samples host metrics every ``interval`` seconds and publishes them to the hub.

    A failed sample is logged and skipped; the next tick tries again.
    """

    def __init__(self, hub: Hub, sampler, interval: float = 5.0):
        self._hub = hub
        self._sampler = sampler
        self._interval = interval
        self._shutdown = threading.Event()
        self._thread: threading.Thread | None = None
        self._published = 0

    @property
    def published(self) -> int:
        return self._published

    def start(self):
        self._thread = threading.Thread(target=self._loop, name="metrics-broadcaster", daemon=True)
        self._thread.start()
        logger.info("Broadcasting metrics every %.1fs", self._interval)

    def stop(self):
        self._shutdown.set()
        if self._thread:
            self._thread.join(timeout=5)
        logger.info("Metrics broadcaster stopped after %d publishes", self._published)

    def tick(self) -> bool:
        """Sample once and publish. Returns True if the snapshot was queued."""
        try:
            snapshot = self._sampler.sample_now()
        except Exception as exc:
            logger.warning("Error sampling metrics: %s", exc)
            return False
        if not self._hub.publish(Envelope.metrics(snapshot)):
            return False
        self._published += 1
        logger.debug("Metrics queued for %d subscribers", self._hub.subscriber_count)
        return True

    def _loop(self):
        while not self._shutdown.wait(timeout=self._interval):
            self.tick()
