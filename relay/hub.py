"""Fan-out hub: one control thread owns the subscriber set and delivers every published envelope.

Producers and consumers never touch the subscriber set directly. They send
``register``/``unregister``/``publish`` messages over a bounded control
queue that a single thread drains, so membership changes and deliveries are
serialized without a lock around the set.

A subscriber whose outbox is full when an envelope is delivered is dropped
(its outbox is closed) instead of blocking the hub or the other subscribers.
"""

import logging
import queue
import threading
import time
import uuid

from relay.errors import HubStopped, SubscriptionClosed

logger = logging.getLogger(__name__)

_CLOSED = object()
_POLL_INTERVAL = 0.1

_REGISTER = "register"
_UNREGISTER = "unregister"
_PUBLISH = "publish"
_SYNC = "sync"
_STOP = "stop"


class Subscription:
    """One observer's bounded outbox. Created by ``Hub.register``."""

    def __init__(self, hub: "Hub", capacity: int):
        self.id = uuid.uuid4().hex[:12]
        self._hub = hub
        self._outbox: queue.Queue = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()

    @property
    def alive(self) -> bool:
        return not self._closed.is_set()

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def get(self, timeout: float | None = None):
        """Return the next envelope.

        Raises queue.Empty if nothing arrives within ``timeout`` and
        SubscriptionClosed once the outbox is closed and fully drained.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._closed.is_set() and self._outbox.empty():
                raise SubscriptionClosed(f"subscription {self.id} closed")
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise queue.Empty
                wait = min(wait, remaining)
            try:
                item = self._outbox.get(timeout=wait)
            except queue.Empty:
                continue
            if item is _CLOSED:
                raise SubscriptionClosed(f"subscription {self.id} closed")
            return item

    def __iter__(self):
        while True:
            try:
                yield self.get()
            except SubscriptionClosed:
                return

    def unregister(self):
        self._hub.unregister(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unregister()
        return False

    # Called from the hub thread only.

    def _offer(self, envelope) -> bool:
        try:
            self._outbox.put_nowait(envelope)
        except queue.Full:
            return False
        return True

    def _close(self):
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._outbox.put_nowait(_CLOSED)
        except queue.Full:
            # Readers find the closed flag once they drain the backlog.
            pass


class Hub:
    def __init__(self, outbox_capacity: int = 256, control_capacity: int = 256,
                 name: str = "hub", send_timeout: float = 5.0):
        self._outbox_capacity = outbox_capacity
        self._control: queue.Queue = queue.Queue(maxsize=control_capacity)
        self._name = name
        self._send_timeout = send_timeout
        self._subscribers: dict[str, Subscription] = {}
        self._running = threading.Event()
        self._thread: threading.Thread | None = None
        self._dropped_publishes = 0
        self._dropped_subscribers = 0

    @property
    def running(self) -> bool:
        return self._running.is_set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def dropped_publishes(self) -> int:
        return self._dropped_publishes

    @property
    def dropped_subscribers(self) -> int:
        return self._dropped_subscribers

    def start(self):
        if self._thread is not None:
            return
        self._running.set()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("Hub %s started (outbox capacity %d)", self._name, self._outbox_capacity)

    def stop(self, timeout: float = 5.0):
        """Close every subscription and stop the control thread."""
        if not self._running.is_set():
            return
        self._running.clear()
        try:
            self._control.put((_STOP, None), timeout=timeout)
        except queue.Full:
            logger.warning("Hub %s control channel stuck, abandoning control thread", self._name)
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info("Hub %s stopped", self._name)

    def register(self) -> Subscription:
        if not self._running.is_set():
            raise HubStopped(f"hub {self._name} is not running")
        subscription = Subscription(self, self._outbox_capacity)
        self._send(_REGISTER, subscription)
        if not self._running.is_set():
            # Lost a race with stop(); the control thread may never see the message.
            subscription._close()
        return subscription

    def unregister(self, subscription: Subscription):
        """Idempotent. Closes the outbox so readers see end-of-stream."""
        if not subscription.alive:
            return
        if not self._running.is_set():
            subscription._close()
            return
        self._send(_UNREGISTER, subscription)
        if not self._running.is_set():
            subscription._close()

    def publish(self, envelope) -> bool:
        """Queue an envelope for delivery. Never blocks.

        Returns False when the envelope was discarded because the control
        channel is full or the hub is stopped.
        """
        if not self._running.is_set():
            return False
        try:
            self._control.put_nowait((_PUBLISH, envelope))
        except queue.Full:
            self._dropped_publishes += 1
            logger.warning("Hub %s control channel full, dropping %s envelope",
                           self._name, getattr(envelope, "kind", type(envelope).__name__))
            return False
        return True

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every message sent before this call has been handled."""
        if not self._running.is_set():
            return False
        done = threading.Event()
        self._send(_SYNC, done)
        if not self._running.is_set():
            return False
        return done.wait(timeout=timeout)

    def _send(self, op: str, arg):
        try:
            self._control.put((op, arg), timeout=self._send_timeout)
        except queue.Full:
            raise HubStopped(f"hub {self._name} control channel unavailable") from None

    def _run(self):
        while True:
            op, arg = self._control.get()
            if op == _PUBLISH:
                self._deliver(arg)
            elif op == _REGISTER:
                self._subscribers[arg.id] = arg
                logger.info("Subscriber %s connected: %d active", arg.id, len(self._subscribers))
            elif op == _UNREGISTER:
                if self._subscribers.pop(arg.id, None) is not None:
                    logger.info("Subscriber %s disconnected: %d active", arg.id, len(self._subscribers))
                arg._close()
            elif op == _SYNC:
                arg.set()
            elif op == _STOP:
                break

        for subscription in self._subscribers.values():
            subscription._close()
        self._subscribers.clear()
        self._drain_control()

    def _deliver(self, envelope):
        for sub_id, subscription in list(self._subscribers.items()):
            if subscription._offer(envelope):
                continue
            del self._subscribers[sub_id]
            subscription._close()
            self._dropped_subscribers += 1
            logger.warning("Subscriber %s outbox full, dropping it: %d active",
                           sub_id, len(self._subscribers))

    def _drain_control(self):
        """Release anything still waiting on the control queue after stop."""
        while True:
            try:
                op, arg = self._control.get_nowait()
            except queue.Empty:
                return
            if op in (_REGISTER, _UNREGISTER):
                arg._close()
            elif op == _SYNC:
                arg.set()
