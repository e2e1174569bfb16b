"""Server-Sent Events framing for hub subscriptions.

Usage: return Response(stream_subscription(sub), mimetype="text/event-stream")
"""

import queue
from typing import Callable, Iterator

from relay.errors import SubscriptionClosed
from relay.hub import Subscription
from relay.models import Envelope

KEEPALIVE = ": keepalive\n\n"


def format_event(data: str, event: str | None = None) -> str:
    lines = []
    if event:
        lines.append(f"event: {event}")
    for part in data.split("\n"):
        lines.append(f"data: {part}")
    return "\n".join(lines) + "\n\n"


def format_envelope(envelope: Envelope, named: bool = True) -> str:
    return format_event(envelope.to_json(), envelope.kind if named else None)


def stream_subscription(subscription: Subscription, keepalive_interval: float = 15.0,
                        named: bool = True, on_close: Callable[[], None] | None = None) -> Iterator[str]:
    """Yield SSE frames until the subscription closes or the client goes away."""
    try:
        while True:
            try:
                envelope = subscription.get(timeout=keepalive_interval)
            except queue.Empty:
                yield KEEPALIVE
                continue
            except SubscriptionClosed:
                return
            yield format_envelope(envelope, named=named)
    finally:
        try:
            subscription.unregister()
        finally:
            if on_close is not None:
                on_close()
