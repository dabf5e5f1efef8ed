"""
EventBus — thread-safe, in-process pub/sub keyed by deployment id.

Each deployment id is a channel.  Subscribers join one channel and
receive only that channel's events, in publish order.  There is no
replay: an event published before a subscriber joined is never
delivered to it.  Callers close that gap by reading the current
record after subscribing (the SSE route sends it as a snapshot).

Thread safety model
───────────────────
- ``_lock`` protects ``_seq`` and ``_channels`` (all writes go
  through the lock).
- Each subscriber gets its own ``queue.Queue``; the publisher pushes
  into every queue of the channel with ``put_nowait`` and never waits
  on a consumer.  A subscriber whose bounded queue is full is dropped
  (delivery is at-most-once, best-effort).

Message standard (v1)
─────────────────────
Every event is a dict with these fields::

    {
        "v": 1,                          # schema version
        "ts": 1739648400.123,            # server timestamp
        "seq": 47,                       # monotonic sequence (bus-wide)
        "type": "deployment-status",     # event name
        "key": "<deployment id>",        # channel
        "data": { ... },                 # event payload
    }
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Iterator

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

STATUS_EVENT = "deployment-status"

# Pushed into a subscriber's queue to wake it up for shutdown
_CLOSED: dict[str, Any] = {"type": "sys:closed"}


class Subscription:
    """One subscriber's view of a channel.

    Registered on the bus as soon as it is created (``EventBus.subscribe``
    returns it already joined), so no event published afterwards can be
    missed.  Use as a context manager or call ``close()`` when done.
    """

    def __init__(self, bus: EventBus, channel: str, q: queue.Queue[dict]) -> None:
        self._bus = bus
        self.channel = channel
        self._queue = q
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, timeout: float | None = None) -> dict | None:
        """Next event, or None on timeout / once closed."""
        if self._closed:
            return None
        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if event is _CLOSED:
            self._closed = True
            return None
        return event

    def __iter__(self) -> Iterator[dict]:
        """Yield events until the subscription is closed."""
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._bus._unsubscribe(self.channel, self._queue)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventBus:
    """Channel-keyed pub/sub for deployment status events.

    Parameters
    ----------
    subscriber_queue_size : int
        Maximum backlog per subscriber (0 = unbounded).  A subscriber
        whose queue is full when an event arrives is dropped.
    """

    def __init__(self, *, subscriber_queue_size: int = 200) -> None:
        self._lock = threading.Lock()
        self._seq: int = 0
        self._channels: dict[str, list[queue.Queue[dict]]] = {}
        self._subscriber_queue_size = subscriber_queue_size
        self._dropped: int = 0

    # ── Properties ──────────────────────────────────────────────

    @property
    def seq(self) -> int:
        """Current sequence number (monotonically increasing)."""
        with self._lock:
            return self._seq

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def subscriber_count(self, channel: str | None = None) -> int:
        """Active subscribers on ``channel`` (or on all channels)."""
        with self._lock:
            if channel is not None:
                return len(self._channels.get(channel, ()))
            return sum(len(qs) for qs in self._channels.values())

    # ── Publishing ──────────────────────────────────────────────

    def publish(
        self,
        channel: str,
        data: dict[str, Any],
        *,
        event_type: str = STATUS_EVENT,
    ) -> dict:
        """Deliver an event to every current subscriber of ``channel``.

        Never blocks: with no subscribers the event is simply dropped.

        Returns
        -------
        dict
            The full event envelope with ``seq`` assigned.
        """
        with self._lock:
            self._seq += 1
            event: dict[str, Any] = {
                "v": _SCHEMA_VERSION,
                "ts": time.time(),
                "seq": self._seq,
                "type": event_type,
                "key": channel,
                "data": dict(data),
            }

            subscribers = self._channels.get(channel, [])
            dead: list[queue.Queue[dict]] = []
            for q in subscribers:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    dead.append(q)
            for q in dead:
                subscribers.remove(q)
                self._dropped += 1
                # Wake the dropped consumer so it notices
                _drain_and_close(q)
            if not subscribers:
                self._channels.pop(channel, None)
            delivered = len(subscribers)

        if dead:
            logger.info("Dropped %d unresponsive subscriber(s) on %s (queue full)", len(dead), channel)
        logger.debug(
            "event %s key=%s status=%s → %d subscriber(s)",
            event_type, channel, data.get("status", "-"), delivered,
        )
        return event

    # ── Subscribing ─────────────────────────────────────────────

    def subscribe(self, channel: str) -> Subscription:
        """Join ``channel``; events published from now on are delivered."""
        q: queue.Queue[dict] = queue.Queue(maxsize=self._subscriber_queue_size)
        with self._lock:
            self._channels.setdefault(channel, []).append(q)
            count = len(self._channels[channel])
        logger.info("Subscriber joined %s (subscribers=%d)", channel, count)
        return Subscription(self, channel, q)

    def close_channel(self, channel: str) -> int:
        """End every subscription on ``channel``.  Returns how many."""
        with self._lock:
            subscribers = self._channels.pop(channel, [])
            for q in subscribers:
                _drain_and_close(q)
        if subscribers:
            logger.debug("Closed channel %s (%d subscriber(s))", channel, len(subscribers))
        return len(subscribers)

    def _unsubscribe(self, channel: str, q: queue.Queue[dict]) -> None:
        with self._lock:
            subscribers = self._channels.get(channel)
            if subscribers and q in subscribers:
                subscribers.remove(q)
                if not subscribers:
                    del self._channels[channel]
        logger.info("Subscriber left %s", channel)

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "channels": len(self._channels),
                "subscribers": sum(len(qs) for qs in self._channels.values()),
                "seq": self._seq,
                "dropped": self._dropped,
            }


def _drain_and_close(q: queue.Queue[dict]) -> None:
    """Empty ``q`` if needed and push the close marker (never blocks)."""
    try:
        q.put_nowait(_CLOSED)
    except queue.Full:
        try:
            q.get_nowait()
        except queue.Empty:
            pass
        try:
            q.put_nowait(_CLOSED)
        except queue.Full:
            pass
