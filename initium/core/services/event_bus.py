"""
EventBus — thread-safe, in-process pub/sub with bounded replay.

Operation lifecycle changes and status refreshes publish through the
bus so a presentation layer can react without polling every component.
The bus is an injected collaborator: components take an optional
``bus`` argument and publish nothing when it is absent.

Thread safety model
───────────────────
- ``_lock`` protects ``_seq``, ``_buffer``, ``_subscribers`` and
  ``_latest``.
- Each subscriber gets its own ``queue.Queue``; the publisher pushes
  into all queues under the lock and each consumer drains its own.
- A subscriber whose queue is full is dropped.

Message standard (v1)
─────────────────────
Every event is a dict::

    {
        "v": 1,                     # schema version
        "ts": 1739648400.123,       # publish timestamp
        "seq": 47,                  # monotonic sequence
        "type": "op:running",       # <domain>:<action>
        "key": "backupCreate",      # resource identifier
        "data": { ... },            # event-specific payload
    }
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from typing import Any

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1


class EventBus:
    """Thread-safe, in-process pub/sub with bounded replay buffer.

    Parameters
    ----------
    buffer_size : int
        Maximum number of events kept for :meth:`events_since`.
    subscriber_queue_size : int
        Maximum backlog per subscriber before it is dropped.
    """

    def __init__(
        self,
        *,
        buffer_size: int = 500,
        subscriber_queue_size: int = 200,
    ) -> None:
        self._lock = threading.Lock()
        self._seq: int = 0
        self._buffer: deque[dict] = deque(maxlen=buffer_size)
        self._subscribers: list[queue.Queue[dict]] = []
        self._subscriber_queue_size = subscriber_queue_size
        self._latest: dict[str, dict] = {}  # key → latest event

    # ── Properties ──────────────────────────────────────────────

    @property
    def seq(self) -> int:
        """Current sequence number (monotonically increasing)."""
        with self._lock:
            return self._seq

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # ── Publishing ──────────────────────────────────────────────

    def publish(
        self,
        event_type: str,
        *,
        key: str = "",
        data: dict[str, Any] | None = None,
        **kw: Any,
    ) -> dict:
        """Broadcast an event to every subscriber and the replay buffer.

        Returns the full event dict with ``seq`` assigned.
        """
        with self._lock:
            self._seq += 1
            event: dict[str, Any] = {
                "v": _SCHEMA_VERSION,
                "ts": time.time(),
                "seq": self._seq,
                "type": event_type,
                "key": key,
                "data": data or {},
                **kw,
            }
            self._buffer.append(event)
            if key:
                self._latest[key] = event

            dead: list[queue.Queue[dict]] = []
            for q in self._subscribers:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    dead.append(q)
            for q in dead:
                self._subscribers.remove(q)
                logger.info("Dropped unresponsive subscriber (queue full)")

        logger.debug("event %s key=%s", event_type, key or "-")
        return event

    # ── Subscribing ─────────────────────────────────────────────

    def subscribe(self) -> queue.Queue[dict]:
        """Register a subscriber and return its event queue."""
        q: queue.Queue[dict] = queue.Queue(maxsize=self._subscriber_queue_size)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[dict]) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    # ── Replay ──────────────────────────────────────────────────

    def events_since(self, seq: int = 0) -> list[dict]:
        """Buffered events with a sequence number greater than ``seq``."""
        with self._lock:
            return [e for e in self._buffer if e["seq"] > seq]

    def latest(self, key: str) -> dict | None:
        """Most recent event published for ``key``."""
        with self._lock:
            return self._latest.get(key)


def publish_safe(bus: EventBus | None, event_type: str, **kw: Any) -> None:
    """Publish on ``bus`` if one is configured; never raises."""
    if bus is None:
        return
    try:
        bus.publish(event_type, **kw)
    except Exception as e:
        logger.debug("Failed to publish %s: %s", event_type, e)
