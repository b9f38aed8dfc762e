"""Cross-instance change notifier for persisted client state.

Provides a small publish/subscribe bus.  Stores subscribe synchronous
callbacks so that every live instance re-reads the bridge before the
publishing call returns; HTTP clients follow the same events through
``async for`` iteration over bounded queues.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import structlog

from cafe_storefront.models import StateEvent

logger = structlog.get_logger(__name__)

# Canonical topic constants
TOPIC_STORAGE = "storage"
TOPIC_CART_UPDATED = "cartUpdated"
TOPIC_FAVORITES_UPDATED = "favoritesUpdated"

Listener = Callable[[StateEvent], None]


class Notifier:
    """In-process pub/sub for state-change events.

    Synchronous subscribers are invoked in subscription order.  Each async
    listener gets its own ``asyncio.Queue`` so that slow consumers cannot
    hold up publishers.
    """

    def __init__(self, max_queue_size: int = 256) -> None:
        self._subscribers: dict[str, list[tuple[Listener, str | None]]] = {}
        self._queues: list[asyncio.Queue[StateEvent | None]] = []
        self._max_queue_size = max_queue_size

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------

    def subscribe(
        self,
        topic: str,
        callback: Listener,
        owner: str | None = None,
    ) -> Callable[[], None]:
        """Register *callback* for *topic* and return an unsubscribe function.

        Events published with ``origin`` equal to *owner* are not delivered
        back to that owner.
        """
        entry = (callback, owner)
        self._subscribers.setdefault(topic, []).append(entry)

        def unsubscribe() -> None:
            entries = self._subscribers.get(topic, [])
            if entry in entries:
                entries.remove(entry)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    async def listen(self) -> AsyncIterator[StateEvent]:
        """Yield every published event until :meth:`close` is called."""
        queue: asyncio.Queue[StateEvent | None] = asyncio.Queue(maxsize=self._max_queue_size)
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(
        self,
        topic: str,
        key: str | None = None,
        origin: str | None = None,
    ) -> StateEvent:
        """Deliver an event to every subscriber of *topic* except its origin."""
        event = StateEvent(topic=topic, key=key, origin=origin)

        delivered = 0
        for callback, owner in list(self._subscribers.get(topic, [])):
            if origin is not None and owner == origin:
                continue
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception("state_listener_failed", topic=topic, key=key)

        for queue in self._queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("event_queue_full", topic=topic, key=key)

        logger.debug(
            "state_event_published",
            topic=topic,
            key=key,
            subscribers=delivered,
            listeners=len(self._queues),
        )
        return event

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Signal all async listeners to stop iterating."""
        for queue in self._queues:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                logger.warning("event_queue_full_on_close")
        self._queues.clear()
