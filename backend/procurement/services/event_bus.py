"""
In-process event bus.

WHAT: Per-negotiation publish/subscribe for live events
WHY: SSE subscribers receive events from "now"; history comes from the store
HOW: One asyncio.Queue per subscriber, keyed by negotiation id
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..models.events import NegotiationEvent
from ..utils.logger import get_logger

logger = get_logger(__name__)


class StreamOverflow:
    """Queued in place of events a subscriber fell too far behind to receive."""

    def __repr__(self) -> str:
        return "STREAM_OVERFLOW"


STREAM_OVERFLOW = StreamOverflow()


class EventBus:
    """Fan-out of negotiation events to live subscribers."""

    def __init__(self, max_queue_size: int = 1000):
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._max_queue_size = max_queue_size

    def publish(self, negotiation_id: str, event: NegotiationEvent) -> int:
        """
        Deliver an event to every current subscriber of a negotiation.

        A subscriber whose queue is full is evicted: its backlog is replaced by
        STREAM_OVERFLOW so the consumer closes and resumes from a snapshot
        instead of silently missing events.

        Returns:
            Number of subscribers the event was queued for
        """
        delivered = 0
        for queue in list(self._subscribers.get(negotiation_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full for {negotiation_id} at {event.type}, evicting subscriber")
                self._evict(negotiation_id, queue)
        return delivered

    def _evict(self, negotiation_id: str, queue: asyncio.Queue) -> None:
        self.unsubscribe(negotiation_id, queue)
        while not queue.empty():
            queue.get_nowait()
        queue.put_nowait(STREAM_OVERFLOW)

    def subscribe(self, negotiation_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers[negotiation_id].add(queue)
        logger.debug(f"Subscriber added for {negotiation_id} ({len(self._subscribers[negotiation_id])} total)")
        return queue

    def unsubscribe(self, negotiation_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(negotiation_id)
        if not subscribers:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[negotiation_id]

    def subscriber_count(self, negotiation_id: str) -> int:
        return len(self._subscribers.get(negotiation_id, ()))

    @asynccontextmanager
    async def subscription(self, negotiation_id: str) -> AsyncIterator[asyncio.Queue]:
        """Subscribe for the duration of a block."""
        queue = self.subscribe(negotiation_id)
        try:
            yield queue
        finally:
            self.unsubscribe(negotiation_id, queue)


# Singleton instance
event_bus = EventBus()
