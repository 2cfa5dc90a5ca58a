"""
SSE streaming endpoint.

WHAT: Server-Sent Events stream of live negotiation events
WHY: Observers fold live events on top of the snapshot they loaded
HOW: EventSourceResponse over an event bus subscription, with heartbeats
"""

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse
from typing import AsyncIterator
import asyncio
import json

from ....core.negotiation_store import negotiation_store
from ....core.config import settings
from ....models.events import (
    NegotiationEvent,
    ConnectedEvent,
    HeartbeatEvent,
    NegotiationCompleteEvent,
    ErrorEvent,
)
from ....services.event_bus import STREAM_OVERFLOW, event_bus
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

STREAM_TERMINAL_EVENTS = frozenset({"decision", "error"})


def to_sse(event: NegotiationEvent) -> dict:
    """SSE message dict: event name is the event type, data is the camelCase JSON payload."""
    return {
        "event": event.type,
        "data": json.dumps(event.to_wire())
    }


async def negotiation_event_generator(
    negotiation_id: str,
    request: Request | None = None,
    heartbeat_interval: float | None = None
) -> AsyncIterator[dict]:
    """
    Generate SSE events for a negotiation.

    Finished negotiations get a closing event right away. Running ones stream
    bus events from "now" until a decision or error goes by. The subscription
    is opened before the persisted status is read, so a terminal event
    published in between is still delivered.

    A subscriber that falls behind is evicted by the bus; the stream then
    closes without a terminal event and the observer resumes from a snapshot.

    Args:
        negotiation_id: Negotiation to follow
        request: Incoming request, used to notice client disconnects
        heartbeat_interval: Seconds of silence before a heartbeat

    Yields:
        SSE event dicts
    """
    interval = heartbeat_interval or settings.SSE_HEARTBEAT_INTERVAL
    logger.info(f"Starting SSE stream for negotiation {negotiation_id}")

    try:
        async with event_bus.subscription(negotiation_id) as queue:
            yield to_sse(ConnectedEvent(negotiation_id=negotiation_id))

            summary = negotiation_store.get_summary(negotiation_id)
            if summary.status == "completed":
                yield to_sse(NegotiationCompleteEvent(negotiation_id=negotiation_id))
                logger.info(f"Negotiation {negotiation_id} already completed, closing stream")
                return
            if summary.status == "failed":
                state = negotiation_store.load_state(negotiation_id)
                yield to_sse(ErrorEvent(error="NEGOTIATION_FAILED", message=state.error_message or "Negotiation failed"))
                return

            while True:
                if request is not None and await request.is_disconnected():
                    logger.info(f"Client disconnected from negotiation {negotiation_id}")
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=interval)
                except asyncio.TimeoutError:
                    yield to_sse(HeartbeatEvent())
                    continue

                if event is STREAM_OVERFLOW:
                    logger.warning(f"SSE subscriber for {negotiation_id} fell behind, closing stream")
                    break

                yield to_sse(event)
                if event.type in STREAM_TERMINAL_EVENTS:
                    break
    finally:
        logger.info(f"SSE stream ended for negotiation {negotiation_id}")


@router.get("/negotiations/{negotiation_id}/stream")
async def stream_negotiation(negotiation_id: str, request: Request):
    """
    Stream negotiation events via SSE.

    Args:
        negotiation_id: Negotiation ID

    Returns:
        EventSourceResponse with negotiation events

    Raises:
        NegotiationNotFoundError: Unknown negotiation (checked before streaming starts)
    """
    logger.info(f"SSE stream requested for negotiation {negotiation_id}")

    negotiation_store.get_summary(negotiation_id)

    return EventSourceResponse(
        negotiation_event_generator(negotiation_id, request),
        media_type="text/event-stream"
    )
