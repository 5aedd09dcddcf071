"""
EV Dealer Hub - Routes Events
Server-sent events over the in-process EventBus (admin dashboards).
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from routes.auth import require_admin
from routes.deps import get_event_bus
from services.errors import NotFound
from services.event_bus import TOPICS

logger = logging.getLogger("events")

router = APIRouter(prefix="/events", tags=["Events"])

KEEPALIVE_SECONDS = 15


def format_sse(event: dict) -> str:
    return f"id: {event['id']}\nevent: {event['type']}\ndata: {json.dumps(event)}\n\n"


@router.get("/{topic}")
async def stream_events(
    topic: str,
    request: Request,
    user: dict = Depends(require_admin),
    bus=Depends(get_event_bus),
):
    if topic not in TOPICS:
        raise NotFound(f"Unknown topic, expected one of {TOPICS}", code="unknown_topic")

    subscription = bus.subscribe(topic)

    async def stream():
        async with subscription:
            yield ": connected\n\n"
            while not subscription.closed:
                if await request.is_disconnected():
                    break
                event = await subscription.get(timeout=KEEPALIVE_SECONDS)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        logger.debug(f"[EVENTS] stream closed topic={topic} user={user.get('email')}")

    return StreamingResponse(stream(), media_type="text/event-stream",
                             headers={"Cache-Control": "no-cache"})
