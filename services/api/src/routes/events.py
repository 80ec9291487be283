"""
GET /events — Server-Sent Events stream of auction activity.

Emits ``bidUpdate``, ``auctionClosed`` and ``auctionEnded`` as they are
published. Delivery is best effort: events published while a client is
disconnected are gone, so clients re-read /items after reconnecting.
"""

import json
from typing import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from clients.events import Subscription, get_broadcaster
from utils import log

logger = log.get_logger(__name__)

router = APIRouter(tags=["events"])

HEARTBEAT_SECONDS = 15.0


async def event_stream(
    sub: Subscription,
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat_seconds: float = HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    async with sub:
        yield ": connected\n\n"
        while not await is_disconnected():
            event = await sub.get(timeout=heartbeat_seconds)
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield f"event: {event.type}\ndata: {json.dumps(event.payload)}\n\n"


@router.get("/events")
async def route_events_stream(request: Request):
    sub = get_broadcaster().subscribe()
    return StreamingResponse(
        event_stream(sub, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
