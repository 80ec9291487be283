"""In-process publish/subscribe broadcaster.

Every subscriber owns a bounded queue. ``publish`` pushes the event into each
queue without waiting; a subscriber whose queue is full simply misses the
event. Nothing is persisted or replayed: an observer that connects after an
event was published never sees it and must re-read current state instead.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Event(BaseModel):
    type: str
    payload: Dict[str, Any]
    published_at: datetime


class Subscription:
    """A single observer's view of the event stream.

    Usage::

        async with broadcaster.subscribe() as sub:
            event = await sub.get(timeout=15)
    """

    def __init__(self, broadcaster: "Broadcaster", maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    async def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Wait for the next event. Returns ``None`` if *timeout* elapses first."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._broadcaster.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class Broadcaster:
    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscribers: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.queue_size)
        self._subscribers.add(sub)
        logger.debug("Subscriber added (%d connected)", len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)
        logger.debug("Subscriber removed (%d connected)", len(self._subscribers))

    def publish(self, event_type: str, payload: Dict[str, Any]) -> int:
        """Fan *payload* out to every connected subscriber.

        Returns how many subscribers accepted the event.
        """
        event = Event(
            type=event_type,
            payload=payload,
            published_at=datetime.now(timezone.utc),
        )
        delivered = 0
        for sub in list(self._subscribers):
            if sub.offer(event):
                delivered += 1
            else:
                logger.debug("Dropped %s event for a slow subscriber", event_type)
        return delivered


# Module-level broadcaster cache
_broadcaster: Optional[Broadcaster] = None


def get_broadcaster() -> Broadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = Broadcaster()
    return _broadcaster


def publish(event_type: str, payload: Dict[str, Any]) -> int:
    return get_broadcaster().publish(event_type, payload)
