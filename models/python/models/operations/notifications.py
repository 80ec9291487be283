"""
Hand-off from the bid and close flows to the notification fan-out.

Events go to every connected observer through the in-process broadcaster.
Emails are scheduled as background tasks after the state change is stored;
a failed send is logged and never reaches the caller.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal, Optional, Set

from clients import events, smtp

from models.entities.couchbase.items import Item
from models.errors import format_price

logger = logging.getLogger(__name__)

BID_UPDATE = "bidUpdate"
AUCTION_CLOSED = "auctionClosed"
AUCTION_ENDED = "auctionEnded"

# Strong references so pending sends are not garbage collected mid-flight
_pending: Set[asyncio.Task] = set()


def publish_bid_update(item_id: str, user_email: str, amount: float, timestamp: datetime) -> int:
    return events.publish(BID_UPDATE, {
        "itemId": item_id,
        "userEmail": user_email,
        "amount": amount,
        "timestamp": timestamp.isoformat(),
    })


def publish_auction_closed(
    item: Item, event_type: Literal["auctionClosed", "auctionEnded"] = AUCTION_CLOSED
) -> int:
    return events.publish(event_type, {
        "itemId": item.id,
        "winnerEmail": item.data.winner_email,
    })


async def _deliver(description: str, send: Callable[..., Awaitable[Any]], *args: Any) -> None:
    try:
        await send(*args)
        logger.info(f"Sent {description}")
    except Exception as e:
        logger.error(f"Failed to send {description}: {e}")


def _schedule(description: str, send: Callable[..., Awaitable[Any]], *args: Any) -> Optional[asyncio.Task]:
    if not smtp.is_configured():
        logger.info(f"SMTP not configured, skipping {description}")
        return None
    task = asyncio.get_running_loop().create_task(_deliver(description, send, *args))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


def notify_winner(to: str, item_title: str, amount: Optional[float]) -> Optional[asyncio.Task]:
    shown = format_price(amount) if amount is not None else None
    return _schedule(f"winner email to {to}", smtp.send_winner_email, to, item_title, shown)


def notify_outbid(
    to: str, item_title: str, new_amount: float, your_amount: float
) -> Optional[asyncio.Task]:
    return _schedule(
        f"outbid email to {to}",
        smtp.send_outbid_email,
        to,
        item_title,
        format_price(new_amount),
        format_price(your_amount),
    )


async def drain_notifications() -> None:
    """Wait for every scheduled email to finish (used on shutdown)."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
