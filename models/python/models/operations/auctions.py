"""
Bid acceptance and auction closing with CAS-guarded atomic operations.

Both flows mutate the item document only through ``item_cas_retry``:
- bids: read item with CAS, validate, write the new high bid, then append
  the Bid document under a pre-generated key
- closes: read item with CAS, read the ledger, pick the winner, write the
  terminal state

A close retries while the ledger is behind the item's ``bid_count`` so a bid
whose item write landed but whose Bid document is still in flight is never
skipped when picking the winner. Seats whose append failed are counted in
``void_count``; a bid still missing after ``LEDGER_GRACE`` is treated as lost.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel

from clients.couchbase import CouchbaseException

from models.entities.couchbase.bids import Bid, BidData
from models.entities.couchbase.items import Item, ItemData
from models.errors import (
    AlreadyClosed,
    AuctionClosed,
    AuctionError,
    BidTooLow,
    InvalidAmount,
    NotFound,
    StorageError,
)
from models.operations.authorization import AuthorizationPolicy, Identity, authorize
from models.operations.bids import (
    bid_discard,
    bid_get_by_item,
    bid_record,
    select_winning_bid,
)
from models.operations.items import (
    ConflictRetry,
    item_cas_retry,
    item_find_open,
    item_get,
    resolve_status,
)
from models.operations.notifications import (
    AUCTION_CLOSED,
    AUCTION_ENDED,
    notify_outbid,
    notify_winner,
    publish_auction_closed,
    publish_bid_update,
)

logger = logging.getLogger(__name__)

LEDGER_GRACE = timedelta(seconds=30)


class PlacedBid(BaseModel):
    bid_id: str
    item_id: str
    amount: float
    timestamp: datetime


class _NotDue(Exception):
    pass


def parse_bid_amount(raw: Any) -> float:
    """Accept numbers and numeric strings; reject everything that is not finite and positive."""
    if isinstance(raw, bool) or raw is None:
        raise InvalidAmount("Bid amount must be a valid number")
    try:
        value = float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError):
        raise InvalidAmount("Bid amount must be a valid number")
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmount("Bid amount must be a positive number")
    return value


# ---------------------------------------------------------------------------
# Bid placement (CAS-critical)
# ---------------------------------------------------------------------------

async def auction_place_bid(item_id: str, bidder: Identity, amount: Any) -> PlacedBid:
    """
    Atomically place a bid on an item.

    CAS flow:
    1. Validate the amount
    2. Read item with CAS
    3. Reject if closed (persisting a lapsed deadline first) or not above the effective price
    4. CAS-update the item's high-bid projection
    5. Append the Bid document; undo step 4 if that fails
    6. Publish ``bidUpdate`` and email the displaced bidder
    """
    value = parse_bid_amount(amount)

    item = await item_get(item_id)
    if not item:
        raise NotFound("Item not found")

    bid_id = str(uuid.uuid4())
    accepted: Dict[str, Any] = {}

    async def _mutate(d: ItemData) -> None:
        # Re-validate on every attempt, a retry sees a newer document
        now = datetime.now(timezone.utc)
        closed, _ = resolve_status(d, now)
        if closed:
            raise AuctionClosed("Auction is closed")
        if value <= d.effective_price:
            raise BidTooLow(d.effective_price)

        accepted["previous"] = {
            "current_price": d.current_price,
            "current_bidder_id": d.current_bidder_id,
            "current_bidder_email": d.current_bidder_email,
            "current_bid_id": d.current_bid_id,
            "bid_count": d.bid_count,
            "last_bid_at": d.last_bid_at,
        }
        timestamp = max(now, d.last_bid_at) if d.last_bid_at else now

        d.bid_count += 1
        d.current_price = value
        d.current_bidder_id = bidder.uid
        d.current_bidder_email = bidder.email
        d.current_bid_id = bid_id
        d.last_bid_at = timestamp

        accepted["seq"] = d.bid_count
        accepted["timestamp"] = timestamp
        accepted["title"] = d.title

    try:
        await item_cas_retry(item_id, _mutate, item=item)
    except AuctionClosed:
        await _expire_if_due(item_id)
        raise

    bid_data = BidData(
        item_id=item_id,
        user_id=bidder.uid,
        user_email=bidder.email,
        amount=value,
        timestamp=accepted["timestamp"],
        seq=accepted["seq"],
    )
    try:
        await bid_record(bid_id, bid_data)
    except CouchbaseException as e:
        logger.error(f"Failed to append bid {bid_id} to item {item_id}: {e}")
        await _undo_bid_projection(item_id, bid_id, accepted["previous"])
        raise StorageError("Failed to place bid") from e

    if not await _item_survived(item_id, bid_id):
        raise NotFound("Item not found")

    logger.info(f"Bid {bid_id} accepted on item {item_id}: {value} by {bidder.email}")

    publish_bid_update(item_id, bidder.email, value, bid_data.timestamp)

    previous = accepted["previous"]
    if previous["current_bidder_email"] and previous["current_bidder_id"] != bidder.uid:
        notify_outbid(
            previous["current_bidder_email"], accepted["title"], value, previous["current_price"]
        )

    return PlacedBid(bid_id=bid_id, item_id=item_id, amount=value, timestamp=bid_data.timestamp)


async def _undo_bid_projection(item_id: str, bid_id: str, previous: Dict[str, Any]) -> None:
    """Take back the item write after the Bid document could not be written.

    If the failed bid is still the high bid the previous projection is
    restored. If a later bid already replaced it, that projection stays and
    the failed bid's ledger seat is counted as void so closes stop waiting
    for it.
    """

    async def _mutate(d: ItemData) -> None:
        if d.current_bid_id == bid_id:
            for field, value in previous.items():
                setattr(d, field, value)
        else:
            d.void_count += 1

    try:
        await item_cas_retry(item_id, _mutate)
    except AuctionError as e:
        logger.error(f"Failed to restore item {item_id} after bid {bid_id} failed: {e}")


async def _item_survived(item_id: str, bid_id: str) -> bool:
    """Re-read the item once the bid is appended.

    A delete that removed the item between our item write and the append
    purged the ledger without this bid, so the bid is discarded here.
    """
    try:
        if await item_get(item_id):
            return True
    except StorageError as e:
        logger.warning(f"Could not confirm item {item_id} after bid {bid_id}: {e}")
        return True

    logger.info(f"Item {item_id} was deleted while bid {bid_id} was in flight, discarding it")
    await bid_discard(bid_id)
    return False


# ---------------------------------------------------------------------------
# Closing
# ---------------------------------------------------------------------------

def _ledger_gap_is_stale(d: ItemData) -> bool:
    if d.last_bid_at is None:
        return False
    return datetime.now(timezone.utc) - d.last_bid_at > LEDGER_GRACE


async def _close(
    item_id: str,
    closed_by: Literal["admin", "expiry"],
    only_if_due: bool = False,
) -> Item:
    winner: Dict[str, Optional[Bid]] = {"bid": None}

    async def _mutate(d: ItemData) -> None:
        if d.is_closed:
            raise AlreadyClosed("Auction already closed")
        if only_if_due and not resolve_status(d)[0]:
            raise _NotDue()

        bids = await bid_get_by_item(item_id)
        expected = d.bid_count - d.void_count
        if len(bids) < expected:
            if not _ledger_gap_is_stale(d):
                raise ConflictRetry(f"ledger has {len(bids)} of {expected} bids")
            logger.warning(
                f"Item {item_id} ledger still has {len(bids)} of {expected} bids "
                f"after {LEDGER_GRACE}, closing on what is stored"
            )

        best = select_winning_bid(bids)
        d.is_closed = True
        d.closed_at = datetime.now(timezone.utc)
        d.closed_by = closed_by
        d.winner_id = best.data.user_id if best else None
        d.winner_email = best.data.user_email if best else None
        d.winning_bid_id = best.id if best else None
        winner["bid"] = best

    item = await item_cas_retry(item_id, _mutate)

    best = winner["bid"]
    logger.info(
        f"Item {item_id} closed by {closed_by}: "
        f"winner={item.data.winner_email}, amount={best.data.amount if best else None}"
    )

    publish_auction_closed(item, AUCTION_CLOSED if closed_by == "admin" else AUCTION_ENDED)
    if best:
        notify_winner(best.data.user_email, item.data.title, best.data.amount)
    return item


async def auction_close(item_id: str, requested_by: Identity, policy: AuthorizationPolicy) -> Item:
    """Admin close. An item already past its deadline is closed by expiry
    first and then reported as ``AlreadyClosed``."""
    authorize(policy, requested_by)

    item = await item_get(item_id)
    if not item:
        raise NotFound("Item not found")
    closed, needs_persist = resolve_status(item.data)
    if closed:
        if needs_persist:
            await _expire_if_due(item_id)
        raise AlreadyClosed("Auction already closed")

    return await _close(item_id, "admin")


async def auction_expire(item_id: str) -> Optional[Item]:
    """System-driven close of an item whose deadline has passed.

    Returns ``None`` when there is nothing to do: already closed, not yet
    due, or deleted in the meantime.
    """
    try:
        return await _close(item_id, "expiry", only_if_due=True)
    except (AlreadyClosed, NotFound, _NotDue):
        return None


async def _expire_if_due(item_id: str) -> None:
    try:
        await auction_expire(item_id)
    except StorageError as e:
        logger.error(f"Failed to persist expiry of item {item_id}: {e}")


async def auction_check_expiry(item: Item) -> Item:
    """Lazy expiry for read paths.

    Returns the item as it should be shown. If the deadline has passed the
    close is persisted; should that fail the item is still reported closed.
    """
    closed, needs_persist = resolve_status(item.data)
    if not needs_persist:
        return item

    try:
        expired = await auction_expire(item.id)
        if expired:
            return expired
        refreshed = await item_get(item.id)
        if refreshed:
            return refreshed
    except StorageError as e:
        logger.error(f"Failed to persist expiry of item {item.id}: {e}")

    item.data.is_closed = True
    return item


async def auction_sweep_expired() -> int:
    """Close every open item whose deadline has passed. Returns how many were closed."""
    items = await item_find_open()
    closed = 0
    for item in items:
        if not resolve_status(item.data)[1]:
            continue
        try:
            if await auction_expire(item.id):
                closed += 1
        except StorageError as e:
            logger.error(f"Sweep failed to close item {item.id}: {e}")
    return closed
