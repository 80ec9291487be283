"""
Bid ledger queries.

Append-only: bids are written by the bid acceptance flow in
operations/auctions.py and only ever removed by an item cascade delete,
or by the acceptance flow itself when the item was deleted before its
append landed.
"""

import logging
from typing import Iterable, List, Optional

from clients.couchbase import CouchbaseException

from models.entities.couchbase.bids import Bid, BidData
from models.errors import StorageError

logger = logging.getLogger(__name__)


async def bid_record(bid_id: str, data: BidData) -> Bid:
    """Append a bid under a pre-generated key."""
    return await Bid.create(data, key=bid_id, user_id=data.user_id)


async def bid_get_by_item(item_id: str) -> List[Bid]:
    """The item's ledger, oldest bid first."""
    try:
        bids = await Bid.find(where={"item_id": item_id}, order_by=[("seq", "ASC")], consistent=True)
    except CouchbaseException as e:
        logger.error(f"Failed to read ledger for item {item_id}: {e}")
        raise StorageError("Failed to fetch bids") from e
    return sorted(bids, key=lambda b: (b.data.seq, b.data.timestamp))


async def bid_discard(bid_id: str) -> bool:
    """Remove a single bid whose item is gone. Only the bid acceptance flow uses this."""
    try:
        return await Bid.delete(bid_id)
    except CouchbaseException as e:
        logger.error(f"Failed to discard bid {bid_id}: {e}")
        raise StorageError("Failed to discard bid") from e


async def bid_delete_by_item(item_id: str) -> int:
    bids = await bid_get_by_item(item_id)
    try:
        deleted = await Bid.delete_many([b.id for b in bids])
    except CouchbaseException as e:
        logger.error(f"Failed to delete ledger for item {item_id}: {e}")
        raise StorageError("Failed to delete bids") from e
    return len(deleted)


def select_winning_bid(bids: Iterable[Bid]) -> Optional[Bid]:
    """Highest amount wins; on a tie the earliest bid at that amount wins."""
    winner = None
    for bid in bids:
        if winner is None:
            winner = bid
            continue
        d, w = bid.data, winner.data
        if d.amount > w.amount:
            winner = bid
        elif d.amount == w.amount and (d.timestamp, d.seq) < (w.timestamp, w.seq):
            winner = bid
    return winner
