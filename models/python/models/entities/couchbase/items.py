from typing import Optional, Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class ItemData(BaseCouchbaseEntityData):
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None

    # Pricing (base_price fixed at creation)
    base_price: float
    end_time: datetime

    # Denormalized ledger tail (updated atomically via CAS on each bid)
    current_price: Optional[float] = None
    current_bidder_id: Optional[str] = None
    current_bidder_email: Optional[str] = None
    current_bid_id: Optional[str] = None
    bid_count: int = 0
    last_bid_at: Optional[datetime] = None
    # Seats in bid_count whose Bid document was never written
    void_count: int = 0

    # Terminal state, written once by the closer
    is_closed: bool = False
    winner_id: Optional[str] = None
    winner_email: Optional[str] = None
    winning_bid_id: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[Literal["admin", "expiry"]] = None

    @property
    def effective_price(self) -> float:
        return self.current_price if self.current_price is not None else self.base_price


class Item(BaseModelCouchbase[ItemData]):
    _collection_name = "items"
