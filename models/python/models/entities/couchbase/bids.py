from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class BidData(BaseCouchbaseEntityData):
    item_id: str
    user_id: str
    user_email: str
    amount: float
    timestamp: datetime
    seq: int  # 1-based position in the item's ledger


class Bid(BaseModelCouchbase[BidData]):
    _collection_name = "bids"
