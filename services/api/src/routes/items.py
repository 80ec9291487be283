"""
API endpoints for auction items and bidding.

GET    /items                — list items (public, lazily closes lapsed ones)
GET    /items/{id}           — item detail with its bid ledger
POST   /items                — create an item (admin)
POST   /items/{id}/bid       — place a bid (authenticated)
PATCH  /items/{id}/close     — close the auction and pick the winner (admin)
DELETE /items/{id}           — delete the item and its bids (admin)
"""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.entities.couchbase.bids import Bid
from models.entities.couchbase.items import Item
from models.errors import NotFound, StorageError
from models.operations.auctions import (
    auction_check_expiry,
    auction_close,
    auction_place_bid,
)
from models.operations.authorization import AuthorizationPolicy, Identity
from models.operations.bids import bid_get_by_item
from models.operations.items import item_create, item_delete, item_get, item_list
from utils import log

from .dependencies import admin_policy_get, current_user_get

logger = log.get_logger(__name__)

router = APIRouter(prefix="/items", tags=["items"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateItemRequest(CamelModel):
    # Raw values; item_create does the validation so errors read {message}
    title: Optional[Any] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    base_price: Optional[Any] = None
    end_date: Optional[Any] = None


class PlaceBidRequest(BaseModel):
    amount: Optional[Any] = None


class ItemResponse(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    base_price: float
    current_price: Optional[float] = None
    current_bidder: Optional[str] = None
    effective_price: float
    bid_count: int
    end_time: datetime
    is_closed: bool
    winner_email: Optional[str] = None
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BidResponse(CamelModel):
    id: str
    item_id: str
    user_id: str
    user_email: str
    amount: float
    timestamp: datetime


class ItemDetailResponse(CamelModel):
    item: ItemResponse
    bids: List[BidResponse]


class BidPlacedResponse(CamelModel):
    message: str
    bid_id: str
    amount: float
    timestamp: datetime


class ItemDeletedResponse(CamelModel):
    message: str
    deleted_bids: int


def _item_to_response(item: Item) -> ItemResponse:
    d = item.data
    return ItemResponse(
        id=item.id,
        title=d.title,
        description=d.description,
        image_url=d.image_url,
        base_price=d.base_price,
        current_price=d.current_price,
        current_bidder=d.current_bidder_email,
        effective_price=d.effective_price,
        bid_count=d.bid_count - d.void_count,
        end_time=d.end_time,
        is_closed=d.is_closed,
        winner_email=d.winner_email,
        closed_at=d.closed_at,
        created_at=d.created_at,
        updated_at=d.updated_at,
    )


def _bid_to_response(bid: Bid) -> BidResponse:
    d = bid.data
    return BidResponse(
        id=bid.id,
        item_id=d.item_id,
        user_id=d.user_id,
        user_email=d.user_email,
        amount=d.amount,
        timestamp=d.timestamp,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get("", response_model=List[ItemResponse])
async def route_items_list():
    """List every item. Items past their deadline are closed on the way out."""
    try:
        items = await item_list()
    except StorageError:
        return []
    return [_item_to_response(await auction_check_expiry(item)) for item in items]


@router.get("/{item_id}", response_model=ItemDetailResponse)
async def route_item_detail(item_id: str):
    """Get a single item with its bids, oldest first."""
    item = await item_get(item_id)
    if not item:
        raise NotFound("Item not found")
    item = await auction_check_expiry(item)

    try:
        bids = await bid_get_by_item(item_id)
    except StorageError:
        bids = []
    return ItemDetailResponse(
        item=_item_to_response(item),
        bids=[_bid_to_response(b) for b in bids],
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

@router.post("", response_model=ItemResponse, status_code=201)
async def route_item_create(
    body: CreateItemRequest,
    user: Identity = Depends(current_user_get),
    policy: AuthorizationPolicy = Depends(admin_policy_get),
):
    item = await item_create(
        requested_by=user,
        policy=policy,
        title=body.title,
        base_price=body.base_price,
        end_date=body.end_date,
        description=body.description,
        image_url=body.image_url,
    )
    return _item_to_response(item)


@router.post("/{item_id}/bid", response_model=BidPlacedResponse, status_code=201)
async def route_place_bid(
    item_id: str,
    body: PlaceBidRequest,
    user: Identity = Depends(current_user_get),
):
    placed = await auction_place_bid(item_id, user, body.amount)
    return BidPlacedResponse(
        message="Bid placed",
        bid_id=placed.bid_id,
        amount=placed.amount,
        timestamp=placed.timestamp,
    )


@router.patch("/{item_id}/close", response_model=ItemResponse)
async def route_item_close(
    item_id: str,
    user: Identity = Depends(current_user_get),
    policy: AuthorizationPolicy = Depends(admin_policy_get),
):
    item = await auction_close(item_id, user, policy)
    return _item_to_response(item)


@router.delete("/{item_id}", response_model=ItemDeletedResponse)
async def route_item_delete(
    item_id: str,
    user: Identity = Depends(current_user_get),
    policy: AuthorizationPolicy = Depends(admin_policy_get),
):
    removed = await item_delete(item_id, user, policy)
    return ItemDeletedResponse(message="Item deleted", deleted_bids=removed)
