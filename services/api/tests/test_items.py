import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from models.entities.couchbase.bids import Bid
from models.entities.couchbase.items import Item, ItemData
from models.errors import Forbidden, NotFound, StorageError, ValidationError
from models.operations.auctions import auction_place_bid
from models.operations.bids import bid_get_by_item
from models.operations.items import item_create, item_delete, item_get, item_list, resolve_status

from conftest import ADMIN, ALICE, BOB


def _future(hours: float = 1) -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()


async def test_created_item_starts_open_at_base_price(make_item):
    created = await make_item(base_price=100)

    item = await item_get(created.id)
    assert item is not None
    assert item.data.current_price is None
    assert item.data.effective_price == 100
    assert item.data.bid_count == 0
    assert item.data.is_closed is False
    assert item.data.created_by_user_id == ADMIN.uid


async def test_create_accepts_numeric_string_price(store, admin_policy):
    item = await item_create(ADMIN, admin_policy, title="Quilt", base_price="25.5", end_date=_future())
    assert item.data.base_price == 25.5


async def test_create_treats_naive_end_date_as_utc(store, admin_policy):
    naive = (datetime.now(timezone.utc) + timedelta(days=2)).replace(tzinfo=None).isoformat()
    item = await item_create(ADMIN, admin_policy, title="Quilt", base_price=10, end_date=naive)
    assert item.data.end_time.tzinfo is not None


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"title": None, "base_price": 10}, "Missing required fields: title"),
        ({"title": "  ", "base_price": None}, "Missing required fields: title, basePrice"),
        ({"title": "Vase", "base_price": "ten"}, "basePrice must be a number"),
        ({"title": "Vase", "base_price": True}, "basePrice must be a number"),
        ({"title": "Vase", "base_price": -1}, "basePrice must not be negative"),
    ],
)
async def test_create_rejects_bad_fields(store, admin_policy, kwargs, message):
    with pytest.raises(ValidationError) as exc_info:
        await item_create(ADMIN, admin_policy, end_date=_future(), **kwargs)
    assert exc_info.value.message == message
    assert await item_list() == []


async def test_create_rejects_missing_end_date(store, admin_policy):
    with pytest.raises(ValidationError, match="Missing required fields: endDate"):
        await item_create(ADMIN, admin_policy, title="Vase", base_price=10, end_date="")


async def test_create_rejects_unparseable_end_date(store, admin_policy):
    with pytest.raises(ValidationError, match="endDate is not a valid date"):
        await item_create(ADMIN, admin_policy, title="Vase", base_price=10, end_date="next tuesday")


async def test_create_rejects_past_end_date(store, admin_policy):
    with pytest.raises(ValidationError, match="endDate must be in the future"):
        await item_create(ADMIN, admin_policy, title="Vase", base_price=10, end_date=_future(-1))


async def test_create_requires_admin(store, admin_policy):
    with pytest.raises(Forbidden):
        await item_create(ALICE, admin_policy, title="Vase", base_price=10, end_date=_future())
    assert await item_list() == []


async def test_create_storage_failure(store, admin_policy):
    store.fail("insert", "items")
    with pytest.raises(StorageError):
        await item_create(ADMIN, admin_policy, title="Vase", base_price=10, end_date=_future())


async def test_list_is_newest_first(make_item):
    first = await make_item(title="First")
    second = await make_item(title="Second")

    items = await item_list()
    assert [i.id for i in items] == [second.id, first.id]


async def test_get_missing_item_returns_none(store):
    assert await item_get("nope") is None


def test_resolve_status():
    now = datetime.now(timezone.utc)
    open_item = ItemData(title="a", base_price=1, end_time=now + timedelta(minutes=5))
    lapsed = ItemData(title="b", base_price=1, end_time=now - timedelta(seconds=1))
    closed = ItemData(title="c", base_price=1, end_time=now + timedelta(minutes=5), is_closed=True)

    assert resolve_status(open_item, now) == (False, False)
    assert resolve_status(lapsed, now) == (True, True)
    assert resolve_status(closed, now) == (True, False)
    # The deadline itself counts as closed
    assert resolve_status(open_item, open_item.end_time) == (True, True)


async def test_delete_cascades_to_bids(make_item, admin_policy):
    item = await make_item(base_price=10)
    other = await make_item(base_price=10)
    await auction_place_bid(item.id, ALICE, 20)
    await auction_place_bid(item.id, BOB, 30)
    await auction_place_bid(other.id, BOB, 15)

    removed = await item_delete(item.id, ADMIN, admin_policy)

    assert removed == 2
    assert await item_get(item.id) is None
    assert await bid_get_by_item(item.id) == []
    # Other items keep their ledger
    assert [b.data.amount for b in await bid_get_by_item(other.id)] == [15]


async def test_delete_missing_item(store, admin_policy):
    with pytest.raises(NotFound):
        await item_delete("nope", ADMIN, admin_policy)


async def test_delete_requires_admin(make_item, admin_policy):
    item = await make_item()
    with pytest.raises(Forbidden):
        await item_delete(item.id, BOB, admin_policy)
    assert await Item.get(item.id) is not None


async def test_delete_counts_only_remaining_bids(make_item, admin_policy):
    item = await make_item(base_price=10)
    placed = await auction_place_bid(item.id, ALICE, 20)
    await auction_place_bid(item.id, BOB, 30)
    await Bid.delete(placed.bid_id)

    assert await item_delete(item.id, ADMIN, admin_policy) == 1


async def test_delete_during_bid_append_leaves_no_orphan(make_item, admin_policy, append_gate):
    item = await make_item(base_price=10)
    append_gate.hold(ALICE.uid)
    bid = asyncio.create_task(auction_place_bid(item.id, ALICE, 20))
    await append_gate.reached.wait()

    assert await item_delete(item.id, ADMIN, admin_policy) == 0

    append_gate.release.set()
    with pytest.raises(NotFound):
        await bid

    assert await item_get(item.id) is None
    assert await bid_get_by_item(item.id) == []


async def test_ledger_reads_wait_for_pending_writes(make_item, store):
    item = await make_item(base_price=10)
    await auction_place_bid(item.id, ALICE, 20)
    store.finds.clear()

    await bid_get_by_item(item.id)

    assert store.finds == [("bids", True)]
