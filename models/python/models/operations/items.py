"""
Item store: creation, reads, cascade delete and the CAS retry helper.

Every write to an item after creation goes through ``item_cas_retry`` so
that concurrent bids and closes never overwrite each other.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from clients.couchbase import CASMismatchException, CouchbaseException

from models.entities.couchbase.items import Item, ItemData
from models.errors import NotFound, StorageError, ValidationError
from models.operations.authorization import AuthorizationPolicy, Identity, authorize
from models.operations.bids import bid_delete_by_item

logger = logging.getLogger(__name__)


class ConflictRetry(Exception):
    """Raised by a mutator to ask ``item_cas_retry`` to re-read and try again."""


# ---------------------------------------------------------------------------
# CAS-retry helper
# ---------------------------------------------------------------------------

async def item_cas_retry(
    item_id: str,
    mutator: Callable[[ItemData], Awaitable[None]],
    max_retries: int = 5,
    item: Optional[Item] = None,
) -> Item:
    """Read-modify-write an item with CAS-guarded retry.

    *mutator* receives ``ItemData`` and mutates it in place, raising an
    ``AuctionError`` to abort.  On ``CASMismatchException`` (or a
    ``ConflictRetry`` from the mutator) the helper re-reads and retries with
    exponential backoff (10 ms, 20 ms, 40 ms, ...).  *item*, if given, is
    used for the first attempt instead of a fresh read.
    """
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        if item is None:
            item = await item_get(item_id)
            if not item:
                raise NotFound("Item not found")

        try:
            await mutator(item.data)
            return await Item.update(item)
        except (CASMismatchException, ConflictRetry) as e:
            logger.debug(f"Item {item_id} conflict on attempt {attempt + 1}: {type(e).__name__}")
            if attempt == max_retries:
                raise StorageError("Concurrent update conflict, please retry") from e
        except CouchbaseException as e:
            logger.error(f"Failed to update item {item_id}: {e}")
            raise StorageError("Failed to update item") from e

        item = None
        await asyncio.sleep(backoff_ms / 1000)
        backoff_ms *= 2

    raise StorageError("Max retries exceeded")


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_status(data: ItemData, now: Optional[datetime] = None) -> Tuple[bool, bool]:
    """Return ``(effective_is_closed, needs_persist)`` for an item.

    An open item whose deadline has passed is effectively closed even though
    its flag is not yet stored; the caller decides whether to persist.
    """
    if data.is_closed:
        return True, False
    now = now or datetime.now(timezone.utc)
    if now >= _as_utc(data.end_time):
        return True, True
    return False, False


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def _parse_base_price(raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValidationError("basePrice must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("basePrice must be a number")
    if not math.isfinite(value):
        raise ValidationError("basePrice must be a number")
    if value < 0:
        raise ValidationError("basePrice must not be negative")
    return value


def _parse_end_date(raw: Any, now: datetime) -> datetime:
    if isinstance(raw, datetime):
        end_time = raw
    elif isinstance(raw, str):
        try:
            end_time = datetime.fromisoformat(raw.strip())
        except ValueError:
            raise ValidationError("endDate is not a valid date")
    else:
        raise ValidationError("endDate is not a valid date")

    end_time = _as_utc(end_time)
    if end_time <= now:
        raise ValidationError("endDate must be in the future")
    return end_time


async def item_create(
    requested_by: Identity,
    policy: AuthorizationPolicy,
    title: Any,
    base_price: Any,
    end_date: Any,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
) -> Item:
    """Create an auction item after validating the raw request values."""
    authorize(policy, requested_by)

    missing = []
    if title is None or (isinstance(title, str) and not title.strip()):
        missing.append("title")
    if base_price is None or base_price == "":
        missing.append("basePrice")
    if end_date is None or end_date == "":
        missing.append("endDate")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    now = datetime.now(timezone.utc)
    data = ItemData(
        title=str(title).strip(),
        description=description,
        image_url=image_url,
        base_price=_parse_base_price(base_price),
        end_time=_parse_end_date(end_date, now),
    )
    try:
        item = await Item.create(data, user_id=requested_by.uid)
    except CouchbaseException as e:
        logger.error(f"Failed to create item '{data.title}': {e}")
        raise StorageError("Failed to create item") from e

    logger.info(f"Item {item.id} created by {requested_by.email}, ends at {data.end_time.isoformat()}")
    return item


async def item_get(item_id: str) -> Optional[Item]:
    try:
        return await Item.get(item_id)
    except CouchbaseException as e:
        logger.error(f"Failed to fetch item {item_id}: {e}")
        raise StorageError("Failed to fetch item") from e


async def item_list(limit: Optional[int] = None) -> List[Item]:
    try:
        return await Item.find(order_by=[("created_at", "DESC")], limit=limit)
    except CouchbaseException as e:
        logger.error(f"Failed to list items: {e}")
        raise StorageError("Failed to fetch items") from e


async def item_find_open() -> List[Item]:
    try:
        return await Item.find(where={"is_closed": False}, order_by=[("end_time", "ASC")])
    except CouchbaseException as e:
        logger.error(f"Failed to list open items: {e}")
        raise StorageError("Failed to fetch open items") from e


async def item_delete(item_id: str, requested_by: Identity, policy: AuthorizationPolicy) -> int:
    """Delete an item and every bid in its ledger. Returns the number of bids removed.

    The item goes first so no new bid can land while the ledger is purged.
    """
    authorize(policy, requested_by)

    try:
        deleted = await Item.delete(item_id)
    except CouchbaseException as e:
        logger.error(f"Failed to delete item {item_id}: {e}")
        raise StorageError("Failed to delete item") from e
    if not deleted:
        raise NotFound("Item not found")

    removed = await bid_delete_by_item(item_id)
    logger.info(f"Item {item_id} deleted by {requested_by.email} ({removed} bids removed)")
    return removed
