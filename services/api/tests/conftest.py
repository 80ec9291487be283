import os

# clients.couchbase validates its configuration at import time
os.environ.setdefault("COUCHBASE_USERNAME", "test")
os.environ.setdefault("COUCHBASE_PASSWORD", "test")
os.environ.setdefault("COUCHBASE_HOST", "localhost")
os.environ.setdefault("COUCHBASE_BUCKET", "auction")
os.environ.setdefault("COUCHBASE_PROTOCOL", "couchbase")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")

import asyncio
import copy
import itertools
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from couchbase.exceptions import (
    CASMismatchException,
    CouchbaseException,
    DocumentExistsException,
    DocumentNotFoundException,
)

from clients import smtp
from clients.couchbase import base_model
from clients.events import Broadcaster, broadcaster as broadcaster_module
from models.entities.couchbase.items import Item
from models.operations import auctions as auction_ops
from models.operations.authorization import Identity, admin_email_policy
from models.operations.items import item_create

ADMIN = Identity(uid="admin-1", email="Admin@Example.com")
ALICE = Identity(uid="alice-1", email="alice@example.com")
BOB = Identity(uid="bob-1", email="bob@example.com")


@dataclass
class FakeMutationResult:
    cas: int


class FakeKeyspace:
    """Stands in for clients.couchbase.Keyspace on top of an in-memory dict.

    Honours CAS on replace and yields to the event loop on every call so
    concurrent coroutines interleave the way they would against a server.
    """

    def __init__(self, store: "InMemoryStore", collection_name: str) -> None:
        self.store = store
        self.collection_name = collection_name

    @property
    def docs(self) -> Dict[str, Tuple[dict, int]]:
        return self.store.collections[self.collection_name]

    def _check_failure(self, op: str) -> None:
        if (op, self.collection_name) in self.store.failures:
            raise CouchbaseException(message=f"injected {op} failure on {self.collection_name}")

    async def get(self, key: str) -> Optional[Tuple[dict, int]]:
        await asyncio.sleep(0)
        self._check_failure("get")
        if key not in self.docs:
            return None
        doc, cas = self.docs[key]
        return copy.deepcopy(doc), cas

    async def insert(self, value: dict, key: Optional[str] = None, **kwargs) -> FakeMutationResult:
        await asyncio.sleep(0)
        self._check_failure("insert")
        if key in self.docs:
            raise DocumentExistsException(message=f"{key} exists")
        cas = self.store.next_cas()
        self.docs[key] = (copy.deepcopy(value), cas)
        return FakeMutationResult(cas=cas)

    async def replace(self, key: str, value: dict, cas: Optional[int] = None) -> FakeMutationResult:
        await asyncio.sleep(0)
        self._check_failure("replace")
        if key not in self.docs:
            raise DocumentNotFoundException(message=f"{key} not found")
        if cas and self.docs[key][1] != cas:
            raise CASMismatchException(message=f"{key} cas mismatch")
        new_cas = self.store.next_cas()
        self.docs[key] = (copy.deepcopy(value), new_cas)
        return FakeMutationResult(cas=new_cas)

    async def remove(self, key: str, **kwargs) -> int:
        await asyncio.sleep(0)
        self._check_failure("remove")
        if key not in self.docs:
            raise DocumentNotFoundException(message=f"{key} not found")
        del self.docs[key]
        return self.store.next_cas()

    async def find(
        self,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[List[Tuple[str, str]]] = None,
        limit: Optional[int] = None,
        consistent: bool = False,
    ) -> list:
        await asyncio.sleep(0)
        self._check_failure("find")
        self.store.finds.append((self.collection_name, consistent))
        where = where or {}
        rows = [
            {"id": key, self.collection_name: copy.deepcopy(doc)}
            for key, (doc, _) in self.docs.items()
            if all(doc.get(field) == value for field, value in where.items())
        ]
        for field, direction in reversed(order_by or []):
            rows.sort(
                key=lambda r: (r[self.collection_name].get(field) is None, r[self.collection_name].get(field)),
                reverse=direction.upper() == "DESC",
            )
        return rows[:limit] if limit is not None else rows


class InMemoryStore:
    def __init__(self) -> None:
        self.collections: Dict[str, Dict[str, Tuple[dict, int]]] = defaultdict(dict)
        self.failures: Set[Tuple[str, str]] = set()
        self.finds: List[Tuple[str, bool]] = []
        self._cas = itertools.count(1)

    def next_cas(self) -> int:
        return next(self._cas)

    def keyspace(self, collection_name: str, *args, **kwargs) -> FakeKeyspace:
        return FakeKeyspace(self, collection_name)

    def fail(self, op: str, collection_name: str) -> None:
        self.failures.add((op, collection_name))


@pytest.fixture
def store(monkeypatch) -> InMemoryStore:
    store = InMemoryStore()
    monkeypatch.setattr(base_model, "get_keyspace", store.keyspace)
    return store


@pytest.fixture
def broadcaster(monkeypatch) -> Broadcaster:
    fresh = Broadcaster(queue_size=50)
    monkeypatch.setattr(broadcaster_module, "_broadcaster", fresh)
    return fresh


@pytest.fixture
def sent_emails(monkeypatch) -> List[tuple]:
    sent: List[tuple] = []

    async def _winner(to, item_title, amount=None):
        sent.append(("winner", to, item_title, amount))

    async def _outbid(to, item_title, new_amount, your_amount):
        sent.append(("outbid", to, item_title, new_amount, your_amount))

    monkeypatch.setattr(smtp, "is_configured", lambda: True)
    monkeypatch.setattr(smtp, "send_winner_email", _winner)
    monkeypatch.setattr(smtp, "send_outbid_email", _outbid)
    return sent


@pytest.fixture
def admin_policy():
    return admin_email_policy("admin@example.com")


@pytest.fixture
def make_item(store, admin_policy):
    async def _make(title: str = "Antique Vase", base_price: float = 100, hours: float = 1) -> Item:
        end = datetime.now(timezone.utc) + timedelta(hours=hours)
        return await item_create(
            ADMIN, admin_policy, title=title, base_price=base_price, end_date=end.isoformat()
        )

    return _make


async def expire_item(item_id: str) -> None:
    """Move an item's deadline into the past without touching is_closed."""
    item = await Item.get(item_id)
    item.data.end_time = datetime.now(timezone.utc) - timedelta(minutes=1)
    await Item.update(item)


class AppendGate:
    """Holds one bidder's ledger append until released, optionally failing it."""

    def __init__(self, real_append) -> None:
        self._real_append = real_append
        self.uid: Optional[str] = None
        self.fail = False
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    def hold(self, uid: str, fail: bool = False) -> None:
        self.uid = uid
        self.fail = fail

    async def append(self, bid_id, data):
        if data.user_id == self.uid:
            self.reached.set()
            await self.release.wait()
            if self.fail:
                raise CouchbaseException(message=f"append of {bid_id} failed")
        return await self._real_append(bid_id, data)


@pytest.fixture
def append_gate(monkeypatch) -> AppendGate:
    gate = AppendGate(auction_ops.bid_record)
    monkeypatch.setattr(auction_ops, "bid_record", gate.append)
    return gate
