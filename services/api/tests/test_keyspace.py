import pytest
from couchbase.n1ql import QueryScanConsistency

from clients.couchbase import keyspace as keyspace_module
from clients.couchbase.keyspace import Keyspace


class _Rows:
    def __init__(self, rows):
        self._rows = list(rows)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._rows:
            raise StopAsyncIteration
        return self._rows.pop(0)


class RecordingCluster:
    def __init__(self, rows=()):
        self.rows = rows
        self.calls = []

    def query(self, statement, options):
        self.calls.append((statement, options))
        return _Rows(self.rows)


@pytest.fixture
def cluster(monkeypatch) -> RecordingCluster:
    fake = RecordingCluster(rows=[{"id": "b1", "bids": {"seq": 1}}])

    async def _get_cluster():
        return fake

    monkeypatch.setattr(keyspace_module, "get_cluster", _get_cluster)
    return fake


async def test_consistent_find_waits_for_prior_writes(cluster):
    rows = await Keyspace("auction", "_default", "bids").find(
        where={"item_id": "i1"}, order_by=[("seq", "ASC")], consistent=True
    )

    assert rows == [{"id": "b1", "bids": {"seq": 1}}]
    statement, options = cluster.calls[0]
    assert statement == (
        "SELECT META().id, * FROM auction._default.bids WHERE `item_id` = $item_id ORDER BY `seq` ASC"
    )
    assert options["named_parameters"] == {"item_id": "i1"}
    assert options["scan_consistency"] == QueryScanConsistency.REQUEST_PLUS


async def test_plain_find_uses_default_consistency(cluster):
    await Keyspace("auction", "_default", "items").find(limit=5)

    statement, options = cluster.calls[0]
    assert statement.endswith(" LIMIT 5")
    assert "scan_consistency" not in options
    assert "named_parameters" not in options
