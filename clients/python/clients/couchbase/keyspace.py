import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from couchbase.exceptions import CollectionAlreadyExistsException, DocumentNotFoundException
from couchbase.n1ql import QueryScanConsistency
from couchbase.options import QueryOptions, ReplaceOptions
from couchbase.result import MutationResult
from .config import get_cluster, DEFAULT_BUCKET_NAME, DEFAULT_SCOPE_NAME


@dataclass
class Keyspace:
    bucket_name: str
    scope_name: str
    collection_name: str

    def __str__(self) -> str:
        return f"{self.bucket_name}.{self.scope_name}.{self.collection_name}"

    async def query(self, query: str, consistent: bool = False, **kwargs) -> list:
        """Run a N1QL statement with *kwargs* as named parameters.

        With *consistent* the index scan waits for every mutation acknowledged
        before the query was issued (``REQUEST_PLUS``).
        """
        cluster = await get_cluster()
        query = query.replace("${keyspace}", str(self))
        options = {}
        if kwargs:
            options["named_parameters"] = kwargs
        if consistent:
            options["scan_consistency"] = QueryScanConsistency.REQUEST_PLUS
        result = cluster.query(query, QueryOptions(**options))
        return [row async for row in result]

    async def get_scope(self):
        cluster = await get_cluster()
        bucket = cluster.bucket(self.bucket_name)
        return bucket.scope(self.scope_name)

    async def get_collection(self):
        scope = await self.get_scope()
        return scope.collection(self.collection_name)

    async def get(self, key: str) -> Optional[Tuple[dict, int]]:
        """Fetch a document and its CAS, or ``None`` if the key does not exist."""
        collection = await self.get_collection()
        try:
            result = await collection.get(key)
        except DocumentNotFoundException:
            return None
        return result.content_as[dict], result.cas

    async def insert(self, value: dict, key: Optional[str] = None, **kwargs) -> MutationResult:
        if key is None:
            key = str(uuid.uuid4())
        collection = await self.get_collection()
        return await collection.insert(key, value, **kwargs)

    async def replace(self, key: str, value: dict, cas: Optional[int] = None) -> MutationResult:
        """Replace a document. When *cas* is given the write only lands if the
        stored CAS still matches, otherwise ``CASMismatchException`` is raised.
        """
        collection = await self.get_collection()
        if cas:
            return await collection.replace(key, value, ReplaceOptions(cas=cas))
        return await collection.replace(key, value)

    async def remove(self, key: str, **kwargs) -> int:
        collection = await self.get_collection()
        result = await collection.remove(key, **kwargs)
        return result.cas

    async def find(
        self,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[List[Tuple[str, str]]] = None,
        limit: Optional[int] = None,
        consistent: bool = False,
    ) -> list:
        """Equality-filtered N1QL select.

        Rows come back as ``{"id": ..., "<collection_name>": {...}}``.
        Pass *consistent* for reads that must see writes made just before.
        """
        where = where or {}
        conditions = [f"`{field}` = ${field}" for field in where]
        where_clause = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        order_clause = ""
        if order_by:
            order_clause = " ORDER BY " + ", ".join(
                f"`{field}` {direction}" for field, direction in order_by
            )
        limit_clause = f" LIMIT {limit}" if limit is not None else ""
        query = f"SELECT META().id, * FROM {self}{where_clause}{order_clause}{limit_clause}"
        return await self.query(query, consistent=consistent, **where)

    async def ensure_exists(self) -> None:
        """Create the collection and its primary index if they are missing."""
        cluster = await get_cluster()
        manager = cluster.bucket(self.bucket_name).collections()
        try:
            await manager.create_collection(self.scope_name, self.collection_name)
        except CollectionAlreadyExistsException:
            pass
        await self.query(f"CREATE PRIMARY INDEX IF NOT EXISTS ON {self}")


def get_keyspace(collection_name: str, scope_name: Optional[str] = None, bucket_name: Optional[str] = None) -> Keyspace:
    """
    Create a Keyspace instance with optional scope and bucket parameters.

    Args:
        collection_name: Name of the collection
        scope_name: Name of the scope (defaults to COUCHBASE_SCOPE or "_default")
        bucket_name: Name of the bucket (defaults to COUCHBASE_BUCKET)
    """
    return Keyspace(bucket_name or DEFAULT_BUCKET_NAME, scope_name or DEFAULT_SCOPE_NAME, collection_name)
