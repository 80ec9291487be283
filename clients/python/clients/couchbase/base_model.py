import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TypeVar, Generic, List, ClassVar, Tuple
from pydantic import BaseModel
from couchbase.exceptions import DocumentNotFoundException
from .keyspace import Keyspace, get_keyspace

class BaseCouchbaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None

DataT = TypeVar("DataT", bound=BaseCouchbaseEntityData)
T = TypeVar("T", bound="BaseModelCouchbase")

class BaseModelCouchbase(BaseModel, Generic[DataT]):
    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @classmethod
    def get_keyspace(cls) -> Keyspace:
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return get_keyspace(cls._collection_name)

    @classmethod
    def _from_row(cls: type[T], row: dict) -> Optional[T]:
        data_dict = row.get(cls._collection_name)
        if not data_dict:
            return None
        return cls(id=row["id"], data=data_dict)

    @classmethod
    async def get(cls: type[T], id: str) -> Optional[T]:
        found = await cls.get_keyspace().get(id)
        if found is None:
            return None
        data, cas = found
        return cls(id=id, data=data, cas=cas)

    @classmethod
    async def create(cls: type[T], data: DataT, key: Optional[str] = None, user_id: Optional[str] = None) -> T:
        if key is None:
            key = str(uuid.uuid4())

        now = datetime.now(timezone.utc)
        if data.created_at is None:
            data.created_at = now
        data.updated_at = now

        if user_id:
            data.created_by_user_id = user_id

        doc = data.model_dump(mode="json")
        result = await cls.get_keyspace().insert(doc, key=key)
        return cls(id=key, data=data, cas=result.cas)

    @classmethod
    async def update(cls: type[T], item: T) -> T:
        """Write *item* back. Guarded by the CAS it was read with, if any."""
        item.data.updated_at = datetime.now(timezone.utc)

        doc = item.data.model_dump(mode="json")
        result = await cls.get_keyspace().replace(item.id, doc, cas=item.cas)
        item.cas = result.cas
        return item

    @classmethod
    async def delete(cls: type[T], id: str) -> bool:
        try:
            await cls.get_keyspace().remove(id)
            return True
        except DocumentNotFoundException:
            return False

    @classmethod
    async def find(
        cls: type[T],
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[List[Tuple[str, str]]] = None,
        limit: Optional[int] = None,
        consistent: bool = False,
    ) -> List[T]:
        rows = await cls.get_keyspace().find(
            where=where, order_by=order_by, limit=limit, consistent=consistent
        )
        items = []
        for row in rows:
            item = cls._from_row(row)
            if item is not None:
                items.append(item)
        return items

    @classmethod
    async def delete_many(cls: type[T], ids: List[str]) -> List[str]:
        """Remove each key, skipping ones that are already gone."""
        keyspace = cls.get_keyspace()
        deleted = []
        for key in ids:
            try:
                await keyspace.remove(key)
                deleted.append(key)
            except DocumentNotFoundException:
                continue
        return deleted
