"""
app/services/store_service.py

Purpose: Storage collaborator

- Table-level select/insert/update/upsert/delete over MongoDB collections
- Every call returns StoreResponse(data, error)
- Logical failures (duplicate key, bad query) come back in `error`
- Connectivity failures raise, so guarded_store_call can tell them apart
"""

import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError

from app.core.logging import get_logger
from app.db.mongo import get_collection, get_database

logger = get_logger(__name__)


@dataclass
class StoreResponse:
    data: Any = None
    error: Optional[str] = None


def _clean(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if document is None:
        return None
    document = dict(document)
    if "_id" in document:
        document["id"] = str(document.pop("_id"))
    return document


def _store_errors(func: Callable) -> Callable:
    """Maps logical PyMongo errors into StoreResponse.error; lets connectivity errors raise."""
    @functools.wraps(func)
    async def wrapper(self, table: str, *args, **kwargs) -> StoreResponse:
        try:
            return await func(self, table, *args, **kwargs)
        except ConnectionFailure:
            raise
        except PyMongoError as e:
            logger.warning(f"Store {func.__name__} on {table} returned error: {e}")
            return StoreResponse(error=str(e))
    return wrapper


class StoreClient:
    """
    MongoDB-backed implementation of the store contract used by handlers
    and scheduled jobs.
    """

    def __init__(self, collection_getter: Callable = get_collection):
        self._collection = collection_getter

    @_store_errors
    async def select(
        self,
        table: str,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        limit: int = 0,
    ) -> StoreResponse:
        cursor = self._collection(table).find(filter or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        documents = await cursor.to_list(length=limit or None)
        return StoreResponse(data=[_clean(d) for d in documents])

    @_store_errors
    async def select_one(self, table: str, filter: Dict[str, Any]) -> StoreResponse:
        document = await self._collection(table).find_one(filter)
        return StoreResponse(data=_clean(document))

    @_store_errors
    async def insert(self, table: str, record: Dict[str, Any]) -> StoreResponse:
        record = dict(record)
        record.setdefault("created_at", datetime.now(timezone.utc))
        result = await self._collection(table).insert_one(record)
        record["_id"] = result.inserted_id
        return StoreResponse(data=_clean(record))

    @_store_errors
    async def update(self, table: str, filter: Dict[str, Any], values: Dict[str, Any]) -> StoreResponse:
        values = {**values, "updated_at": datetime.now(timezone.utc)}
        document = await self._collection(table).find_one_and_update(
            filter, {"$set": values}, return_document=ReturnDocument.AFTER
        )
        if document is None:
            return StoreResponse(error=f"No {table} record matches {filter}")
        return StoreResponse(data=_clean(document))

    @_store_errors
    async def upsert(self, table: str, filter: Dict[str, Any], values: Dict[str, Any]) -> StoreResponse:
        now = datetime.now(timezone.utc)
        document = await self._collection(table).find_one_and_update(
            filter,
            {"$set": {**values, "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return StoreResponse(data=_clean(document))

    @_store_errors
    async def delete(self, table: str, filter: Dict[str, Any]) -> StoreResponse:
        result = await self._collection(table).delete_many(filter)
        return StoreResponse(data=result.deleted_count)

    async def ping(self) -> StoreResponse:
        await get_database().command("ping")
        return StoreResponse(data=True)


store_client = StoreClient()
