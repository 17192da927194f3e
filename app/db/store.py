"""
app/db/store.py

Purpose: Pluggable key-value store

- Every record is addressed by (pk, sk) and may carry a per-item TTL
- MongoKeyValueStore: durable backend on the motor collection
- MemoryKeyValueStore: process-local dict for dev and tests only
  (no cross-instance consistency)
- consume() is an atomic get-and-delete used for one-shot records
"""

import copy
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Async key-value store with two-part keys and optional per-item TTL."""

    @abstractmethod
    async def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        """Return the record's data, or None when missing or expired."""

    @abstractmethod
    async def put(self, pk: str, sk: str, data: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None:
        """Create or overwrite a record. ttl_seconds=None never expires."""

    @abstractmethod
    async def delete(self, pk: str, sk: str) -> None:
        """Delete a record. Missing records are ignored."""

    @abstractmethod
    async def update(
        self,
        pk: str,
        sk: str,
        updates: Dict[str, Any],
        condition: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Merge updates into an existing record's data, keeping its TTL.

        When condition is given, the update only applies if every field in it
        currently has the given value. Returns the updated data, or None if the
        record is missing, expired or the condition did not hold.
        """

    @abstractmethod
    async def consume(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        """Atomically read and delete a record. Only one caller ever sees it."""

    @abstractmethod
    async def increment(self, pk: str, sk: str, field: str, ttl_seconds: Optional[int] = None) -> int:
        """Atomically increment a counter field, creating the record at 1."""

    @abstractmethod
    async def query(self, pk: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Return (sk, data) for every live record under a partition key."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def _expiry(ttl_seconds: Optional[int]) -> Optional[datetime]:
    if ttl_seconds is None:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)


class MongoKeyValueStore(KeyValueStore):
    """
    Durable backend. Documents look like {pk, sk, data, updated_at, expires_at}.

    The TTL monitor deletes expired documents roughly once a minute, so reads
    also filter on expires_at to hide records that have expired but not yet
    been removed.
    """

    def __init__(self, collection):
        self.collection = collection

    @staticmethod
    def _live(pk: str, sk: str) -> Dict[str, Any]:
        return {
            "pk": pk,
            "sk": sk,
            "$or": [
                {"expires_at": None},
                {"expires_at": {"$gt": datetime.now(timezone.utc)}},
            ],
        }

    async def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one(self._live(pk, sk), {"data": 1})
        return doc["data"] if doc else None

    async def put(self, pk: str, sk: str, data: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None:
        await self.collection.replace_one(
            {"pk": pk, "sk": sk},
            {
                "pk": pk,
                "sk": sk,
                "data": data,
                "updated_at": datetime.now(timezone.utc),
                "expires_at": _expiry(ttl_seconds),
            },
            upsert=True,
        )

    async def delete(self, pk: str, sk: str) -> None:
        await self.collection.delete_one({"pk": pk, "sk": sk})

    async def update(
        self,
        pk: str,
        sk: str,
        updates: Dict[str, Any],
        condition: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        query = self._live(pk, sk)
        for field, expected in (condition or {}).items():
            query[f"data.{field}"] = expected

        set_fields = {f"data.{field}": value for field, value in updates.items()}
        set_fields["updated_at"] = datetime.now(timezone.utc)

        doc = await self.collection.find_one_and_update(
            query,
            {"$set": set_fields},
            projection={"data": 1},
            return_document=ReturnDocument.AFTER,
        )
        return doc["data"] if doc else None

    async def consume(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one_and_delete(self._live(pk, sk), projection={"data": 1})
        return doc["data"] if doc else None

    async def increment(self, pk: str, sk: str, field: str, ttl_seconds: Optional[int] = None) -> int:
        update: Dict[str, Any] = {
            "$inc": {f"data.{field}": 1},
            "$set": {"updated_at": datetime.now(timezone.utc), "expires_at": _expiry(ttl_seconds)},
        }
        try:
            doc = await self.collection.find_one_and_update(
                {"pk": pk, "sk": sk},
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Two concurrent upserts; the loser retries against the winner's document
            doc = await self.collection.find_one_and_update(
                {"pk": pk, "sk": sk},
                update,
                return_document=ReturnDocument.AFTER,
            )
        return int(doc["data"][field])

    async def query(self, pk: str) -> List[Tuple[str, Dict[str, Any]]]:
        cursor = self.collection.find(
            {
                "pk": pk,
                "$or": [
                    {"expires_at": None},
                    {"expires_at": {"$gt": datetime.now(timezone.utc)}},
                ],
            },
            {"sk": 1, "data": 1},
        )
        return [(doc["sk"], doc["data"]) async for doc in cursor]

    async def ping(self) -> bool:
        from app.db.mongo import check_database_health

        return await check_database_health()


class MemoryKeyValueStore(KeyValueStore):
    """
    Process-local backend with lazy expiry.

    Valid only for a single process. Data is deep-copied on the way in and
    out so callers never share a mutable reference with the store.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._items: Dict[Tuple[str, str], Tuple[Dict[str, Any], Optional[float]]] = {}
        self._clock = clock

    def _read(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        item = self._items.get((pk, sk))
        if item is None:
            return None
        data, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            del self._items[(pk, sk)]
            return None
        return data

    async def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        data = self._read(pk, sk)
        return copy.deepcopy(data) if data is not None else None

    async def put(self, pk: str, sk: str, data: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._items[(pk, sk)] = (copy.deepcopy(data), expires_at)

    async def delete(self, pk: str, sk: str) -> None:
        self._items.pop((pk, sk), None)

    async def update(
        self,
        pk: str,
        sk: str,
        updates: Dict[str, Any],
        condition: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        data = self._read(pk, sk)
        if data is None:
            return None
        for field, expected in (condition or {}).items():
            if data.get(field) != expected:
                return None
        data.update(copy.deepcopy(updates))
        return copy.deepcopy(data)

    async def consume(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        data = self._read(pk, sk)
        if data is None:
            return None
        del self._items[(pk, sk)]
        return data

    async def increment(self, pk: str, sk: str, field: str, ttl_seconds: Optional[int] = None) -> int:
        data = self._read(pk, sk) or {}
        data[field] = int(data.get(field, 0)) + 1
        await self.put(pk, sk, data, ttl_seconds)
        return data[field]

    async def query(self, pk: str) -> List[Tuple[str, Dict[str, Any]]]:
        results = []
        for item_pk, item_sk in list(self._items):
            if item_pk != pk:
                continue
            data = self._read(item_pk, item_sk)
            if data is not None:
                results.append((item_sk, copy.deepcopy(data)))
        return results


# Global store instance
_store: Optional[KeyValueStore] = None


async def init_store() -> KeyValueStore:
    """
    Builds the configured backend. Called during application startup.
    The mongo backend expects connect_to_mongo() to have run first.
    """
    global _store

    if settings.STORE_BACKEND == "mongo":
        from app.db.mongo import get_kv_collection

        _store = MongoKeyValueStore(get_kv_collection())
    else:
        logger.warning("Using in-memory store; state will not survive restarts or span instances")
        _store = MemoryKeyValueStore()

    return _store


def get_store() -> KeyValueStore:
    """Returns the active store, falling back to a memory store when none was initialized."""
    global _store

    if _store is None:
        _store = MemoryKeyValueStore()
    return _store


def set_store(store: Optional[KeyValueStore]) -> None:
    """Replaces the active store (used by tests)."""
    global _store
    _store = store
