"""
Document store contract and its MongoDB implementation.

The core only needs a handful of operations from the database:
get / query / add / update, plus two atomic helpers:
- update_if: compare-and-set, used as the idempotency guard for
  duplicate webhook deliveries
- increment: atomic counters for seller balances
Documents come back as plain dicts with a string "id" key.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

Filter = Tuple[str, str, Any]      # (field, op, value); op in ==, !=, in, >=, <=
OrderBy = Tuple[str, str]          # (field, "asc" | "desc")

_MONGO_OPS = {
    "!=": "$ne",
    "in": "$in",
    ">=": "$gte",
    "<=": "$lte",
    ">": "$gt",
    "<": "$lt",
}


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    async def add(self, collection: str, doc: Mapping[str, Any]) -> str:
        ...

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> bool:
        ...

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        ...

    async def increment(self, collection: str, doc_id: str, deltas: Mapping[str, int]) -> bool:
        ...


def _id_filter(doc_id: str) -> Dict[str, Any]:
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return {"_id": ObjectId(doc_id)}
    return {"_id": doc_id}


def _from_mongo(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def build_mongo_filter(filters: Sequence[Filter]) -> Dict[str, Any]:
    """Translate (field, op, value) filters into a MongoDB query document."""
    query: Dict[str, Any] = {}
    for field, op, value in filters:
        if field == "id":
            field = "_id"
            if op == "in":
                value = [_id_filter(v)["_id"] for v in value]
            else:
                value = _id_filter(value)["_id"]

        if op == "==":
            query[field] = value
            continue
        if op not in _MONGO_OPS:
            raise ValueError(f"Unsupported filter operator: {op}")

        condition = query.setdefault(field, {})
        condition[_MONGO_OPS[op]] = value
    return query


class MongoDocumentStore:
    """DocumentStore backed by a Motor database."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = await self.db[collection].find_one(_id_filter(doc_id))
        if doc:
            return _from_mongo(doc)
        return None

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(build_mongo_filter(filters))
        if order_by:
            field, direction = order_by
            cursor = cursor.sort(field, -1 if direction == "desc" else 1)
        if limit:
            cursor = cursor.limit(limit)
        return [_from_mongo(doc) async for doc in cursor]

    async def add(self, collection: str, doc: Mapping[str, Any]) -> str:
        doc = {k: v for k, v in doc.items() if k != "id"}
        result = await self.db[collection].insert_one(doc)
        return str(result.inserted_id)

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> bool:
        result = await self.db[collection].update_one(
            _id_filter(doc_id),
            {"$set": dict(fields)}
        )
        return result.matched_count > 0

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        query = _id_filter(doc_id)
        query.update(expected)
        result = await self.db[collection].update_one(query, {"$set": dict(fields)})
        return result.modified_count > 0

    async def increment(self, collection: str, doc_id: str, deltas: Mapping[str, int]) -> bool:
        result = await self.db[collection].update_one(
            _id_filter(doc_id),
            {"$inc": dict(deltas)}
        )
        return result.matched_count > 0
