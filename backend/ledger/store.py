"""
LEDGER STORE

Document-store collaborator consumed by the ledger services.

The services only ever talk to the store through this small interface:
- get / find (filter, order, limit, cursor) / insert / update / delete
- run_transaction(fn): atomic multi-document commit, retried by the store
  on write conflicts

MongoLedgerStore implements it on motor. Inside a transaction every read and
write goes through the same ClientSession; ClientSession.with_transaction
retries the callback on TransientTransactionError and retries the commit on
UnknownTransactionCommitResult, so the services never implement their own
locking or retry.

Documents travel as plain dicts keyed by "id"; the Mongo "_id" never leaves
this module.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from bson import ObjectId
from typing import Optional, Dict, Any, List, Callable, Awaitable, TypeVar, Union
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Collection names
COLLECTIONS = {
    "TREASURY": "treasury_categories",
    "DONATIONS": "donations",
    "PAYMENTS": "payments",
    "FEEDING_ROUNDS": "feeding_rounds",
    "TRANSACTIONS": "transactions",
    "PAYMENT_REQUESTS": "payment_requests",
    "DONORS": "donors",
    "BENEFICIARIES": "beneficiaries",
}

# Filter values: a scalar means equality, a list means "any of"
FilterValue = Union[Any, List[Any]]


def new_id() -> str:
    """Generate a new document id (ObjectId hex, increasing within a process)"""
    return str(ObjectId())


class LedgerTransaction:
    """Reads and writes that commit together or not at all."""

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        unset: Optional[List[str]] = None
    ) -> None:
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError


class LedgerStore:
    """Generic transactional document store."""

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def find(
        self,
        collection: str,
        filters: Optional[Dict[str, FilterValue]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        unset: Optional[List[str]] = None
    ) -> None:
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    async def run_transaction(self, fn: Callable[[LedgerTransaction], Awaitable[T]]) -> T:
        raise NotImplementedError


# =============================================================================
# MONGO IMPLEMENTATION
# =============================================================================

def to_mongo(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Map a ledger document onto a Mongo document ("id" -> "_id")"""
    result = dict(doc)
    result["_id"] = result.pop("id", None) or new_id()
    return result


def from_mongo(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Map a Mongo document back onto a ledger document ("_id" -> "id")"""
    if doc is None:
        return None
    result = dict(doc)
    result["id"] = str(result.pop("_id"))
    return result


def build_query(
    filters: Optional[Dict[str, FilterValue]],
    order_by: Optional[str] = None,
    descending: bool = False,
    start_after: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Translate ledger filters plus an optional cursor into a Mongo query."""
    clauses = []
    for field, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            clauses.append({field: {"$in": list(value)}})
        else:
            clauses.append({field: value})

    if start_after is not None and order_by:
        op = "$lt" if descending else "$gt"
        last_value = start_after.get(order_by)
        clauses.append({
            "$or": [
                {order_by: {op: last_value}},
                {order_by: last_value, "_id": {op: start_after["id"]}}
            ]
        })

    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def build_update(fields: Dict[str, Any], unset: Optional[List[str]] = None) -> Dict[str, Any]:
    update: Dict[str, Any] = {}
    if fields:
        update["$set"] = fields
    if unset:
        update["$unset"] = {field: "" for field in unset}
    return update


class MongoLedgerTransaction(LedgerTransaction):
    """Transaction bound to a motor ClientSession"""

    def __init__(self, db: AsyncIOMotorDatabase, session):
        self.db = db
        self.session = session

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = await self.db[collection].find_one({"_id": doc_id}, session=self.session)
        return from_mongo(doc)

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        mongo_doc = to_mongo(doc)
        await self.db[collection].insert_one(mongo_doc, session=self.session)
        return from_mongo(mongo_doc)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        unset: Optional[List[str]] = None
    ) -> None:
        update = build_update(fields, unset)
        if update:
            await self.db[collection].update_one({"_id": doc_id}, update, session=self.session)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.db[collection].delete_one({"_id": doc_id}, session=self.session)


class MongoLedgerStore(LedgerStore):
    """
    LedgerStore on MongoDB (replica set required for transactions).

    Usage:
        client = AsyncIOMotorClient(settings.mongo_url)
        store = MongoLedgerStore(client, client[settings.db_name])
        await store.run_transaction(do_work)
    """

    def __init__(self, client: AsyncIOMotorClient, db: AsyncIOMotorDatabase):
        self.client = client
        self.db = db

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return from_mongo(await self.db[collection].find_one({"_id": doc_id}))

    async def find(
        self,
        collection: str,
        filters: Optional[Dict[str, FilterValue]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        query = build_query(filters, order_by, descending, start_after)
        cursor = self.db[collection].find(query)
        if order_by:
            direction = -1 if descending else 1
            cursor = cursor.sort([(order_by, direction), ("_id", direction)])
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=limit)
        return [from_mongo(doc) for doc in docs]

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        mongo_doc = to_mongo(doc)
        await self.db[collection].insert_one(mongo_doc)
        return from_mongo(mongo_doc)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        unset: Optional[List[str]] = None
    ) -> None:
        update = build_update(fields, unset)
        if update:
            await self.db[collection].update_one({"_id": doc_id}, update)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.db[collection].delete_one({"_id": doc_id})

    async def run_transaction(self, fn: Callable[[LedgerTransaction], Awaitable[T]]) -> T:
        """
        Run fn inside one multi-document transaction.

        with_transaction re-invokes the callback on transient write conflicts,
        so fn must stay free of side effects outside the transaction.
        Any exception raised by fn aborts the transaction and propagates.
        """
        async with await self.client.start_session() as session:
            async def callback(s):
                return await fn(MongoLedgerTransaction(self.db, s))

            return await session.with_transaction(callback)
