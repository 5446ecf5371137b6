"""
MongoDB Queue Repository

Wraps the async PyMongo client for the queues collection.

Connection Management:
- One AsyncMongoClient per repository, created lazily on first use
- PyMongo handles the connection pool internally

Error Handling:
- Fail-fast: driver errors are wrapped in PersistenceError
- Identifiers that are not valid ObjectIds behave as not found
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from ..queue.exceptions import PersistenceError
from .base import DEFAULT_SORT, QueueRepositoryInterface, WriteResult

logger = logging.getLogger(__name__)


def _to_object_id(entry_id: Any) -> Optional[ObjectId]:
    """Convert a string id to ObjectId, None if it is not a valid ObjectId."""
    if isinstance(entry_id, ObjectId):
        return entry_id
    try:
        return ObjectId(str(entry_id))
    except (InvalidId, TypeError):
        return None


def _prepare_filter(filter: Dict[str, Any]) -> Dict[str, Any]:
    """Translate string _id values (plain or inside operators) to ObjectId."""
    if "_id" not in filter:
        return filter
    prepared = dict(filter)
    condition = prepared["_id"]
    if isinstance(condition, dict):
        prepared["_id"] = {
            operator: _to_object_id(operand) or operand
            for operator, operand in condition.items()
        }
    else:
        prepared["_id"] = _to_object_id(condition) or condition
    return prepared


def _stringify_id(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if document is not None and "_id" in document:
        document["_id"] = str(document["_id"])
    return document


class MongoQueueRepository(QueueRepositoryInterface):
    """
    MongoDB implementation of the queue repository.

    When `use_transactions` is set, `transaction()` opens a session with a
    multi-document transaction and every operation inside the block joins
    it (requires a replica set). Otherwise `transaction()` only groups the
    calls, `supports_rollback` is False, and the queue manager undoes a
    failed sequence with compensating writes.
    """

    def __init__(
        self,
        mongodb_uri: str,
        database: str = "queue_app",
        collection: str = "queues",
        use_transactions: bool = False,
        client: Optional[AsyncMongoClient] = None,
    ):
        """
        Initialize repository with connection parameters.

        Args:
            mongodb_uri: MongoDB connection string
            database: Database name (default: "queue_app")
            collection: Collection name (default: "queues")
            use_transactions: Wrap transaction() blocks in a server transaction
            client: Pre-built client (tests inject a fake here)
        """
        self._mongodb_uri = mongodb_uri
        self._database_name = database
        self._collection_name = collection
        self._use_transactions = use_transactions
        self._client = client
        self._session: ContextVar[Optional[AsyncClientSession]] = ContextVar(
            f"queue_session_{id(self)}", default=None
        )

    def _get_client(self) -> AsyncMongoClient:
        if self._client is None:
            self._client = AsyncMongoClient(self._mongodb_uri)
            logger.info(
                f"Mongo repository connected: {self._database_name}.{self._collection_name}"
            )
        return self._client

    def _get_collection(self) -> AsyncCollection:
        return self._get_client()[self._database_name][self._collection_name]

    async def find_all(self, sort: Optional[List[tuple]] = None) -> List[Dict[str, Any]]:
        return await self.find_many({}, sort=sort or DEFAULT_SORT)

    async def find_many(
        self,
        filter: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
    ) -> List[Dict[str, Any]]:
        try:
            cursor = self._get_collection().find(
                _prepare_filter(filter), session=self._session.get()
            )
            if sort:
                cursor = cursor.sort(sort)
            documents = await cursor.to_list(None)
        except PyMongoError as e:
            raise PersistenceError("find_many", e) from e
        return [_stringify_id(doc) for doc in documents]

    async def find_one(
        self,
        filter: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            document = await self._get_collection().find_one(
                _prepare_filter(filter), sort=sort, session=self._session.get()
            )
        except PyMongoError as e:
            raise PersistenceError("find_one", e) from e
        return _stringify_id(document)

    async def find_by_id(self, entry_id: str) -> Optional[Dict[str, Any]]:
        object_id = _to_object_id(entry_id)
        if object_id is None:
            return None
        return await self.find_one({"_id": object_id})

    async def count_documents(self, filter: Dict[str, Any]) -> int:
        try:
            return await self._get_collection().count_documents(
                _prepare_filter(filter), session=self._session.get()
            )
        except PyMongoError as e:
            raise PersistenceError("count_documents", e) from e

    async def insert_one(self, document: Dict[str, Any]) -> WriteResult:
        document = dict(document)
        if "_id" in document:
            # Re-inserting a removed entry keeps its identifier
            document["_id"] = _to_object_id(document["_id"]) or document["_id"]
        try:
            result = await self._get_collection().insert_one(
                document, session=self._session.get()
            )
        except PyMongoError as e:
            raise PersistenceError("insert_one", e) from e
        return WriteResult(
            matched_count=0,
            modified_count=0,
            upserted_id=str(result.inserted_id) if result.inserted_id else None,
        )

    async def update_fields(self, entry_id: str, fields: Dict[str, Any]) -> WriteResult:
        object_id = _to_object_id(entry_id)
        if object_id is None:
            return WriteResult(matched_count=0, modified_count=0)
        try:
            result = await self._get_collection().update_one(
                {"_id": object_id}, {"$set": fields}, session=self._session.get()
            )
        except PyMongoError as e:
            raise PersistenceError("update_fields", e) from e
        return WriteResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
        )

    async def update_many(self, filter: Dict[str, Any], update: Dict[str, Any]) -> WriteResult:
        try:
            result = await self._get_collection().update_many(
                _prepare_filter(filter), update, session=self._session.get()
            )
        except PyMongoError as e:
            raise PersistenceError("update_many", e) from e
        return WriteResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
        )

    async def delete_by_id(self, entry_id: str) -> Optional[Dict[str, Any]]:
        object_id = _to_object_id(entry_id)
        if object_id is None:
            return None
        try:
            document = await self._get_collection().find_one_and_delete(
                {"_id": object_id}, session=self._session.get()
            )
        except PyMongoError as e:
            raise PersistenceError("delete_by_id", e) from e
        return _stringify_id(document)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if not self._use_transactions or self._session.get() is not None:
            yield
            return

        try:
            session = self._get_client().start_session()
        except PyMongoError as e:
            raise PersistenceError("start_session", e) from e

        token = self._session.set(session)
        try:
            async with session:
                async with await session.start_transaction():
                    yield
        except PyMongoError as e:
            raise PersistenceError("transaction", e) from e
        finally:
            self._session.reset(token)

    @property
    def supports_rollback(self) -> bool:
        return self._use_transactions

    async def ensure_indexes(self) -> None:
        """
        Create the order and autoDeleteAt indexes.

        Neither is unique nor TTL: a multi-row $inc passes through
        transient duplicate orders, and expiry must go through the
        queue manager so the remaining orders are compacted.
        """
        try:
            collection = self._get_collection()
            await collection.create_index([("order", ASCENDING)], name="order_idx")
            await collection.create_index([("autoDeleteAt", ASCENDING)], name="auto_delete_at_idx")
        except PyMongoError as e:
            raise PersistenceError("ensure_indexes", e) from e
        logger.info("Queue collection indexes ensured")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("Mongo repository connection closed")
