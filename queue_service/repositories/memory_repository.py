"""
In-Memory Queue Repository

Process-local implementation of the queue repository. Used by the test
suite and for running the service without MongoDB (QUEUE_STORE=memory).

Understands the subset of MongoDB filter/update syntax the queue
manager emits, so both implementations stay interchangeable.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from bson import ObjectId

from .base import DEFAULT_SORT, QueueRepositoryInterface, WriteResult

logger = logging.getLogger(__name__)


_COMPARATORS = {
    "$gt": lambda value, operand: value is not None and value > operand,
    "$gte": lambda value, operand: value is not None and value >= operand,
    "$lt": lambda value, operand: value is not None and value < operand,
    "$lte": lambda value, operand: value is not None and value <= operand,
    "$ne": lambda value, operand: value != operand,
}


def matches_filter(document: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    """
    Check a document against a MongoDB-style filter.

    Supports plain equality and the $gt/$gte/$lt/$lte/$ne operators.
    """
    for field, condition in filter.items():
        value = document.get(field)
        if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
            for operator, operand in condition.items():
                comparator = _COMPARATORS.get(operator)
                if comparator is None:
                    raise ValueError(f"Unsupported filter operator: {operator}")
                if not comparator(value, operand):
                    return False
        elif value != condition:
            return False
    return True


def apply_update(document: Dict[str, Any], update: Dict[str, Any]) -> bool:
    """
    Apply $set / $inc operations in place.

    Returns:
        True if the document changed
    """
    changed = False
    for operator, fields in update.items():
        if operator == "$set":
            for field, value in fields.items():
                if document.get(field) != value:
                    document[field] = value
                    changed = True
        elif operator == "$inc":
            for field, delta in fields.items():
                document[field] = document.get(field, 0) + delta
                changed = changed or delta != 0
        else:
            raise ValueError(f"Unsupported update operator: {operator}")
    return changed


def sort_documents(documents: List[Dict[str, Any]], sort: Optional[List[tuple]]) -> List[Dict[str, Any]]:
    """Sort documents by a list of (field, direction) tuples, None values first."""
    result = list(documents)
    for field, direction in reversed(sort or []):
        result.sort(
            key=lambda doc: (doc.get(field) is not None, doc.get(field) if doc.get(field) is not None else 0),
            reverse=direction < 0,
        )
    return result


class InMemoryQueueRepository(QueueRepositoryInterface):
    """
    Dict-backed repository.

    Documents are stored under their string _id. Every operation yields
    to the event loop (optionally after `latency` seconds) so concurrent
    callers interleave the way they would against a real store.

    Transactions snapshot the collection on entry and restore it if the
    block raises.
    """

    def __init__(self, latency: float = 0.0):
        """
        Initialize an empty repository.

        Args:
            latency: Seconds to sleep in every operation (simulates I/O)
        """
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._latency = latency
        self._transaction_depth = 0

    async def _io(self) -> None:
        await asyncio.sleep(self._latency)

    async def find_all(self, sort: Optional[List[tuple]] = None) -> List[Dict[str, Any]]:
        return await self.find_many({}, sort=sort or DEFAULT_SORT)

    async def find_many(
        self,
        filter: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
    ) -> List[Dict[str, Any]]:
        await self._io()
        matches = [copy.deepcopy(doc) for doc in self._documents.values() if matches_filter(doc, filter)]
        return sort_documents(matches, sort)

    async def find_one(
        self,
        filter: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
    ) -> Optional[Dict[str, Any]]:
        await self._io()
        matches = [doc for doc in self._documents.values() if matches_filter(doc, filter)]
        if not matches:
            return None
        return copy.deepcopy(sort_documents(matches, sort)[0])

    async def find_by_id(self, entry_id: str) -> Optional[Dict[str, Any]]:
        await self._io()
        document = self._documents.get(str(entry_id))
        return copy.deepcopy(document) if document else None

    async def count_documents(self, filter: Dict[str, Any]) -> int:
        await self._io()
        return sum(1 for doc in self._documents.values() if matches_filter(doc, filter))

    async def insert_one(self, document: Dict[str, Any]) -> WriteResult:
        await self._io()
        entry_id = str(document.get("_id") or ObjectId())
        stored = copy.deepcopy(document)
        stored["_id"] = entry_id
        self._documents[entry_id] = stored
        return WriteResult(matched_count=0, modified_count=0, upserted_id=entry_id)

    async def update_fields(self, entry_id: str, fields: Dict[str, Any]) -> WriteResult:
        await self._io()
        document = self._documents.get(str(entry_id))
        if document is None:
            return WriteResult(matched_count=0, modified_count=0)
        changed = apply_update(document, {"$set": fields})
        return WriteResult(matched_count=1, modified_count=1 if changed else 0)

    async def update_many(self, filter: Dict[str, Any], update: Dict[str, Any]) -> WriteResult:
        await self._io()
        matched = 0
        modified = 0
        for document in self._documents.values():
            if matches_filter(document, filter):
                matched += 1
                if apply_update(document, update):
                    modified += 1
        return WriteResult(matched_count=matched, modified_count=modified)

    async def delete_by_id(self, entry_id: str) -> Optional[Dict[str, Any]]:
        await self._io()
        return self._documents.pop(str(entry_id), None)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._transaction_depth:
            # Nested block joins the outer transaction
            yield
            return

        snapshot = copy.deepcopy(self._documents)
        self._transaction_depth += 1
        try:
            yield
        except BaseException:
            self._documents = snapshot
            logger.debug("In-memory transaction rolled back")
            raise
        finally:
            self._transaction_depth -= 1

    @property
    def supports_rollback(self) -> bool:
        return True

    def seed(self, documents: List[Dict[str, Any]]) -> None:
        """Load raw documents directly (bypasses order maintenance)."""
        for document in documents:
            stored = copy.deepcopy(document)
            stored["_id"] = str(stored.get("_id") or ObjectId())
            self._documents[stored["_id"]] = stored

    def orders(self) -> Dict[str, int]:
        """Snapshot of {entry_id: order} for assertions and diagnostics."""
        return {entry_id: doc["order"] for entry_id, doc in self._documents.items()}
