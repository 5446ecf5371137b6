"""
Repository Interface Definitions

Defines the abstract interface for queue entry storage.
This enables swapping implementations (MongoDB, in-memory)
without changing the queue manager.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Dict, List, Optional


@dataclass
class WriteResult:
    """
    Result of a write operation.

    Attributes:
        matched_count: Number of documents that matched the filter
        modified_count: Number of documents actually modified
        upserted_id: ID of inserted document (if any)
    """
    matched_count: int
    modified_count: int
    upserted_id: Optional[str] = None


DEFAULT_SORT = [("order", 1)]


class QueueRepositoryInterface(ABC):
    """
    Abstract interface for the queues collection.

    Implementations:
    - MongoQueueRepository: MongoDB via the async PyMongo client
    - InMemoryQueueRepository: process-local dict (tests, development)

    Filters and updates use MongoDB syntax. Supported operators are
    equality, $gt, $gte, $lt, $lte, $ne in filters and $set, $inc in
    updates. Identifiers are passed as strings; an identifier the store
    cannot parse behaves as not found.

    All methods fail fast: store errors are raised as PersistenceError.
    """

    @abstractmethod
    async def find_all(self, sort: Optional[List[tuple]] = None) -> List[Dict[str, Any]]:
        """
        Return every entry document.

        Args:
            sort: Sort order as list of (field, direction) tuples
                  (default: ascending by order)
        """
        pass

    @abstractmethod
    async def find_many(
        self,
        filter: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return every entry document matching the filter.

        Args:
            filter: MongoDB query filter
            sort: Sort order as list of (field, direction) tuples (default: unsorted)
        """
        pass

    @abstractmethod
    async def find_one(
        self,
        filter: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Find a single entry document.

        Args:
            filter: MongoDB query filter
            sort: Sort applied before picking the first match

        Returns:
            Document dict if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_id(self, entry_id: str) -> Optional[Dict[str, Any]]:
        """Find an entry by identifier."""
        pass

    @abstractmethod
    async def count_documents(self, filter: Dict[str, Any]) -> int:
        """Count documents matching the filter."""
        pass

    @abstractmethod
    async def insert_one(self, document: Dict[str, Any]) -> WriteResult:
        """
        Insert a single document.

        Returns:
            WriteResult with upserted_id set to the new document's _id
        """
        pass

    @abstractmethod
    async def update_fields(self, entry_id: str, fields: Dict[str, Any]) -> WriteResult:
        """
        Set fields on one entry ($set).

        Returns:
            WriteResult with matched_count 0 if the entry does not exist
        """
        pass

    @abstractmethod
    async def update_many(self, filter: Dict[str, Any], update: Dict[str, Any]) -> WriteResult:
        """
        Update every document matching the filter.

        Used for the range shifts of order maintenance, e.g.
        {"order": {"$gt": 3}} with {"$inc": {"order": -1}}.
        """
        pass

    @abstractmethod
    async def delete_by_id(self, entry_id: str) -> Optional[Dict[str, Any]]:
        """
        Delete an entry.

        Returns:
            The deleted document, or None if it did not exist
        """
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Group writes into an all-or-nothing unit.

        Usage:
            async with repository.transaction():
                await repository.update_many(...)
                await repository.update_fields(...)

        An exception inside the block discards every write made in it,
        provided `supports_rollback` is True. Otherwise the block only
        groups the calls and the caller must undo its own writes.
        """
        pass

    @property
    def supports_rollback(self) -> bool:
        """True when a failed transaction() block discards its writes."""
        return False

    async def ensure_indexes(self) -> None:
        """Create the indexes the queue relies on (no-op by default)."""
        return None

    async def close(self) -> None:
        """Release connections (no-op by default)."""
        return None
