"""
Repository Pattern for Queue Storage

Public API:
- get_queue_repository(): Factory to get the configured repository
- QueueRepositoryInterface: Abstract interface for the queues collection
- WriteResult: Result dataclass for write operations

Usage:
    from queue_service.repositories import get_queue_repository

    repo = get_queue_repository()
    last = await repo.find_one({}, sort=[("order", -1)])
"""

from .base import QueueRepositoryInterface, WriteResult
from .config import StoreBackend, get_queue_repository, reset_repository
from .memory_repository import InMemoryQueueRepository

__all__ = [
    "get_queue_repository",
    "reset_repository",
    "QueueRepositoryInterface",
    "InMemoryQueueRepository",
    "StoreBackend",
    "WriteResult",
]
