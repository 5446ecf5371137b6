"""
Queue Package

Ordered queue core: dense order maintenance, serialized mutations,
and deferred removal of completed entries.
"""

from .exceptions import (
    ConcurrencyConflict,
    NotFoundError,
    PersistenceError,
    QueueError,
    ValidationError,
)
from .manager import QueueManager
from .models import QueueEntry
from .scheduler import AutoDeleteScheduler

__all__ = [
    "AutoDeleteScheduler",
    "ConcurrencyConflict",
    "NotFoundError",
    "PersistenceError",
    "QueueEntry",
    "QueueError",
    "QueueManager",
    "ValidationError",
]
