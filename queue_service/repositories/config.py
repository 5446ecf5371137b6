"""
Repository Configuration and Factory

Provides factory function to get the appropriate repository implementation
based on service configuration.
"""

import logging
from enum import Enum
from typing import Optional

from ..config import QueueSettings, get_settings
from .base import QueueRepositoryInterface

logger = logging.getLogger(__name__)


class StoreBackend(str, Enum):
    """Entry store backends."""
    MONGODB = "mongodb"  # Production store
    MEMORY = "memory"    # Process-local, lost on restart


# Singleton repository instance
_repository_instance: Optional[QueueRepositoryInterface] = None


def get_queue_repository(settings: Optional[QueueSettings] = None) -> QueueRepositoryInterface:
    """
    Get the queue repository instance.

    Returns the implementation selected by QUEUE_STORE. Uses singleton
    pattern for connection pooling.

    Args:
        settings: Settings to build from (default: cached service settings)

    Returns:
        QueueRepositoryInterface implementation
    """
    global _repository_instance

    if _repository_instance is None:
        settings = settings or get_settings()
        backend = StoreBackend(settings.queue_store)

        if backend == StoreBackend.MEMORY:
            from .memory_repository import InMemoryQueueRepository
            _repository_instance = InMemoryQueueRepository()
            logger.info("Initialized in-memory queue repository")
        else:
            from .mongo_repository import MongoQueueRepository
            _repository_instance = MongoQueueRepository(
                mongodb_uri=settings.mongodb_uri,
                database=settings.mongo_db_name,
                collection=settings.mongo_collection,
                use_transactions=settings.mongo_transactions,
            )
            logger.info(
                f"Initialized MongoDB queue repository "
                f"(transactions={'on' if settings.mongo_transactions else 'off'})"
            )

    return _repository_instance


def reset_repository() -> None:
    """
    Reset the repository singleton.

    Used for testing or when configuration changes. The caller is
    responsible for closing the previous instance.
    """
    global _repository_instance
    _repository_instance = None
    logger.info("Repository singleton reset")
