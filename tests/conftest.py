"""
Pytest fixtures shared by the queue service tests.
"""

import os

# IMPORTANT: Set environment variables BEFORE any imports from queue_service
# to ensure QueueSettings is configured correctly when first loaded.
# QueueSettings validation requires:
# - queue_api_secret: min 16 characters
# - auto_delete_delay_seconds: min 1 second
os.environ["ENVIRONMENT"] = "development"
os.environ["QUEUE_API_SECRET"] = "test-secret-key-1234"  # Min 16 chars
os.environ["QUEUE_STORE"] = "memory"
os.environ["AUTO_DELETE_DELAY_SECONDS"] = "3600"
os.environ["NORMALIZE_ON_STARTUP"] = "true"
os.environ.pop("REDIS_URL", None)
os.environ.pop("CORS_ORIGINS", None)

from datetime import timedelta

import pytest

from queue_service.queue.manager import QueueManager
from queue_service.repositories.memory_repository import InMemoryQueueRepository


@pytest.fixture
def repository():
    """Empty in-memory repository."""
    return InMemoryQueueRepository()


@pytest.fixture
def manager(repository):
    """Queue manager over the in-memory repository with a one hour delay."""
    return QueueManager(repository, auto_delete_delay=timedelta(hours=1))


def _seed(repository: InMemoryQueueRepository, *names: str, status: str = "pending") -> dict:
    ids = {}
    for order, name in enumerate(names, start=1):
        entry_id = f"{order:024x}"
        repository.seed([{
            "_id": entry_id,
            "order": order,
            "name": name,
            "type": "general",
            "status": status,
            "createdAt": "1 ม.ค. 2569",
            "autoDeleteAt": None,
            "updatedAt": None,
        }])
        ids[name] = entry_id
    return ids


@pytest.fixture
def seed_queue(repository):
    """
    Load entries named `names` at orders 1..N into the repository.

    Returns a function giving {name: entry_id}.
    """
    def seed(*names: str, status: str = "pending") -> dict:
        return _seed(repository, *names, status=status)
    return seed


@pytest.fixture
def names_by_order(repository):
    """Function returning entry names sorted by order."""
    def names() -> list:
        documents = sorted(repository._documents.values(), key=lambda doc: doc["order"])
        return [doc["name"] for doc in documents]
    return names
