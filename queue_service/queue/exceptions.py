"""
Queue Errors

Error taxonomy raised by the queue core and translated to HTTP
responses by the service layer.
"""

from typing import Optional


class QueueError(Exception):
    """Base exception for queue errors."""
    pass


class ValidationError(QueueError):
    """Raised when a request is missing fields or asks for an impossible order."""
    pass


class NotFoundError(QueueError):
    """Raised when an operation targets an entry that does not exist."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__("Queue not found")


class ConcurrencyConflict(QueueError):
    """Raised when an order shift touched a different number of entries than planned."""

    def __init__(self, operation: str, expected: int, actual: int):
        self.operation = operation
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrent modification during {operation}: "
            f"expected to shift {expected} entries, shifted {actual}"
        )


class PersistenceError(QueueError):
    """Raised when the entry store is unavailable or rejects a write."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store failure during {operation}: {cause or 'unknown error'}")
