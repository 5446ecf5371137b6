"""
Pydantic models for the queue service HTTP surface.

Request bodies accept missing fields so the queue manager can answer
with its own validation message instead of a schema error.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class QueueCreateRequest(BaseModel):
    """Request body for appending an entry."""

    name: Optional[str] = Field(None, description="Display name of the ticket.")
    type: Optional[str] = Field(None, description="Free-form ticket type.")


class QueueUpdateRequest(BaseModel):
    """Request body for a full update, optionally moving the entry."""

    order: Optional[int] = Field(
        None, description="New 1-indexed position; omit to keep the current one."
    )
    name: Optional[str] = Field(None, description="Display name of the ticket.")
    type: Optional[str] = Field(None, description="Free-form ticket type.")
    status: Optional[str] = Field(None, description="Lifecycle status label.")


class QueueEntryResponse(BaseModel):
    """Wire form of a queue entry."""

    id: str = Field(..., alias="_id")
    order: int
    name: str
    type: str
    status: str
    createdAt: str
    autoDeleteAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class DeleteResponse(BaseModel):
    """Response after removing an entry: the remaining list."""

    message: str
    queues: List[QueueEntryResponse]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    store: str
    total: int
    terminal: int
    pending_removals: int
    events_connected: bool
    timestamp: datetime
