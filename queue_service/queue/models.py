"""
Queue Data Models

Defines the queue entry structure, its MongoDB document mapping,
and the display format of the creation date.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo


THAI_SHORT_MONTHS = (
    "ม.ค.", "ก.พ.", "มี.ค.", "เม.ย.", "พ.ค.", "มิ.ย.",
    "ก.ค.", "ส.ค.", "ก.ย.", "ต.ค.", "พ.ย.", "ธ.ค.",
)
ENGLISH_SHORT_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)
BUDDHIST_ERA_OFFSET = 543


def format_display_date(
    moment: datetime,
    locale: str = "th-TH",
    tz_name: str = "Asia/Bangkok",
) -> str:
    """
    Format a timestamp as "day short-month year" for display.

    th-TH renders Thai month abbreviations and the Buddhist-era year
    ("19 ต.ค. 2569"); en-US puts the month first ("Oct 19, 2026");
    every other locale falls back to the en-GB form ("19 Oct 2026").
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(ZoneInfo(tz_name))

    if locale.lower().startswith("th"):
        month = THAI_SHORT_MONTHS[local.month - 1]
        return f"{local.day} {month} {local.year + BUDDHIST_ERA_OFFSET}"

    month = ENGLISH_SHORT_MONTHS[local.month - 1]
    if locale == "en-US":
        return f"{month} {local.day}, {local.year}"
    return f"{local.day} {month} {local.year}"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """MongoDB returns naive UTC datetimes; make them aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class QueueEntry:
    """
    A single ticket in the ordered queue.

    `order` is the 1-indexed rank; across all entries the orders form
    exactly 1..N. `auto_delete_at` is set only while the entry sits in
    the terminal status with a removal pending.
    """

    entry_id: str
    order: int
    name: str
    type: str
    status: str
    created_at: str                         # Display string, never rewritten
    auto_delete_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "_id": self.entry_id,
            "order": self.order,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "createdAt": self.created_at,
            "autoDeleteAt": self.auto_delete_at.isoformat() if self.auto_delete_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_document(self) -> Dict[str, Any]:
        """
        Convert to a MongoDB document (without _id).

        The store assigns the identifier on insert.
        """
        return {
            "order": self.order,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "createdAt": self.created_at,
            "autoDeleteAt": self.auto_delete_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "QueueEntry":
        """
        Create QueueEntry from a stored document.

        Args:
            document: Document as returned by the repository

        Returns:
            QueueEntry instance
        """
        return cls(
            entry_id=str(document["_id"]),
            order=int(document["order"]),
            name=document.get("name", ""),
            type=document.get("type", ""),
            status=document.get("status", ""),
            created_at=document.get("createdAt", ""),
            auto_delete_at=_as_utc(document.get("autoDeleteAt")),
            updated_at=_as_utc(document.get("updatedAt")),
        )
