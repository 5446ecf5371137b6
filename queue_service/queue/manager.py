"""
Queue Manager

Single entry point for every mutation of the ordered queue: create,
update, relocate, remove, and scheduled expiry all run here so that
exactly one code path keeps the orders dense (1..N).

Concurrency model:
- One asyncio.Lock serializes read -> plan -> shift -> commit for all
  order-touching operations, including removals fired by the
  auto-delete scheduler and the ordered list read.
- Inside the lock every shift is checked optimistically: the number of
  entries in the shifted range must match the plan, before and after
  the write. A mismatch means something outside this process touched
  the collection; the operation is undone and retried from a fresh read.

Undo:
- Stores whose transactions roll back (in-memory, MongoDB with
  MONGO_TRANSACTIONS) discard a failed sequence themselves.
- For the others every write first records the values it overwrites in
  an UndoLog, and a failed sequence is reverted by replaying it. If the
  replay itself fails the error is surfaced without a retry.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from ..repositories.base import QueueRepositoryInterface
from .events import QueueEventBus
from .exceptions import ConcurrencyConflict, NotFoundError, PersistenceError, QueueError, ValidationError
from .models import QueueEntry, format_display_date
from .ordering import (
    OrderShift,
    RelocationPlan,
    dense_renumbering,
    next_order,
    plan_relocation,
    plan_removal,
)
from .scheduler import AutoDeleteScheduler, Clock, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UndoLog:
    """
    Compensating writes for one attempt, replayed newest first.

    Field restores are recorded before the write they protect (setting a
    field back is harmless if the write never landed); re-inserts are
    recorded only once a delete has succeeded.
    """

    def __init__(self):
        self._steps: List[Tuple[str, Any]] = []

    def __len__(self) -> int:
        return len(self._steps)

    def restore_fields(self, entry_id: str, fields: Dict[str, Any]) -> None:
        self._steps.append(("set", (entry_id, fields)))

    def reinsert(self, document: Dict[str, Any]) -> None:
        self._steps.append(("insert", document))

    async def replay(self, repository: QueueRepositoryInterface) -> None:
        for kind, payload in reversed(self._steps):
            if kind == "set":
                entry_id, fields = payload
                await repository.update_fields(entry_id, fields)
            else:
                await repository.insert_one(payload)
        self._steps.clear()


class QueueManager:
    """
    Manages the ordered queue stored behind a repository.

    Uses:
    - QueueRepositoryInterface for storage (MongoDB or in-memory)
    - AutoDeleteScheduler for deferred removal of terminal entries
    - QueueEventBus to broadcast committed changes
    """

    def __init__(
        self,
        repository: QueueRepositoryInterface,
        auto_delete_delay: timedelta = timedelta(hours=1),
        initial_status: str = "pending",
        terminal_status: str = "completed",
        display_locale: str = "th-TH",
        display_timezone: str = "Asia/Bangkok",
        max_conflict_retries: int = 3,
        event_bus: Optional[QueueEventBus] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize queue manager.

        Args:
            repository: Entry store
            auto_delete_delay: Time an entry stays in the terminal status before removal
            initial_status: Status given to new entries
            terminal_status: Status that schedules automatic removal
            display_locale: Locale of the createdAt display string
            display_timezone: Timezone of the createdAt display string
            max_conflict_retries: Attempts before a ConcurrencyConflict is surfaced
            event_bus: Event fan-out (local-only bus if omitted)
            clock: Source of the current UTC time
        """
        self.repository = repository
        self.auto_delete_delay = auto_delete_delay
        self.initial_status = initial_status
        self.terminal_status = terminal_status
        self.display_locale = display_locale
        self.display_timezone = display_timezone
        self.max_conflict_retries = max(1, max_conflict_retries)
        self.events = event_bus or QueueEventBus()
        self._clock = clock or utc_now
        self._lock = asyncio.Lock()
        self.scheduler = AutoDeleteScheduler(self.expire_entry, clock=self._clock)

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_entries(self) -> List[QueueEntry]:
        """
        Return all entries ascending by order.

        Waits for any in-flight mutation so the result is always dense.
        """
        async with self._lock:
            documents = await self.repository.find_all(sort=[("order", 1)])
        return [QueueEntry.from_document(doc) for doc in documents]

    async def get_stats(self) -> Dict[str, int]:
        """Counts for the health endpoint."""
        total = await self.repository.count_documents({})
        terminal = await self.repository.count_documents({"status": self.terminal_status})
        return {
            "total": total,
            "terminal": terminal,
            "pending_removals": len(self.scheduler.pending_ids()),
        }

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_entry(self, name: Optional[str], type: Optional[str]) -> QueueEntry:
        """
        Append a new entry at the end of the queue.

        Args:
            name: Display name
            type: Free-form ticket type

        Returns:
            Persisted QueueEntry with its assigned order

        Raises:
            ValidationError: If name or type is missing
        """
        if not name or not type:
            raise ValidationError("Please provide name and type.")

        async with self._lock:
            now = self._clock()
            last = await self.repository.find_one({}, sort=[("order", -1)])
            entry = QueueEntry(
                entry_id="",
                order=next_order(last["order"] if last else None),
                name=name,
                type=type,
                status=self.initial_status,
                created_at=format_display_date(now, self.display_locale, self.display_timezone),
                updated_at=now,
            )
            result = await self.repository.insert_one(entry.to_document())
            entry.entry_id = result.upserted_id

        logger.info(f"Created queue entry {entry.entry_id} at order {entry.order}")
        await self.events.publish("added", entry)
        return entry

    async def update_entry(
        self,
        entry_id: str,
        name: Optional[str],
        type: Optional[str],
        status: Optional[str],
        order: Optional[int] = None,
    ) -> QueueEntry:
        """
        Full update of an entry, relocating it when `order` changes.

        Status transitions drive the auto-delete schedule:
        into the terminal status sets autoDeleteAt and arms a removal,
        out of it clears autoDeleteAt and disarms the removal. The
        transition is judged against the entry as it was before this
        call, and the timer is reconciled with the stored entry after
        the commit.

        Raises:
            ValidationError: Missing field or order outside [1, N]
            NotFoundError: Unknown entry
        """
        if not name or not type or not status:
            raise ValidationError("Please provide name, type and status.")

        async with self._lock:
            previous = await self._load(entry_id)
            entering_terminal = status == self.terminal_status and (
                previous.status != self.terminal_status or previous.auto_delete_at is None
            )

            async def attempt(undo: UndoLog) -> None:
                entry = await self._load(entry_id)
                now = self._clock()
                fields: Dict[str, Any] = {
                    "name": name,
                    "type": type,
                    "status": status,
                    "updatedAt": now,
                }
                if entering_terminal:
                    fields["autoDeleteAt"] = now + self.auto_delete_delay
                elif status != self.terminal_status:
                    fields["autoDeleteAt"] = None

                plan = None
                if order is not None:
                    count = await self.repository.count_documents({})
                    plan = plan_relocation(entry.entry_id, entry.order, order, count)

                await self._set_fields(undo, entry, fields)
                if plan is not None:
                    await self._apply_relocation(undo, entry, plan, now)

            await self._retrying("update", attempt)

            updated = await self._load(entry_id)
            self._sync_schedule(updated)

        logger.info(
            f"Updated queue entry {entry_id} (status={updated.status}, order={updated.order})"
        )
        await self.events.publish("updated", updated)
        return updated

    async def relocate_entry(self, entry_id: str, new_order: int) -> QueueEntry:
        """
        Move an entry to `new_order`, shifting the entries in between.

        Raises:
            ValidationError: If new_order is outside [1, N]
            NotFoundError: Unknown entry
        """
        async with self._lock:
            async def attempt(undo: UndoLog) -> None:
                entry = await self._load(entry_id)
                count = await self.repository.count_documents({})
                plan = plan_relocation(entry.entry_id, entry.order, new_order, count)
                await self._apply_relocation(undo, entry, plan, self._clock())

            await self._retrying("relocate", attempt)
            moved = await self._load(entry_id)

        logger.info(f"Relocated queue entry {entry_id} to order {moved.order}")
        await self.events.publish("updated", moved)
        return moved

    async def remove_entry(self, entry_id: str) -> QueueEntry:
        """
        Delete an entry and compact the orders behind it.

        Any pending auto-delete for the entry is disarmed.

        Raises:
            NotFoundError: Unknown entry
        """
        async with self._lock:
            removed = await self._remove_locked(entry_id, "remove")
            self.scheduler.disarm(entry_id)

        logger.info(f"Removed queue entry {entry_id} (was order {removed.order})")
        await self.events.publish("removed", removed)
        return removed

    async def expire_entry(self, entry_id: str) -> Optional[datetime]:
        """
        Scheduler callback: remove the entry if it is still terminal and due.

        Returns:
            None when handled (removed or nothing to do), or the later
            fire time when the entry was re-armed after this task started
        """
        async with self._lock:
            document = await self.repository.find_by_id(entry_id)
            if document is None:
                logger.info(f"Auto-delete skipped for {entry_id}: entry no longer exists")
                return None

            entry = QueueEntry.from_document(document)
            if entry.status != self.terminal_status or entry.auto_delete_at is None:
                logger.info(f"Auto-delete skipped for {entry_id}: status is now '{entry.status}'")
                return None
            if entry.auto_delete_at > self._clock():
                return entry.auto_delete_at

            removed = await self._remove_locked(entry_id, "expire")

        logger.info(f"Auto-deleted queue entry {entry_id} (was order {removed.order})")
        await self.events.publish("expired", removed)
        return None

    # =========================================================================
    # Startup reconciliation
    # =========================================================================

    async def normalize_orders(self) -> int:
        """
        Rewrite orders to 1..N if the stored list has gaps or duplicates.

        Relative order is kept. Returns the number of entries moved.
        """
        async with self._lock:
            documents = await self.repository.find_all(sort=[("order", 1)])
            changes = dense_renumbering(documents)
            if changes:
                async with self.repository.transaction():
                    for entry_id, new_order in changes.items():
                        await self.repository.update_fields(entry_id, {"order": new_order})

        if changes:
            logger.warning(f"Normalized queue orders: {len(changes)} of {len(documents)} entries moved")
            await self.events.publish("normalized", moved=len(changes))
        return len(changes)

    async def restore_schedules(self) -> int:
        """
        Re-arm deferred removals from persisted autoDeleteAt values.

        Also repairs markers that disagree with the status: a stale
        marker on a non-terminal entry is cleared, a terminal entry
        without a marker gets a fresh one.

        Returns:
            Number of removals armed
        """
        schedule = []
        async with self._lock:
            documents = await self.repository.find_all()
            for document in documents:
                entry = QueueEntry.from_document(document)
                is_terminal = entry.status == self.terminal_status
                if entry.auto_delete_at is not None and not is_terminal:
                    await self.repository.update_fields(entry.entry_id, {"autoDeleteAt": None})
                    logger.info(f"Cleared stale auto-delete marker on {entry.entry_id}")
                elif is_terminal:
                    fire_at = entry.auto_delete_at
                    if fire_at is None:
                        fire_at = self._clock() + self.auto_delete_delay
                        await self.repository.update_fields(entry.entry_id, {"autoDeleteAt": fire_at})
                    schedule.append((entry.entry_id, fire_at))

            armed = self.scheduler.restore(schedule)

        if armed:
            logger.info(f"Restored {armed} pending auto-deletes")
        return armed

    async def close(self) -> None:
        """Stop the scheduler and release the event bus and repository."""
        await self.scheduler.shutdown()
        await self.events.disconnect()
        await self.repository.close()

    # =========================================================================
    # Internals (caller holds the lock)
    # =========================================================================

    async def _load(self, entry_id: str) -> QueueEntry:
        document = await self.repository.find_by_id(entry_id)
        if document is None:
            raise NotFoundError(entry_id)
        return QueueEntry.from_document(document)

    def _sync_schedule(self, entry: QueueEntry) -> None:
        """Arm or disarm the removal timer to match the stored entry."""
        if entry.status == self.terminal_status and entry.auto_delete_at is not None:
            if not self.scheduler.is_armed(entry.entry_id):
                self.scheduler.arm(entry.entry_id, entry.auto_delete_at)
        else:
            self.scheduler.disarm(entry.entry_id)

    async def _retrying(self, operation: str, attempt: Callable[[UndoLog], Awaitable[T]]) -> T:
        """
        Run `attempt` in a transaction, retrying on ConcurrencyConflict.

        A failed attempt is undone before the error is handled: by the
        store when it supports rollback, by replaying the UndoLog
        otherwise.
        """
        attempt_no = 1
        while True:
            undo = UndoLog()
            try:
                async with self.repository.transaction():
                    return await attempt(undo)
            except Exception as e:
                if len(undo) and not self.repository.supports_rollback:
                    await self._compensate(operation, undo, e)
                if not isinstance(e, ConcurrencyConflict):
                    raise
                if attempt_no >= self.max_conflict_retries:
                    logger.error(f"{operation} gave up after {attempt_no} attempts: {e}")
                    raise
                logger.warning(f"{operation} conflict, retrying ({attempt_no}/{self.max_conflict_retries}): {e}")
                attempt_no += 1

    async def _compensate(self, operation: str, undo: UndoLog, error: Exception) -> None:
        steps = len(undo)
        try:
            await undo.replay(self.repository)
        except QueueError as undo_error:
            logger.critical(
                f"{operation} failed ({error}) and could not be undone: {undo_error}; "
                f"orders may stay inconsistent until the next startup normalization"
            )
            raise PersistenceError(f"{operation} undo", undo_error) from error
        logger.warning(f"{operation} failed, reverted {steps} partial writes: {error}")

    async def _set_fields(self, undo: UndoLog, entry: QueueEntry, fields: Dict[str, Any]):
        """Write `fields` on `entry`, recording the values they replace."""
        stored = entry.to_document()
        undo.restore_fields(entry.entry_id, {key: stored.get(key) for key in fields})
        return await self.repository.update_fields(entry.entry_id, fields)

    async def _apply_shift(
        self,
        undo: UndoLog,
        operation: str,
        shift: Optional[OrderShift],
        now: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        if shift is None:
            return
        query = shift.to_filter(exclude_id)
        expected = shift.size
        documents = await self.repository.find_many(query)
        if len(documents) != expected:
            raise ConcurrencyConflict(operation, expected, len(documents))
        for document in documents:
            undo.restore_fields(
                document["_id"],
                {"order": document["order"], "updatedAt": document.get("updatedAt")},
            )
        result = await self.repository.update_many(query, shift.to_update(updated_at=now))
        if result.matched_count != expected:
            raise ConcurrencyConflict(operation, expected, result.matched_count)

    async def _apply_relocation(
        self,
        undo: UndoLog,
        entry: QueueEntry,
        plan: RelocationPlan,
        now: datetime,
    ) -> None:
        if plan.is_noop:
            return
        await self._apply_shift(undo, "relocate", plan.shift, now, exclude_id=plan.entry_id)
        result = await self._set_fields(undo, entry, {"order": plan.new_order, "updatedAt": now})
        if result.matched_count != 1:
            raise ConcurrencyConflict("relocate", 1, result.matched_count)

    async def _remove_locked(self, entry_id: str, operation: str) -> QueueEntry:
        async def attempt(undo: UndoLog) -> QueueEntry:
            count = await self.repository.count_documents({})
            document = await self.repository.delete_by_id(entry_id)
            if document is None:
                raise NotFoundError(entry_id)
            undo.reinsert(document)
            removed = QueueEntry.from_document(document)
            await self._apply_shift(undo, operation, plan_removal(removed.order, count), self._clock())
            return removed

        return await self._retrying(operation, attempt)
