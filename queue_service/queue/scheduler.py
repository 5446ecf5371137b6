"""
Auto-Delete Scheduler

Deferred removal of entries that reached the terminal status.

The persisted `autoDeleteAt` field is the schedule of record; this
module only keeps a process-local registry of asyncio tasks
(entry_id -> task) that wake up at the fire time and hand the entry
back to the queue manager. Cancellation is best effort: the manager
re-reads the entry at fire time and removes it only if it is still
terminal and due.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Returns None when done, or a later fire time to sleep until
ExpiryCallback = Callable[[str], Awaitable[Optional[datetime]]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AutoDeleteScheduler:
    """
    Registry of pending deferred removals.

    One task per entry: arming an entry that already has a task
    replaces it. Tasks remove themselves from the registry when they
    finish.
    """

    def __init__(self, expire_callback: ExpiryCallback, clock: Optional[Clock] = None):
        """
        Initialize scheduler.

        Args:
            expire_callback: Async function called with the entry id at fire time
            clock: Source of the current UTC time
        """
        self._expire = expire_callback
        self._clock = clock or utc_now
        self._tasks: Dict[str, asyncio.Task] = {}

    def arm(self, entry_id: str, fire_at: datetime) -> None:
        """
        Schedule removal of `entry_id` at `fire_at`.

        Must be called from a running event loop. A fire time in the past
        fires on the next loop iteration.
        """
        self.disarm(entry_id)
        task = asyncio.create_task(self._run(entry_id, fire_at), name=f"auto-delete:{entry_id}")
        self._tasks[entry_id] = task
        task.add_done_callback(lambda done, eid=entry_id: self._forget(eid, done))
        logger.debug(f"Armed auto-delete for {entry_id} at {fire_at.isoformat()}")

    def disarm(self, entry_id: str) -> bool:
        """
        Cancel the pending removal of `entry_id`, if any.

        A task is never cancelled from inside itself (the expiry path
        removes the entry through the same manager code as a manual
        delete).

        Returns:
            True if a pending task was cancelled
        """
        task = self._tasks.get(entry_id)
        if task is None or task.done() or task is asyncio.current_task():
            return False
        del self._tasks[entry_id]
        task.cancel()
        logger.debug(f"Disarmed auto-delete for {entry_id}")
        return True

    def restore(self, schedule: Iterable[Tuple[str, datetime]]) -> int:
        """
        Re-arm tasks from persisted fire times (startup).

        Args:
            schedule: (entry_id, fire_at) pairs

        Returns:
            Number of tasks armed
        """
        count = 0
        for entry_id, fire_at in schedule:
            self.arm(entry_id, fire_at)
            count += 1
        return count

    def is_armed(self, entry_id: str) -> bool:
        task = self._tasks.get(entry_id)
        return task is not None and not task.done()

    def pending_ids(self) -> List[str]:
        return [entry_id for entry_id, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        """Cancel every pending task and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Auto-delete scheduler stopped ({len(tasks)} pending removals dropped)")

    def _forget(self, entry_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(entry_id) is task:
            del self._tasks[entry_id]

    async def _run(self, entry_id: str, fire_at: Optional[datetime]) -> None:
        while fire_at is not None:
            delay = (fire_at - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                fire_at = await self._expire(entry_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Entry stays in place for the next mutation to reconcile
                logger.exception(f"Auto-delete failed for {entry_id}")
                return
