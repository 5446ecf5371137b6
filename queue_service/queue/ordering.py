"""
Order Maintenance

Pure planning functions that keep the `order` field a dense 1..N
permutation. Nothing here touches storage: the queue manager reads the
current state, asks for a plan, and applies it through the repository.

Relocation (old -> new):
    new < old: entries in [new, old - 1] move back by one (+1)
    new > old: entries in [old + 1, new] move forward by one (-1)
    then the moved entry takes `new`.

Removal (deleted order d, list of N):
    entries in [d + 1, N] move forward by one (-1).
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .exceptions import ValidationError


@dataclass(frozen=True)
class OrderShift:
    """A contiguous, inclusive range of orders moved by `delta`."""

    lower: int
    upper: int
    delta: int

    @property
    def size(self) -> int:
        """Number of orders covered by the range."""
        return self.upper - self.lower + 1

    def contains(self, order: int) -> bool:
        return self.lower <= order <= self.upper

    def to_filter(self, exclude_id: Optional[Any] = None) -> Dict[str, Any]:
        """Build the MongoDB filter selecting the entries this shift moves."""
        query: Dict[str, Any] = {"order": {"$gte": self.lower, "$lte": self.upper}}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        return query

    def to_update(self, updated_at: Optional[Any] = None) -> Dict[str, Any]:
        """Build the MongoDB update; `updated_at` also stamps the moved entries."""
        update: Dict[str, Any] = {"$inc": {"order": self.delta}}
        if updated_at is not None:
            update["$set"] = {"updatedAt": updated_at}
        return update


@dataclass(frozen=True)
class RelocationPlan:
    """Everything needed to move one entry to a new rank."""

    entry_id: str
    old_order: int
    new_order: int
    shift: Optional[OrderShift] = None

    @property
    def is_noop(self) -> bool:
        return self.old_order == self.new_order


def next_order(current_max: Optional[int]) -> int:
    """Return the append position: one past the current maximum, or 1 if empty."""
    if not current_max:
        return 1
    return current_max + 1


def validate_order(new_order: Any, count: int) -> int:
    """
    Check a requested order against the current list size.

    Raises:
        ValidationError: If the order is not an integer in [1, count]
    """
    if isinstance(new_order, bool) or not isinstance(new_order, int):
        raise ValidationError(f"order must be an integer, got {new_order!r}")
    if count < 1 or not 1 <= new_order <= count:
        raise ValidationError(f"order must be between 1 and {count}, got {new_order}")
    return new_order


def plan_relocation(entry_id: str, old_order: int, new_order: int, count: int) -> RelocationPlan:
    """
    Plan the minimal shift that moves `entry_id` from `old_order` to `new_order`.

    Args:
        entry_id: Entry being moved (excluded from the shift)
        old_order: Its current order
        new_order: Requested order
        count: Number of entries in the list

    Returns:
        RelocationPlan (shift is None for a no-op)

    Raises:
        ValidationError: If new_order is outside [1, count]
    """
    validate_order(new_order, count)

    if new_order == old_order:
        return RelocationPlan(entry_id=entry_id, old_order=old_order, new_order=new_order)

    if new_order < old_order:
        shift = OrderShift(lower=new_order, upper=old_order - 1, delta=1)
    else:
        shift = OrderShift(lower=old_order + 1, upper=new_order, delta=-1)

    return RelocationPlan(
        entry_id=entry_id,
        old_order=old_order,
        new_order=new_order,
        shift=shift,
    )


def plan_removal(deleted_order: int, count: int) -> Optional[OrderShift]:
    """
    Plan the compaction after deleting the entry at `deleted_order`.

    Args:
        deleted_order: Order of the removed entry
        count: Number of entries before the removal

    Returns:
        OrderShift closing the gap, or None when the tail was removed
    """
    if deleted_order >= count:
        return None
    return OrderShift(lower=deleted_order + 1, upper=count, delta=-1)


def apply_shift(
    orders: Mapping[str, int],
    shift: Optional[OrderShift],
    exclude: Optional[str] = None,
) -> Dict[str, int]:
    """Return a copy of `orders` with the shift applied."""
    result = dict(orders)
    if shift is None:
        return result
    for entry_id, order in orders.items():
        if entry_id != exclude and shift.contains(order):
            result[entry_id] = order + shift.delta
    return result


def apply_relocation(orders: Mapping[str, int], plan: RelocationPlan) -> Dict[str, int]:
    """Apply a relocation plan to an {id: order} mapping."""
    result = apply_shift(orders, plan.shift, exclude=plan.entry_id)
    result[plan.entry_id] = plan.new_order
    return result


def apply_removal(orders: Mapping[str, int], entry_id: str) -> Dict[str, int]:
    """Remove `entry_id` from an {id: order} mapping and close the gap."""
    result = dict(orders)
    deleted_order = result.pop(entry_id)
    return apply_shift(result, plan_removal(deleted_order, len(orders)))


def is_dense(orders: Iterable[int]) -> bool:
    """True if the orders are exactly 1..N with no repeats or gaps."""
    values = sorted(orders)
    return values == list(range(1, len(values) + 1))


def dense_renumbering(entries: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    """
    Compute new orders that compact a possibly gapped or duplicated list.

    Entries keep their relative position, ties broken by identifier
    (ObjectIds sort by creation time). Only entries whose order
    changes are returned.

    Args:
        entries: Stored documents with "_id" and "order"

    Returns:
        {entry_id: new_order} for every entry that must move
    """
    ranked: List[Mapping[str, Any]] = sorted(
        entries,
        key=lambda doc: (doc.get("order") or 0, str(doc.get("_id"))),
    )
    changes: Dict[str, int] = {}
    for new_order, doc in enumerate(ranked, start=1):
        if doc.get("order") != new_order:
            changes[str(doc["_id"])] = new_order
    return changes
