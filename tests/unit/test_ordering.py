"""
Unit tests for queue_service/queue/ordering.py

Tests the pure order-maintenance planning:
- Append position
- Order validation against the list size
- Relocation plans (moving up, moving down, no-op)
- Removal compaction
- Dense renumbering of gapped or duplicated lists
- Dense ordering across random operation sequences
"""

import random

import pytest

from queue_service.queue.exceptions import ValidationError
from queue_service.queue.ordering import (
    OrderShift,
    apply_relocation,
    apply_removal,
    dense_renumbering,
    is_dense,
    next_order,
    plan_relocation,
    plan_removal,
    validate_order,
)


def by_order(orders: dict) -> list:
    """Ids sorted by their order."""
    return [entry_id for entry_id, _ in sorted(orders.items(), key=lambda item: item[1])]


class TestNextOrder:
    """Tests for the append position."""

    def test_empty_list_starts_at_one(self):
        assert next_order(None) == 1
        assert next_order(0) == 1

    def test_appends_after_maximum(self):
        assert next_order(4) == 5

    def test_repeated_appends_are_dense(self):
        """N appends yield 1..N in insertion order."""
        orders = {}
        current_max = None
        for i in range(10):
            current_max = next_order(current_max)
            orders[f"e{i}"] = current_max

        assert list(orders.values()) == list(range(1, 11))
        assert is_dense(orders.values())


class TestValidateOrder:
    """Tests for order validation."""

    @pytest.mark.parametrize("value", [1, 2, 3])
    def test_accepts_values_in_range(self, value):
        assert validate_order(value, 3) == value

    @pytest.mark.parametrize("value", [0, -1, 4, 100])
    def test_rejects_values_out_of_range(self, value):
        with pytest.raises(ValidationError, match="between 1 and 3"):
            validate_order(value, 3)

    @pytest.mark.parametrize("value", ["2", 2.0, None, True])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError, match="must be an integer"):
            validate_order(value, 3)

    def test_rejects_any_order_on_empty_list(self):
        with pytest.raises(ValidationError):
            validate_order(1, 0)


class TestPlanRelocation:
    """Tests for relocation planning."""

    def test_moving_up_shifts_range_back(self):
        """[1:A, 2:B, 3:C], C -> 1 shifts orders 1..2 by +1."""
        plan = plan_relocation("C", old_order=3, new_order=1, count=3)

        assert plan.shift == OrderShift(lower=1, upper=2, delta=1)
        assert plan.new_order == 1
        assert not plan.is_noop

    def test_moving_down_shifts_range_forward(self):
        plan = plan_relocation("A", old_order=1, new_order=3, count=4)

        assert plan.shift == OrderShift(lower=2, upper=3, delta=-1)

    def test_same_order_is_noop(self):
        plan = plan_relocation("B", old_order=2, new_order=2, count=3)

        assert plan.is_noop
        assert plan.shift is None

    def test_out_of_range_rejected_before_planning(self):
        with pytest.raises(ValidationError):
            plan_relocation("A", old_order=1, new_order=5, count=3)

    def test_scenario_move_last_to_front(self):
        """[1:A, 2:B, 3:C] relocate C to 1 -> [1:C, 2:A, 3:B]."""
        orders = {"A": 1, "B": 2, "C": 3}

        result = apply_relocation(orders, plan_relocation("C", 3, 1, 3))

        assert result == {"C": 1, "A": 2, "B": 3}

    def test_round_trip_restores_ordering(self):
        """Relocate(id, k) then Relocate(id, old) restores every order."""
        orders = {name: i for i, name in enumerate("ABCDEF", start=1)}
        for entry_id, old in orders.items():
            for target in range(1, len(orders) + 1):
                moved = apply_relocation(orders, plan_relocation(entry_id, old, target, len(orders)))
                back = apply_relocation(
                    moved, plan_relocation(entry_id, moved[entry_id], old, len(moved))
                )
                assert back == orders


class TestPlanRemoval:
    """Tests for removal compaction."""

    def test_removing_tail_needs_no_shift(self):
        assert plan_removal(4, 4) is None

    def test_removing_middle_shifts_tail_forward(self):
        assert plan_removal(2, 4) == OrderShift(lower=3, upper=4, delta=-1)

    def test_scenario_remove_second(self):
        """[1:A, 2:B, 3:C, 4:D] remove B -> [1:A, 2:C, 3:D]."""
        orders = {"A": 1, "B": 2, "C": 3, "D": 4}

        assert apply_removal(orders, "B") == {"A": 1, "C": 2, "D": 3}

    def test_reinsert_takes_tail_not_old_slot(self):
        """A removed entry re-inserted lands at the new tail."""
        orders = {"A": 1, "B": 2, "C": 3, "D": 4}

        remaining = apply_removal(orders, "B")
        remaining["B2"] = next_order(max(remaining.values()))

        assert remaining["B2"] == 4
        assert by_order(remaining) == ["A", "C", "D", "B2"]


class TestOrderShift:
    """Tests for the MongoDB query form of a shift."""

    def test_filter_and_update(self):
        shift = OrderShift(lower=2, upper=5, delta=-1)

        assert shift.size == 4
        assert shift.to_filter() == {"order": {"$gte": 2, "$lte": 5}}
        assert shift.to_update() == {"$inc": {"order": -1}}

    def test_filter_excludes_moved_entry(self):
        shift = OrderShift(lower=1, upper=2, delta=1)

        assert shift.to_filter("abc")["_id"] == {"$ne": "abc"}


class TestDenseRenumbering:
    """Tests for startup compaction."""

    def test_dense_list_is_untouched(self):
        entries = [{"_id": "a", "order": 1}, {"_id": "b", "order": 2}]

        assert dense_renumbering(entries) == {}

    def test_gaps_are_closed_keeping_relative_order(self):
        entries = [
            {"_id": "a", "order": 1},
            {"_id": "b", "order": 4},
            {"_id": "c", "order": 9},
        ]

        assert dense_renumbering(entries) == {"b": 2, "c": 3}

    def test_duplicates_broken_by_identifier(self):
        entries = [
            {"_id": "b", "order": 1},
            {"_id": "a", "order": 1},
            {"_id": "c", "order": 2},
        ]

        assert dense_renumbering(entries) == {"b": 2, "c": 3}

    def test_missing_order_goes_first(self):
        entries = [{"_id": "a", "order": 1}, {"_id": "b", "order": None}]

        assert dense_renumbering(entries) == {"b": 1, "a": 2}


class TestDenseUnderRandomOperations:
    """Orders stay 1..N across arbitrary insert/relocate/remove sequences."""

    @pytest.mark.parametrize("seed", range(20))
    def test_random_sequence_stays_dense(self, seed):
        rng = random.Random(seed)
        orders: dict = {}
        counter = 0

        for _ in range(200):
            action = rng.choice(["insert", "insert", "relocate", "remove"])
            if action == "insert" or not orders:
                counter += 1
                orders[f"e{counter}"] = next_order(max(orders.values(), default=None))
            elif action == "relocate":
                entry_id = rng.choice(list(orders))
                target = rng.randint(1, len(orders))
                orders = apply_relocation(
                    orders, plan_relocation(entry_id, orders[entry_id], target, len(orders))
                )
            else:
                orders = apply_removal(orders, rng.choice(list(orders)))

            assert is_dense(orders.values())
