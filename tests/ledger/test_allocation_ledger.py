"""Tests for the allocation ledger."""

import pytest

from goalfund.errors import (
    ExceedsAvailableBalanceError,
    NegativeAmountError,
    NotFoundError,
    ValidationError,
)
from goalfund.events.bus import AllocationChanged


class TestSetAllocation:
    """Test AllocationLedger.set_allocation."""

    def test_set_allocation_stores_amount(self, ledger, make_asset, make_goal):
        """Test a valid allocation is stored and returned."""
        asset = make_asset(1000.0)
        goal = make_goal()

        allocation = ledger.set_allocation(asset.id, goal.id, 400.0)

        assert allocation.amount == 400.0
        assert ledger.allocations_for_goal(goal.id)[0].amount == 400.0

    def test_exceeding_balance_is_rejected_without_change(self, ledger, make_asset, make_goal):
        """Test an asset of 1000 with 600 and 300 allocated cannot raise the 600 to 800."""
        asset = make_asset(1000.0)
        goal_a = make_goal("A")
        goal_b = make_goal("B")
        ledger.set_allocation(asset.id, goal_a.id, 600.0)
        ledger.set_allocation(asset.id, goal_b.id, 300.0)

        with pytest.raises(ExceedsAvailableBalanceError) as exc_info:
            ledger.set_allocation(asset.id, goal_a.id, 800.0)

        assert exc_info.value.attempted == pytest.approx(1100.0)
        assert exc_info.value.available == pytest.approx(1000.0)
        amounts = {a.goal_id: a.amount for a in ledger.allocations_for_asset(asset.id)}
        assert amounts == {goal_a.id: 600.0, goal_b.id: 300.0}

    def test_negative_amount_rejected(self, ledger, make_asset, make_goal):
        asset = make_asset()
        goal = make_goal()

        with pytest.raises(NegativeAmountError):
            ledger.set_allocation(asset.id, goal.id, -1.0)

        assert ledger.allocations_for_asset(asset.id) == []
        assert ledger.history(asset_id=asset.id) == []

    def test_amount_just_above_balance_is_rejected(self, ledger, make_asset, make_goal):
        """Test the balance check has no tolerance, even below epsilon."""
        asset = make_asset(1000.0)
        goal = make_goal()

        with pytest.raises(ExceedsAvailableBalanceError):
            ledger.set_allocation(asset.id, goal.id, 1000.0 + 5e-8)

        assert ledger.allocations_for_asset(asset.id) == []

    def test_full_balance_is_accepted(self, ledger, make_asset, make_goal):
        asset = make_asset(1000.0)
        goal = make_goal()

        allocation = ledger.set_allocation(asset.id, goal.id, 1000.0)

        assert allocation.amount == 1000.0

    @pytest.mark.parametrize("amount", [float("nan"), float("inf")])
    def test_non_finite_amount_rejected(self, ledger, make_asset, make_goal, amount):
        asset = make_asset()
        goal = make_goal()

        with pytest.raises(ValidationError) as exc_info:
            ledger.set_allocation(asset.id, goal.id, amount)

        assert exc_info.value.field == "amount"
        assert ledger.allocations_for_asset(asset.id) == []
        assert ledger.history(asset_id=asset.id) == []

    def test_zero_amount_removes_allocation(self, ledger, make_asset, make_goal):
        """Test setting zero deletes the row and records a zero history entry."""
        asset = make_asset()
        goal = make_goal()
        ledger.set_allocation(asset.id, goal.id, 250.0)

        result = ledger.set_allocation(asset.id, goal.id, 0.0)

        assert result is None
        assert ledger.allocations_for_asset(asset.id) == []
        history = ledger.history(asset_id=asset.id, goal_id=goal.id)
        assert [entry.amount for entry in history] == [250.0, 0.0]

    def test_unchanged_amount_writes_no_history(self, ledger, make_asset, make_goal):
        asset = make_asset()
        goal = make_goal()
        ledger.set_allocation(asset.id, goal.id, 250.0)
        ledger.set_allocation(asset.id, goal.id, 250.0)

        assert len(ledger.history(goal_id=goal.id)) == 1

    def test_history_entry_uses_current_month(self, ledger, make_asset, make_goal):
        asset = make_asset()
        goal = make_goal()
        ledger.set_allocation(asset.id, goal.id, 10.0)

        entry = ledger.history(goal_id=goal.id)[0]
        assert entry.month_label == "2025-01"

    def test_unknown_asset_or_goal(self, ledger, make_asset, make_goal):
        asset = make_asset()
        goal = make_goal()

        with pytest.raises(NotFoundError):
            ledger.set_allocation("missing", goal.id, 1.0)
        with pytest.raises(NotFoundError):
            ledger.set_allocation(asset.id, "missing", 1.0)


class TestAllocationEvents:
    """Test events published by the ledger."""

    def test_change_publishes_event(self, ledger, event_bus, make_asset, make_goal):
        received = []
        event_bus.subscribe(AllocationChanged, received.append)
        asset = make_asset()
        goal = make_goal()

        ledger.set_allocation(asset.id, goal.id, 100.0)

        assert received == [AllocationChanged(asset_id=asset.id, goal_ids=(goal.id,))]

    def test_rejected_change_publishes_nothing(self, ledger, event_bus, make_asset, make_goal):
        received = []
        event_bus.subscribe(AllocationChanged, received.append)
        asset = make_asset(10.0)
        goal = make_goal()

        with pytest.raises(ExceedsAvailableBalanceError):
            ledger.set_allocation(asset.id, goal.id, 20.0)

        assert received == []

    def test_event_delivered_after_commit(self, ledger, store, event_bus, make_asset, make_goal):
        """Test handlers see the committed allocation."""
        seen = []
        asset = make_asset()
        goal = make_goal()
        event_bus.subscribe(
            AllocationChanged,
            lambda event: seen.append(store.get_allocation(asset.id, goal.id))
        )

        ledger.set_allocation(asset.id, goal.id, 42.0)

        assert seen[0].amount == 42.0


class TestBulkUpdate:
    """Test AllocationLedger.bulk_update."""

    def test_replaces_allocation_set(self, ledger, make_asset, make_goal):
        asset = make_asset(1000.0)
        goal_a, goal_b, goal_c = make_goal("A"), make_goal("B"), make_goal("C")
        ledger.set_allocation(asset.id, goal_a.id, 500.0)
        ledger.set_allocation(asset.id, goal_b.id, 200.0)

        result = ledger.bulk_update(asset.id, {goal_b.id: 300.0, goal_c.id: 700.0})

        amounts = {a.goal_id: a.amount for a in result}
        assert amounts == {goal_b.id: 300.0, goal_c.id: 700.0}
        assert ledger.history(goal_id=goal_a.id)[-1].amount == 0.0

    def test_over_balance_rejects_everything(self, ledger, make_asset, make_goal):
        asset = make_asset(1000.0)
        goal_a, goal_b = make_goal("A"), make_goal("B")
        ledger.set_allocation(asset.id, goal_a.id, 500.0)

        with pytest.raises(ExceedsAvailableBalanceError):
            ledger.bulk_update(asset.id, {goal_a.id: 600.0, goal_b.id: 600.0})

        amounts = {a.goal_id: a.amount for a in ledger.allocations_for_asset(asset.id)}
        assert amounts == {goal_a.id: 500.0}

    def test_nan_amount_rejects_everything(self, ledger, make_asset, make_goal):
        asset = make_asset(1000.0)
        goal_a, goal_b = make_goal("A"), make_goal("B")
        ledger.set_allocation(asset.id, goal_a.id, 500.0)

        with pytest.raises(ValidationError) as exc_info:
            ledger.bulk_update(asset.id, {goal_a.id: 100.0, goal_b.id: float("nan")})

        assert exc_info.value.field == goal_b.id
        amounts = {a.goal_id: a.amount for a in ledger.allocations_for_asset(asset.id)}
        assert amounts == {goal_a.id: 500.0}

    def test_single_event_for_changed_goals(self, ledger, event_bus, make_asset, make_goal):
        received = []
        event_bus.subscribe(AllocationChanged, received.append)
        asset = make_asset(1000.0)
        goal_a, goal_b = make_goal("A", goal_id="a"), make_goal("B", goal_id="b")

        ledger.bulk_update(asset.id, {goal_b.id: 100.0, goal_a.id: 200.0})

        assert len(received) == 1
        assert received[0].goal_ids == ("a", "b")


class TestRemovalAndStatus:
    """Test removals, allocation status and totals."""

    def test_remove_allocation(self, ledger, make_asset, make_goal):
        asset = make_asset()
        goal = make_goal()
        ledger.set_allocation(asset.id, goal.id, 50.0)

        assert ledger.remove_allocation(asset.id, goal.id) is True
        assert ledger.remove_allocation(asset.id, goal.id) is False

    def test_remove_all_for_goal(self, ledger, make_asset, make_goal):
        asset_a, asset_b = make_asset(), make_asset()
        goal = make_goal()
        ledger.set_allocation(asset_a.id, goal.id, 10.0)
        ledger.set_allocation(asset_b.id, goal.id, 20.0)

        affected = ledger.remove_all_for_goal(goal.id)

        assert sorted(affected) == sorted([asset_a.id, asset_b.id])
        assert ledger.allocations_for_goal(goal.id) == []

    def test_remove_all_for_asset(self, ledger, make_asset, make_goal):
        asset = make_asset()
        goal_a, goal_b = make_goal("A"), make_goal("B")
        ledger.set_allocation(asset.id, goal_a.id, 10.0)
        ledger.set_allocation(asset.id, goal_b.id, 20.0)

        affected = ledger.remove_all_for_asset(asset.id)

        assert sorted(affected) == sorted([goal_a.id, goal_b.id])
        assert ledger.allocations_for_asset(asset.id) == []

    def test_balance_drop_shows_over_allocation(self, ledger, store, make_asset, make_goal):
        """Test shrinking a balance leaves allocations in place and flags the asset."""
        asset = make_asset(1000.0)
        goal = make_goal()
        ledger.set_allocation(asset.id, goal.id, 900.0)

        with store.transaction():
            store.save_asset(asset.with_manual_amount(500.0))

        status = ledger.allocation_status(asset.id)
        assert status.is_over_allocated
        assert status.delta == pytest.approx(-400.0)
        assert [s.asset_id for s in ledger.over_allocated_assets()] == [asset.id]

    def test_fully_allocated_status(self, ledger, make_asset, make_goal):
        asset = make_asset(100.0)
        goal = make_goal()
        ledger.set_allocation(asset.id, goal.id, 100.0)

        status = ledger.allocation_status(asset.id)
        assert status.is_fully_allocated
        assert status.unallocated == 0.0

    def test_allocated_total_converts_asset_currency(self, ledger, converter, make_asset, make_goal):
        btc = make_asset(0.1, currency="BTC")
        usd = make_asset(300.0)
        goal = make_goal(currency="USD")
        ledger.set_allocation(btc.id, goal.id, 0.01)
        ledger.set_allocation(usd.id, goal.id, 300.0)

        assert ledger.allocated_total(goal.id, "USD", converter) == pytest.approx(800.0)

    def test_sum_of_allocations_never_exceeds_balance(self, ledger, make_asset, make_goal):
        """Test the balance invariant over a sequence of accepted and rejected writes."""
        asset = make_asset(500.0)
        goals = [make_goal(f"G{i}") for i in range(4)]
        attempts = [(0, 200.0), (1, 200.0), (2, 200.0), (0, 50.0), (2, 250.0), (3, 10.0)]

        for index, amount in attempts:
            try:
                ledger.set_allocation(asset.id, goals[index].id, amount)
            except ExceedsAvailableBalanceError:
                pass
            total = sum(a.amount for a in ledger.allocations_for_asset(asset.id))
            assert total <= 500.0
