"""Tests for the execution tracker."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from goalfund.config.defaults import ExecutionParams
from goalfund.contributions.service import ContributionService
from goalfund.errors import AlreadyTrackingError, InvalidTransitionError, UndoExpiredError
from goalfund.events.bus import ExecutionStateChanged
from goalfund.execution.tracker import ExecutionTracker
from goalfund.models import ExecutionStatus


@pytest.fixture
def tracker(store, event_bus, clock) -> ExecutionTracker:
    return ExecutionTracker(store, event_bus=event_bus, clock=clock)


@pytest.fixture
def contributions(store, event_bus, clock) -> ContributionService:
    return ContributionService(store, event_bus, clock)


@pytest.fixture
def month(plan_service, make_goal):
    """Two goals with plans for January 2025."""
    goals = [make_goal("Laptop", 1200.0, goal_id="laptop"), make_goal("Trip", 2400.0, goal_id="trip")]
    plans = plan_service.get_or_create_plans("2025-01", goals)
    return goals, plans


class TestStartTracking:
    """Test starting execution of a month."""

    def test_start_captures_snapshot(self, tracker, month, clock):
        goals, plans = month

        record = tracker.start_tracking("2025-01", plans, goals)

        assert record.status == ExecutionStatus.EXECUTING
        assert record.started_at == clock.now
        assert record.can_undo_until == clock.now + timedelta(hours=24)
        assert record.snapshot.total_planned == pytest.approx(300.0 + 600.0)
        assert record.snapshot.goal("laptop").goal_name == "Laptop"
        assert set(record.goal_ids) == {"laptop", "trip"}

    def test_snapshot_excludes_zero_plans(self, tracker, plan_service, store, make_goal, make_asset, ledger):
        done = make_goal("Done", 100.0, goal_id="done")
        asset = make_asset(100.0)
        ledger.set_allocation(asset.id, done.id, 100.0)
        plans = plan_service.get_or_create_plans("2025-01", [done])

        record = tracker.start_tracking("2025-01", plans, [done])

        assert record.snapshot.goals == ()

    def test_already_tracking(self, tracker, month):
        goals, plans = month
        tracker.start_tracking("2025-01", plans, goals)

        with pytest.raises(AlreadyTrackingError):
            tracker.start_tracking("2025-01", plans, goals)

    def test_closed_month_cannot_restart(self, tracker, month):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        tracker.mark_complete(record.id)

        with pytest.raises(AlreadyTrackingError):
            tracker.start_tracking("2025-01", plans, goals)

    def test_publishes_state_change(self, tracker, event_bus, month):
        received = []
        event_bus.subscribe(ExecutionStateChanged, received.append)
        goals, plans = month

        record = tracker.start_tracking("2025-01", plans, goals)

        assert received == [ExecutionStateChanged(record.id, "2025-01", "draft", "executing")]

    def test_snapshot_unaffected_by_later_plan_edits(self, tracker, plan_service, store, month):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)

        plan_service.set_custom_amount("laptop", "2025-01", 1.0)

        stored = store.get_execution_record(record.id)
        assert stored.snapshot.goal("laptop").planned_amount == pytest.approx(300.0)


class TestUndoWindow:
    """Test undo of start and completion."""

    def test_undo_start_inside_window(self, tracker, month, clock):
        """Test undo 23 hours after starting succeeds."""
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        clock.advance(hours=23)

        draft = tracker.undo_start_tracking(record.id)

        assert draft.status == ExecutionStatus.DRAFT
        assert draft.started_at is None
        assert draft.snapshot is None

    def test_undo_start_after_window(self, tracker, month, clock):
        """Test undo 25 hours after starting is rejected."""
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        clock.advance(hours=25)

        with pytest.raises(UndoExpiredError) as exc_info:
            tracker.undo_start_tracking(record.id)

        assert exc_info.value.can_undo_until == record.can_undo_until
        assert tracker.get_record(record.id).status == ExecutionStatus.EXECUTING

    def test_undo_exactly_at_deadline_is_rejected(self, tracker, month, clock):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        clock.set(record.can_undo_until)

        with pytest.raises(UndoExpiredError):
            tracker.undo_start_tracking(record.id)

    def test_restart_after_undo_reuses_record(self, tracker, month):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        tracker.undo_start_tracking(record.id)

        restarted = tracker.start_tracking("2025-01", plans, goals)

        assert restarted.id == record.id
        assert restarted.status == ExecutionStatus.EXECUTING

    def test_undo_start_of_closed_record(self, tracker, month):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        tracker.mark_complete(record.id)

        with pytest.raises(InvalidTransitionError):
            tracker.undo_start_tracking(record.id)

    def test_undo_completion(self, tracker, store, month, clock):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        tracker.mark_complete(record.id)
        clock.advance(hours=1)

        reopened = tracker.undo_completion(record.id)

        assert reopened.status == ExecutionStatus.EXECUTING
        assert reopened.completed_at is None
        assert reopened.can_undo_until is None
        assert store.completed_executions_for_record(record.id) == []

    def test_undo_completion_after_window(self, tracker, month, clock):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        tracker.mark_complete(record.id)
        clock.advance(hours=24)

        with pytest.raises(UndoExpiredError):
            tracker.undo_completion(record.id)

    def test_zero_window_disables_undo(self, store, clock, month):
        tracker = ExecutionTracker(store, ExecutionParams(undo_grace_period_hours=0), clock=clock)
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)

        assert record.can_undo_until is None
        with pytest.raises(UndoExpiredError):
            tracker.undo_start_tracking(record.id)


class TestCompletion:
    """Test marking a month complete and contribution totals."""

    def test_mark_complete_freezes_contributions(self, tracker, contributions, store, month,
                                                 make_asset):
        goals, plans = month
        asset = make_asset(5000.0)
        record = tracker.start_tracking("2025-01", plans, goals)
        contributions.record_contribution("laptop", asset.id, 300.0)
        contributions.record_contribution("trip", asset.id, 100.0)

        closed = tracker.mark_complete(record.id)

        rows = {row.goal_id: row for row in store.completed_executions_for_record(record.id)}
        assert closed.status == ExecutionStatus.CLOSED
        assert rows["laptop"].contributed_amount == pytest.approx(300.0)
        assert rows["laptop"].is_fulfilled
        assert rows["trip"].planned_amount == pytest.approx(600.0)
        assert not rows["trip"].is_fulfilled

    def test_mark_complete_requires_executing(self, tracker, month):
        goals, plans = month
        record = tracker.start_tracking("2025-01", plans, goals)
        tracker.mark_complete(record.id)

        with pytest.raises(InvalidTransitionError):
            tracker.mark_complete(record.id)

    def test_totals_refresh_after_contribution(self, tracker, contributions, month, make_asset):
        """Test cached totals are invalidated by contribution events."""
        goals, plans = month
        asset = make_asset(5000.0)
        record = tracker.start_tracking("2025-01", plans, goals)

        assert tracker.get_contribution_totals(record) == {}
        contributions.record_contribution("laptop", asset.id, 50.0)

        assert tracker.get_contribution_totals(record) == {"laptop": pytest.approx(50.0)}

    def test_contribution_during_read_is_not_lost(self, tracker, contributions, store, month, make_asset):
        """Test totals read while a contribution lands are not cached."""
        goals, plans = month
        asset = make_asset(5000.0)
        record = tracker.start_tracking("2025-01", plans, goals)
        contributions.record_contribution("laptop", asset.id, 10.0)

        list_contributions = store.list_contributions
        calls = []

        def list_then_contribute(**kwargs):
            result = list_contributions(**kwargs)
            if not calls:
                calls.append(kwargs)
                contributions.record_contribution("laptop", asset.id, 90.0)
            return result

        with patch.object(store, "list_contributions", side_effect=list_then_contribute):
            first = tracker.get_contribution_totals(record)

        assert first == {"laptop": pytest.approx(10.0)}
        assert tracker.get_contribution_totals(record) == {"laptop": pytest.approx(100.0)}

    def test_progress_percentage(self, tracker, contributions, month, make_asset):
        goals, plans = month
        asset = make_asset(5000.0)
        record = tracker.start_tracking("2025-01", plans, goals)
        contributions.record_contribution("laptop", asset.id, 450.0)

        assert tracker.calculate_progress(record) == pytest.approx(50.0)
        closed = tracker.mark_complete(record.id)
        assert tracker.calculate_progress(closed) == pytest.approx(50.0)

    def test_fulfillment(self, tracker, contributions, month, make_asset):
        goals, plans = month
        asset = make_asset(5000.0)
        record = tracker.start_tracking("2025-01", plans, goals)
        contributions.record_contribution("laptop", asset.id, 300.0)

        assert tracker.fulfillment(record) == {"laptop": True, "trip": False}

    def test_record_queries(self, tracker, month, plan_service, clock):
        goals, plans = month
        january = tracker.start_tracking("2025-01", plans, goals)
        tracker.mark_complete(january.id)
        february_plans = plan_service.get_or_create_plans("2025-02", goals)
        february = tracker.start_tracking("2025-02", february_plans, goals)

        assert tracker.get_active_record().id == february.id
        assert [r.id for r in tracker.get_completed_records()] == [january.id]
        assert tracker.get_record_for_month("2025-01").is_closed
