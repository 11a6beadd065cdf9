"""Tests for the planner persistence layer."""

import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from goalfund.errors import PersistenceError
from goalfund.models import (
    Allocation,
    Asset,
    Contribution,
    ExecutionGoalSnapshot,
    ExecutionRecord,
    ExecutionSnapshot,
    ExecutionStatus,
    FlexState,
    Goal,
    GoalStatus,
    MonthlyPlan,
)
from goalfund.persistence.store import PlannerStore

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def sample_goal(goal_id: str = "g1", status: GoalStatus = GoalStatus.ACTIVE) -> Goal:
    return Goal(
        id=goal_id,
        name="Emergency fund",
        currency="USD",
        target_amount=5000.0,
        deadline=date(2025, 12, 31),
        start_date=date(2025, 1, 1),
        status=status,
        emoji="💰",
    )


def sample_plan(goal_id: str = "g1", plan_id: str = "p1", month: str = "2025-01") -> MonthlyPlan:
    return MonthlyPlan(
        id=plan_id,
        goal_id=goal_id,
        month_label=month,
        currency="USD",
        required_monthly=450.0,
        remaining_amount=5000.0,
        months_remaining=11,
        created_at=NOW,
        last_calculated=NOW,
    )


class TestPlannerStoreFile:
    """Test file-backed persistence."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "planner.db"

    def teardown_method(self):
        if self.db_path.exists():
            os.unlink(self.db_path)
        os.rmdir(self.temp_dir)

    def test_data_survives_reopen(self):
        store = PlannerStore(self.db_path)
        with store.transaction():
            store.save_goal(sample_goal())
        store.close()

        reopened = PlannerStore(self.db_path)
        try:
            assert reopened.get_goal("g1") == sample_goal()
        finally:
            reopened.close()

    def test_unopenable_path(self):
        with pytest.raises(PersistenceError):
            PlannerStore(Path(self.temp_dir) / "missing" / "planner.db")


class TestTransactions:
    """Test transaction semantics."""

    def test_exception_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction("test"):
                store.save_goal(sample_goal())
                raise RuntimeError("boom")

        assert store.get_goal("g1") is None

    def test_nested_transaction_joins_outer(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction("outer"):
                with store.transaction("inner"):
                    store.save_goal(sample_goal())
                raise RuntimeError("boom")

        assert store.get_goal("g1") is None

    def test_after_commit_runs_once_committed(self, store):
        calls = []

        with store.transaction():
            store.save_goal(sample_goal())
            store.after_commit(lambda: calls.append(store.get_goal("g1") is not None))
            assert calls == []

        assert calls == [True]

    def test_after_commit_dropped_on_rollback(self, store):
        calls = []

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.after_commit(lambda: calls.append("ran"))
                raise RuntimeError("boom")

        assert calls == []

    def test_after_commit_without_transaction_runs_now(self, store):
        calls = []
        store.after_commit(lambda: calls.append("ran"))
        assert calls == ["ran"]

    def test_failing_callback_is_contained(self, store):
        def fail():
            raise ValueError("handler bug")

        with store.transaction():
            store.after_commit(fail)

    def test_sqlite_errors_become_persistence_errors(self, store):
        with pytest.raises(PersistenceError) as exc_info:
            with store.transaction("bad_sql"):
                store._execute("INSERT INTO no_such_table VALUES (1)", operation="bad_sql")

        assert exc_info.value.operation == "bad_sql"
        assert exc_info.value.recoverable is False


class TestEntities:
    """Test entity round trips and queries."""

    def test_goal_filtering_by_status(self, store):
        with store.transaction():
            store.save_goal(sample_goal("a"))
            store.save_goal(sample_goal("b", GoalStatus.PAUSED))

        assert [g.id for g in store.list_goals()] == ["a", "b"]
        assert [g.id for g in store.list_goals(GoalStatus.PAUSED)] == ["b"]

    def test_plan_unique_per_goal_and_month(self, store):
        with store.transaction():
            store.save_goal(sample_goal())
            first = store.insert_plan_if_absent(sample_plan(plan_id="p1"))
            second = store.insert_plan_if_absent(sample_plan(plan_id="p2"))

        assert first.id == second.id == "p1"
        assert len(store.list_plans(goal_id="g1")) == 1

    def test_plan_round_trip_with_overrides(self, store):
        plan = sample_plan().with_custom_amount(120.0).with_flex(FlexState.PROTECTED, multiplier=0.8)
        with store.transaction():
            store.save_plan(plan)

        assert store.get_plan("g1", "2025-01") == plan
        assert store.list_plans(flex_state=FlexState.PROTECTED) == [plan]

    def test_execution_record_round_trip(self, store):
        snapshot = ExecutionSnapshot(
            captured_at=NOW,
            goals=(ExecutionGoalSnapshot("g1", "Emergency fund", 450.0, "USD", FlexState.FLEXIBLE, 450.0),),
        )
        record = ExecutionRecord(
            id="r1",
            month_label="2025-01",
            status=ExecutionStatus.EXECUTING,
            created_at=NOW,
            started_at=NOW,
            can_undo_until=NOW,
            goal_ids=("g1",),
            snapshot=snapshot,
        )
        with store.transaction():
            store.save_execution_record(record)

        assert store.get_execution_record("r1") == record
        assert store.get_execution_record_for_month("2025-01") == record

    def test_records_newest_month_first(self, store):
        with store.transaction():
            for month in ("2024-11", "2025-01", "2024-12"):
                store.save_execution_record(ExecutionRecord(
                    id=month, month_label=month, status=ExecutionStatus.CLOSED, created_at=NOW
                ))

        records = store.list_execution_records(status=ExecutionStatus.CLOSED, limit=2, offset=0)
        assert [r.month_label for r in records] == ["2025-01", "2024-12"]

    def test_goal_delete_cascades(self, store):
        with store.transaction():
            store.save_goal(sample_goal())
            store.save_asset(Asset(id="a1", currency="USD", manual_amount=100.0))
            store.upsert_allocation(Allocation("a1", "g1", 50.0, NOW))
            store.save_plan(sample_plan())
            store.add_contribution(Contribution(
                id="c1", goal_id="g1", asset_id="a1", amount=10.0, exchange_rate=1.0,
                amount_in_goal_currency=10.0, timestamp=NOW, month_label="2025-01",
            ))

        store.delete_goal("g1")

        assert store.allocations_for_asset("a1") == []
        assert store.list_plans() == []
        assert store.list_contributions() == []
        assert store.get_asset("a1") is not None

    def test_asset_delete_cascades(self, store):
        with store.transaction():
            store.save_goal(sample_goal())
            store.save_asset(Asset(id="a1", currency="USD", manual_amount=100.0))
            store.upsert_allocation(Allocation("a1", "g1", 50.0, NOW))

        store.delete_asset("a1")

        assert store.allocations_for_goal("g1") == []
        assert store.get_goal("g1") is not None

    def test_settings(self, store):
        assert store.get_setting("budget", {"none": True}) == {"none": True}

        with store.transaction():
            store.set_setting("budget", {"amount": 500.0, "currency": "USD"})

        assert store.get_setting("budget") == {"amount": 500.0, "currency": "USD"}
