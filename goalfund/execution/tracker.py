"""
Execution tracker.

Follows a month through draft -> executing -> closed. Starting tracking
freezes the month's plan into a snapshot; completing it freezes per-goal
contributed amounts into CompletedExecution rows. Both steps can be undone
within the configured grace window.
"""

import threading
import uuid
from typing import Iterable, Optional

import structlog

from ..config.defaults import ExecutionParams
from ..errors import AlreadyTrackingError, NotFoundError
from ..events.bus import AllocationChanged, ContributionRecorded, EventBus, ExecutionStateChanged
from ..models import (
    CompletedExecution,
    ExecutionGoalSnapshot,
    ExecutionRecord,
    ExecutionSnapshot,
    ExecutionStatus,
    Goal,
    MonthlyPlan,
)
from ..persistence.store import PlannerStore
from ..utils.time import Clock, utc_now
from .transitions import ExecutionTransitionHandler, ExecutionTrigger

logger = structlog.get_logger(__name__)


class ExecutionTracker:
    """Owns execution records and their contribution totals."""

    def __init__(
        self,
        store: PlannerStore,
        params: Optional[ExecutionParams] = None,
        event_bus: Optional[EventBus] = None,
        clock: Clock = utc_now
    ):
        self.store = store
        self.params = params or ExecutionParams()
        self.event_bus = event_bus
        self.clock = clock
        self.logger = logger
        self.transitions = ExecutionTransitionHandler(self.params.undo_grace_period_hours)

        self._totals_cache: dict[str, dict[str, float]] = {}
        self._cache_lock = threading.Lock()
        self._cache_version = 0

        if event_bus is not None:
            event_bus.subscribe(AllocationChanged, self._on_allocation_changed)
            event_bus.subscribe(ContributionRecorded, self._on_contribution_recorded)

    # Lifecycle

    def start_tracking(self, month_label: str, plans: Iterable[MonthlyPlan],
                       goals: Iterable[Goal]) -> ExecutionRecord:
        """
        Freeze the month's plans and start tracking contributions.

        Only plans with a non-zero effective or required amount enter the
        snapshot. A draft record left by an undo is reused.

        Raises:
            AlreadyTrackingError: If the month is already executing or closed
        """
        now = self.clock()
        names = {goal.id: goal.name for goal in goals}
        snapshot = ExecutionSnapshot(
            captured_at=now,
            goals=tuple(
                ExecutionGoalSnapshot(
                    goal_id=plan.goal_id,
                    goal_name=names.get(plan.goal_id, plan.goal_id),
                    planned_amount=plan.effective_amount,
                    currency=plan.currency,
                    flex_state=plan.flex_state,
                    required_amount=plan.required_monthly,
                )
                for plan in plans
                if plan.effective_amount > 0 or plan.required_monthly > 0
            ),
        )

        with self.store.transaction("start_tracking"):
            record = self.store.get_execution_record_for_month(month_label)
            if record is not None and record.status != ExecutionStatus.DRAFT:
                raise AlreadyTrackingError(
                    f"Month {month_label} is already {record.status.value}",
                    month_label=month_label,
                    current_state=record.status.value,
                    attempted_transition=ExecutionStatus.EXECUTING.value
                )
            if record is None:
                record = ExecutionRecord(
                    id=str(uuid.uuid4()),
                    month_label=month_label,
                    status=ExecutionStatus.DRAFT,
                    created_at=now,
                )

            started = self.transitions.apply(
                record,
                ExecutionTrigger.START_TRACKING,
                now,
                snapshot=snapshot,
                goal_ids=tuple(snapshot.goal_ids),
            )
            self.store.save_execution_record(started)
            self._state_changed(record, started)

        self.logger.info(
            "Execution tracking started",
            record_id=started.id,
            month_label=month_label,
            goals=len(snapshot.goals),
            total_planned=snapshot.total_planned
        )
        return started

    def mark_complete(self, record_id: str) -> ExecutionRecord:
        """
        Close an executing month, freezing what each goal received.

        Raises:
            InvalidTransitionError: If the record is not executing
        """
        with self.store.transaction("mark_complete"):
            record = self.get_record(record_id)
            now = self.clock()
            closed = self.transitions.apply(record, ExecutionTrigger.MARK_COMPLETE, now)

            totals = self._live_totals(record.id)
            for entry in record.snapshot.goals if record.snapshot else ():
                self.store.add_completed_execution(CompletedExecution(
                    record_id=record.id,
                    goal_id=entry.goal_id,
                    goal_name=entry.goal_name,
                    currency=entry.currency,
                    planned_amount=entry.planned_amount,
                    contributed_amount=totals.get(entry.goal_id, 0.0),
                    completed_at=now,
                ))

            self.store.save_execution_record(closed)
            self._state_changed(record, closed)

        return closed

    def undo_start_tracking(self, record_id: str) -> ExecutionRecord:
        """
        Return an executing month to draft. Plans are left untouched.

        Raises:
            InvalidTransitionError: If the record is not executing
            UndoExpiredError: If the undo window has closed
        """
        with self.store.transaction("undo_start_tracking"):
            record = self.get_record(record_id)
            draft = self.transitions.apply(record, ExecutionTrigger.UNDO_START_TRACKING, self.clock())
            self.store.save_execution_record(draft)
            self._state_changed(record, draft)
        return draft

    def undo_completion(self, record_id: str) -> ExecutionRecord:
        """
        Reopen a closed month and discard its completed rows.

        Raises:
            InvalidTransitionError: If the record is not closed
            UndoExpiredError: If the undo window has closed
        """
        with self.store.transaction("undo_completion"):
            record = self.get_record(record_id)
            reopened = self.transitions.apply(record, ExecutionTrigger.UNDO_COMPLETION, self.clock())
            removed = self.store.delete_completed_executions(record.id)
            self.store.save_execution_record(reopened)
            self._state_changed(record, reopened)

        self.logger.info("Completion undone", record_id=record_id, rows_removed=removed)
        return reopened

    # Queries

    def get_record(self, record_id: str) -> ExecutionRecord:
        record = self.store.get_execution_record(record_id)
        if record is None:
            raise NotFoundError(
                f"Execution record not found: {record_id}",
                entity_type="execution_record",
                entity_id=record_id
            )
        return record

    def get_record_for_month(self, month_label: str) -> Optional[ExecutionRecord]:
        return self.store.get_execution_record_for_month(month_label)

    def get_active_record(self) -> Optional[ExecutionRecord]:
        records = self.store.list_execution_records(status=ExecutionStatus.EXECUTING, limit=1)
        return records[0] if records else None

    def get_completed_records(self, limit: int = 10, offset: int = 0) -> list[ExecutionRecord]:
        """Closed records, newest month first."""
        return self.store.list_execution_records(status=ExecutionStatus.CLOSED, limit=limit, offset=offset)

    def get_contribution_totals(self, record: ExecutionRecord) -> dict[str, float]:
        """
        Per-goal contributed amounts (goal currency) for a record.

        Closed records read the frozen completed rows; other records sum the
        linked contributions. Results are cached until an allocation or
        contribution event arrives. Totals computed while an invalidation
        happened are returned but not cached.
        """
        with self._cache_lock:
            cached = self._totals_cache.get(record.id)
            version = self._cache_version
        if cached is not None:
            return dict(cached)

        if record.is_closed:
            totals = {
                row.goal_id: row.contributed_amount
                for row in self.store.completed_executions_for_record(record.id)
            }
        else:
            totals = self._live_totals(record.id)

        with self._cache_lock:
            if self._cache_version == version:
                self._totals_cache[record.id] = totals
        return dict(totals)

    def calculate_progress(self, record: ExecutionRecord) -> float:
        """Percentage of the planned total contributed so far."""
        contributed = sum(self.get_contribution_totals(record).values())

        if record.is_closed:
            planned = record.snapshot.total_planned if record.snapshot else 0.0
        else:
            wanted = set(record.goal_ids)
            planned = sum(
                plan.effective_amount
                for plan in self.store.list_plans(month_label=record.month_label)
                if plan.goal_id in wanted
            )

        return contributed / planned * 100 if planned > 0 else 0.0

    def fulfillment(self, record: ExecutionRecord) -> dict[str, bool]:
        """Whether each snapshot goal received at least its planned amount."""
        if record.snapshot is None:
            return {}
        totals = self.get_contribution_totals(record)
        return {
            entry.goal_id: totals.get(entry.goal_id, 0.0) >= entry.planned_amount
            for entry in record.snapshot.goals
        }

    def invalidate_totals(self, record_id: Optional[str] = None) -> None:
        with self._cache_lock:
            self._cache_version += 1
            if record_id is None:
                self._totals_cache.clear()
            else:
                self._totals_cache.pop(record_id, None)

    def _live_totals(self, record_id: str) -> dict[str, float]:
        totals: dict[str, float] = {}
        for contribution in self.store.list_contributions(execution_record_id=record_id):
            totals[contribution.goal_id] = (
                totals.get(contribution.goal_id, 0.0) + contribution.amount_in_goal_currency
            )
        return totals

    def _state_changed(self, before: ExecutionRecord, after: ExecutionRecord) -> None:
        self.store.after_commit(lambda: self.invalidate_totals(after.id))
        if self.event_bus is None:
            return
        event = ExecutionStateChanged(
            record_id=after.id,
            month_label=after.month_label,
            from_status=before.status.value,
            to_status=after.status.value,
        )
        self.store.after_commit(lambda: self.event_bus.publish(event))

    def _on_allocation_changed(self, event: AllocationChanged) -> None:
        self.invalidate_totals()

    def _on_contribution_recorded(self, event: ContributionRecorded) -> None:
        self.invalidate_totals(event.execution_record_id)
