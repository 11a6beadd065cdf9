"""
Execution progress aggregation.

Builds the per-goal view of a month being tracked. Planned amounts come
from the snapshot for closed months and from the live plans for executing
months (snapshot values fill in whatever the live plans lack). Remaining
amounts are converted into a display currency; a row whose rate is missing
stays in its own currency and the aggregate is flagged.

Each refresh takes a generation token. When a newer refresh has started
before an older one finishes, the older result is discarded.
"""

import threading
from dataclasses import dataclass
from typing import Optional

import structlog

from ..currency.base import CurrencyConverter, normalize_currency
from ..errors import ConversionUnavailableError
from ..models import ExecutionRecord, ExecutionStatus, FlexState, MonthlyPlan
from ..persistence.store import PlannerStore
from .tracker import ExecutionTracker

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GoalProgressRow:
    goal_id: str
    goal_name: str
    currency: str
    planned_amount: float
    contributed_amount: float
    flex_state: FlexState
    remaining_display: float
    display_currency: str

    @property
    def remaining_amount(self) -> float:
        return max(self.planned_amount - self.contributed_amount, 0.0)

    @property
    def is_fulfilled(self) -> bool:
        return self.contributed_amount >= self.planned_amount

    @property
    def is_converted(self) -> bool:
        return self.display_currency != normalize_currency(self.currency)


@dataclass(frozen=True)
class ExecutionDisplay:
    record_id: str
    month_label: str
    status: ExecutionStatus
    display_currency: str
    rows: tuple[GoalProgressRow, ...]
    progress_percent: float
    has_rate_conversion_warning: bool
    generation: int

    @property
    def total_remaining(self) -> float:
        """Remaining total of the rows expressed in the display currency."""
        return sum(r.remaining_display for r in self.rows if r.display_currency == self.display_currency)

    @property
    def total_planned(self) -> float:
        return sum(r.planned_amount for r in self.rows)


class ExecutionProgressView:
    """Aggregates tracker, plans and rates into an ExecutionDisplay."""

    def __init__(self, store: PlannerStore, tracker: ExecutionTracker,
                 converter: Optional[CurrencyConverter] = None):
        self.store = store
        self.tracker = tracker
        self.converter = converter
        self.logger = logger
        self._generation = 0
        self._lock = threading.Lock()
        self.latest: Optional[ExecutionDisplay] = None

    def refresh(self, record_id: str, display_currency: str) -> Optional[ExecutionDisplay]:
        """
        Recompute the display for a record.

        Returns:
            The display, or None when a newer refresh superseded this one
        """
        with self._lock:
            self._generation += 1
            token = self._generation

        display = self.build(self.tracker.get_record(record_id), display_currency, token)

        with self._lock:
            if token != self._generation:
                self.logger.debug(
                    "Discarding superseded execution display",
                    record_id=record_id,
                    generation=token,
                    current_generation=self._generation
                )
                return None
            self.latest = display
        return display

    def build(self, record: ExecutionRecord, display_currency: str,
              generation: int = 0) -> ExecutionDisplay:
        display_currency = normalize_currency(display_currency)
        totals = self.tracker.get_contribution_totals(record)
        warning = False
        rows = []

        for goal_id, name, currency, planned, flex_state in self._planned_rows(record):
            contributed = totals.get(goal_id, 0.0)
            remaining = max(planned - contributed, 0.0)
            row_currency = display_currency
            try:
                remaining_display = self._convert(remaining, currency, display_currency)
            except ConversionUnavailableError as e:
                warning = True
                remaining_display = remaining
                row_currency = normalize_currency(currency)
                self.logger.warning(
                    "Showing remaining amount in goal currency",
                    goal_id=goal_id,
                    currency=currency,
                    display_currency=display_currency,
                    error=str(e)
                )

            rows.append(GoalProgressRow(
                goal_id=goal_id,
                goal_name=name,
                currency=currency,
                planned_amount=planned,
                contributed_amount=contributed,
                flex_state=flex_state,
                remaining_display=remaining_display,
                display_currency=row_currency,
            ))

        return ExecutionDisplay(
            record_id=record.id,
            month_label=record.month_label,
            status=record.status,
            display_currency=display_currency,
            rows=tuple(rows),
            progress_percent=self.tracker.calculate_progress(record),
            has_rate_conversion_warning=warning,
            generation=generation,
        )

    def _planned_rows(self, record: ExecutionRecord) -> list[tuple[str, str, str, float, FlexState]]:
        """(goal_id, name, currency, planned, flex_state) per goal, by source rule."""
        snapshot = record.snapshot

        if record.is_closed and snapshot is not None:
            return [
                (g.goal_id, g.goal_name, g.currency, g.planned_amount, g.flex_state)
                for g in snapshot.goals
            ]

        live: dict[str, MonthlyPlan] = {
            plan.goal_id: plan for plan in self.store.list_plans(month_label=record.month_label)
        }
        goal_ids = list(record.goal_ids) if record.goal_ids else sorted(live)

        rows = []
        for goal_id in goal_ids:
            plan = live.get(goal_id)
            frozen = snapshot.goal(goal_id) if snapshot else None
            if plan is None and frozen is None:
                continue

            goal = self.store.get_goal(goal_id)
            name = goal.name if goal else (frozen.goal_name if frozen else goal_id)
            if plan is not None:
                rows.append((goal_id, name, plan.currency, plan.effective_amount, plan.flex_state))
            else:
                rows.append((goal_id, name, frozen.currency, frozen.planned_amount, frozen.flex_state))
        return rows

    def _convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        if normalize_currency(from_currency) == normalize_currency(to_currency):
            return amount
        if self.converter is None:
            raise ConversionUnavailableError(
                f"No converter for {from_currency} -> {to_currency}",
                from_currency=from_currency,
                to_currency=to_currency
            )
        return self.converter.convert(amount, from_currency, to_currency)
