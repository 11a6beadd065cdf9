"""
Monthly plan service.

Plans are get-or-created lazily per (goal, month). Recalculation refreshes
the derived fields from current allocations while user overrides (flex
state, custom amount, multiplier) are kept.
"""

import math
import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional

import structlog

from ..currency.base import CurrencyConverter
from ..errors import NegativeAmountError, NotFoundError, ValidationError
from ..events.bus import EventBus, PlanRecalculated
from ..ledger.allocation import AllocationLedger
from ..models import FlexState, Goal, MonthlyPlan, MonthlyRequirement
from ..persistence.store import PlannerStore
from ..utils.time import Clock, utc_now
from .requirements import RequirementCalculator

logger = structlog.get_logger(__name__)

# Custom amounts above this multiple of the requirement are flagged.
MAX_CUSTOM_RATIO = 10.0


class MonthlyPlanService:
    """Creates, recalculates and edits MonthlyPlans."""

    def __init__(
        self,
        store: PlannerStore,
        ledger: AllocationLedger,
        calculator: RequirementCalculator,
        converter: Optional[CurrencyConverter] = None,
        event_bus: Optional[EventBus] = None,
        clock: Clock = utc_now
    ):
        self.store = store
        self.ledger = ledger
        self.calculator = calculator
        self.converter = converter
        self.event_bus = event_bus
        self.clock = clock
        self.logger = logger

    def requirement_for(self, goal: Goal, now: Optional[datetime] = None) -> MonthlyRequirement:
        """Requirement of a goal from its current allocations."""
        allocated = self.ledger.allocated_total(goal.id, goal.currency, self.converter)
        return self.calculator.calculate(goal, allocated, now or self.clock())

    def requirements_for(self, goals: Iterable[Goal]) -> list[MonthlyRequirement]:
        now = self.clock()
        return [self.requirement_for(goal, now) for goal in goals]

    def get_or_create_plans(self, month_label: str, goals: Iterable[Goal]) -> list[MonthlyPlan]:
        """
        Plans for the given goals in a month, creating any that are missing.

        Calling this repeatedly returns the same plans; existing plans are
        never duplicated or recalculated here.
        """
        with self.store.transaction("get_or_create_plans"):
            return [self._get_or_create(month_label, goal)[0] for goal in goals]

    def plans_for_month(self, month_label: str) -> list[MonthlyPlan]:
        return self.store.list_plans(month_label=month_label)

    def get_plan(self, goal_id: str, month_label: str) -> MonthlyPlan:
        plan = self.store.get_plan(goal_id, month_label)
        if plan is None:
            raise NotFoundError(
                f"No plan for goal {goal_id} in {month_label}",
                entity_type="monthly_plan",
                entity_id=f"{goal_id}:{month_label}"
            )
        return plan

    def recompute_plans(self, month_label: str,
                        goal_ids: Optional[Iterable[str]] = None) -> list[MonthlyPlan]:
        """
        Refresh calculated fields of a month's existing plans.

        A full recompute from current state: running it twice, or out of
        order with another recompute, leaves the same result.
        """
        wanted = set(goal_ids) if goal_ids is not None else None
        now = self.clock()
        updated = []

        with self.store.transaction("recompute_plans"):
            for plan in self.store.list_plans(month_label=month_label):
                if wanted is not None and plan.goal_id not in wanted:
                    continue
                goal = self.store.get_goal(plan.goal_id)
                if goal is None or not goal.is_active:
                    continue
                refreshed = plan.with_requirement(self.requirement_for(goal, now), timestamp=now)
                self.store.save_plan(refreshed)
                updated.append(refreshed)

            if updated:
                self._publish_after_commit([p.goal_id for p in updated], month_label)

        self.logger.info("Plans recomputed", month_label=month_label, plans=len(updated))
        return updated

    def save_plans(self, plans: Iterable[MonthlyPlan]) -> list[MonthlyPlan]:
        """Persist edited plans in one transaction and announce the change."""
        plans = list(plans)
        with self.store.transaction("save_plans"):
            for plan in plans:
                self.store.save_plan(plan)
            for month in sorted({p.month_label for p in plans}):
                self._publish_after_commit([p.goal_id for p in plans if p.month_label == month], month)
        return plans

    def set_custom_amount(self, goal_id: str, month_label: str,
                          amount: Optional[float]) -> MonthlyPlan:
        """
        Set or clear a plan's custom amount.

        Setting an amount promotes the plan to protected and clears skipped.
        """
        if amount is not None and not math.isfinite(amount):
            raise ValidationError(
                f"Custom amount must be a finite number, got {amount}",
                field="custom_amount",
                value=amount
            )
        if amount is not None and amount < 0:
            raise NegativeAmountError(
                f"Custom amount cannot be negative: {amount}", amount=amount, field="custom_amount"
            )
        return self._edit(goal_id, month_label, lambda plan: plan.with_custom_amount(amount))

    def clear_custom_amount(self, goal_id: str, month_label: str) -> MonthlyPlan:
        """Drop the custom amount; the flex state is left as it is."""
        return self.set_custom_amount(goal_id, month_label, None)

    def set_protected(self, goal_id: str, month_label: str, protected: bool) -> MonthlyPlan:
        """Protect or unprotect a plan; unprotecting drops its custom amount."""
        def edit(plan: MonthlyPlan) -> MonthlyPlan:
            if protected:
                return plan.with_flex(FlexState.PROTECTED)
            return plan.with_custom_amount(None).with_flex(FlexState.FLEXIBLE)
        return self._edit(goal_id, month_label, edit)

    def set_skipped(self, goal_id: str, month_label: str, skipped: bool) -> MonthlyPlan:
        """Skip a plan for the month, or restore it."""
        def edit(plan: MonthlyPlan) -> MonthlyPlan:
            if skipped:
                return plan.with_flex(FlexState.SKIPPED)
            restored = FlexState.PROTECTED if plan.custom_amount is not None else FlexState.FLEXIBLE
            return plan.with_flex(restored)
        return self._edit(goal_id, month_label, edit)

    def reset_plan(self, goal_id: str, month_label: str) -> MonthlyPlan:
        return self._edit(goal_id, month_label, lambda plan: plan.reset())

    def roll_forward(self, from_month: str, to_month: str,
                     goals: Iterable[Goal]) -> list[MonthlyPlan]:
        """
        Create next month's plans, carrying over protection.

        Only newly created plans inherit the protected flag; custom amounts
        and skips apply to a single month and are not carried.
        """
        carried = 0
        result = []
        with self.store.transaction("roll_forward"):
            for goal in goals:
                plan, created = self._get_or_create(to_month, goal)
                previous = self.store.get_plan(goal.id, from_month)
                if created and previous is not None and previous.is_protected:
                    plan = plan.with_flex(FlexState.PROTECTED)
                    self.store.save_plan(plan)
                    carried += 1
                result.append(plan)

        self.logger.info(
            "Plans rolled forward",
            from_month=from_month,
            to_month=to_month,
            plans=len(result),
            protected_carried=carried
        )
        return result

    @staticmethod
    def validate_plan(plan: MonthlyPlan) -> list[str]:
        """Consistency problems of a plan; empty when valid."""
        issues = []
        if plan.required_monthly < 0:
            issues.append("Required monthly amount cannot be negative")
        if plan.remaining_amount < 0:
            issues.append("Remaining amount cannot be negative")
        if plan.months_remaining < 0:
            issues.append("Months remaining cannot be negative")
        if not plan.currency:
            issues.append("Currency is required")
        if plan.custom_amount is not None:
            if plan.custom_amount < 0:
                issues.append("Custom amount cannot be negative")
            elif plan.required_monthly > 0 and plan.custom_amount > plan.required_monthly * MAX_CUSTOM_RATIO:
                issues.append("Custom amount is unreasonably large compared to the requirement")
        if plan.flex_multiplier < 0:
            issues.append("Flex multiplier cannot be negative")
        return issues

    def _get_or_create(self, month_label: str, goal: Goal) -> tuple[MonthlyPlan, bool]:
        existing = self.store.get_plan(goal.id, month_label)
        if existing is not None:
            return existing, False

        now = self.clock()
        requirement = self.requirement_for(goal, now)
        plan = MonthlyPlan(
            id=str(uuid.uuid4()),
            goal_id=goal.id,
            month_label=month_label,
            currency=requirement.currency,
            required_monthly=requirement.required_monthly,
            remaining_amount=requirement.remaining_amount,
            months_remaining=requirement.months_remaining,
            status=requirement.status,
            created_at=now,
            last_calculated=now,
        )
        stored = self.store.insert_plan_if_absent(plan)
        created = stored.id == plan.id
        if created:
            self.logger.info(
                "Created monthly plan",
                goal_id=goal.id,
                month_label=month_label,
                required_monthly=plan.required_monthly,
                status=plan.status.value
            )
        return stored, created

    def _edit(self, goal_id: str, month_label: str,
              change: Callable[[MonthlyPlan], MonthlyPlan]) -> MonthlyPlan:
        with self.store.transaction("edit_plan"):
            plan = self.get_plan(goal_id, month_label)
            edited = change(plan)
            self.store.save_plan(edited)
            self._publish_after_commit([goal_id], month_label)

        self.logger.info(
            "Plan edited",
            goal_id=goal_id,
            month_label=month_label,
            flex_state=edited.flex_state.value,
            custom_amount=edited.custom_amount
        )
        return edited

    def _publish_after_commit(self, goal_ids: list[str], month_label: str) -> None:
        if self.event_bus is None:
            return
        event = PlanRecalculated(goal_ids=tuple(goal_ids), month_label=month_label)
        self.store.after_commit(lambda: self.event_bus.publish(event))
