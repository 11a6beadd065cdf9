"""
Budget calculator.

Turns one monthly budget into a per-goal schedule:

1. Feasibility: every goal's required monthly amount is converted into the
   budget currency; when the sum exceeds the budget, ranked suggestions are
   returned (increase the budget, then per goal with the latest deadline
   first: extend its deadline or reduce its target).
2. Scheduling: month by month, goals are funded earliest deadline first
   (ties broken by goal id), each receiving what it needs this month; any
   budget left over is spread pro-rata to what the goals still lack. The
   projection stops when every goal is funded or the horizon is reached.
3. Apply: the current month's amounts become custom amounts on the goals'
   plans and the goal set signature is recorded so later edits can be
   detected as a stale budget.

All amounts in schedules and feasibility results are in the budget
currency. Missing exchange rates raise ConversionUnavailableError; no
schedule is ever built from a guessed rate.
"""

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

import structlog

from ..config.defaults import BudgetParams
from ..currency.base import CurrencyConverter, normalize_currency
from ..errors import NegativeAmountError, ValidationError
from ..models import FlexState, Goal, MonthlyRequirement
from ..persistence.store import PlannerStore
from ..utils.time import Clock, add_months_to_label, format_timestamp, month_label, \
    parse_timestamp, utc_now
from .plans import MonthlyPlanService

logger = structlog.get_logger(__name__)

BUDGET_SETTING_KEY = "budget_application"


class SuggestionKind(str, Enum):
    INCREASE_BUDGET = "increase_budget"
    EXTEND_DEADLINE = "extend_deadline"
    REDUCE_TARGET = "reduce_target"


@dataclass(frozen=True)
class BudgetSuggestion:
    """A change that would make the budget feasible."""
    kind: SuggestionKind
    currency: str
    goal_id: Optional[str] = None
    amount: float = 0.0                      # increase_budget, in budget currency
    months: int = 0                          # extend_deadline
    from_target: Optional[float] = None      # reduce_target, in goal currency
    to_target: Optional[float] = None


@dataclass(frozen=True)
class FeasibilityResult:
    is_feasible: bool
    budget: float
    currency: str
    total_required: float
    minimum_budget: float
    required_by_goal: dict[str, float] = field(default_factory=dict)
    suggestions: tuple[BudgetSuggestion, ...] = ()

    @property
    def shortfall(self) -> float:
        return max(self.total_required - self.budget, 0.0)


@dataclass(frozen=True)
class ScheduleBlock:
    """Amount scheduled for one goal in one month, in budget currency."""
    goal_id: str
    month_label: str
    amount: float


@dataclass(frozen=True)
class GoalTimeline:
    """Span of months in which a goal receives money."""
    goal_id: str
    goal_name: str
    start_month: str
    end_month: str
    total_amount: float
    payment_count: int
    completes: bool


@dataclass(frozen=True)
class BudgetSchedule:
    budget: float
    currency: str
    start_month: str
    blocks: tuple[ScheduleBlock, ...]
    timelines: tuple[GoalTimeline, ...]
    completion_months: dict[str, str]
    unfunded: dict[str, float]
    months_projected: int

    @property
    def is_complete(self) -> bool:
        return not self.unfunded

    def amounts_for_month(self, label: str) -> dict[str, float]:
        return {b.goal_id: b.amount for b in self.blocks if b.month_label == label}

    def total_for_goal(self, goal_id: str) -> float:
        return sum(b.amount for b in self.blocks if b.goal_id == goal_id)


@dataclass(frozen=True)
class BudgetApplication:
    """Record of a budget applied to a month's plans."""
    month_label: str
    signature: str
    budget: float
    currency: str
    applied_at: datetime
    amounts: dict[str, float] = field(default_factory=dict)   # goal currency

    def to_dict(self) -> dict:
        return {
            "month_label": self.month_label,
            "signature": self.signature,
            "budget": self.budget,
            "currency": self.currency,
            "applied_at": format_timestamp(self.applied_at),
            "amounts": dict(self.amounts),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BudgetApplication":
        return cls(
            month_label=data["month_label"],
            signature=data["signature"],
            budget=data["budget"],
            currency=data["currency"],
            applied_at=parse_timestamp(data["applied_at"]),
            amounts=data.get("amounts", {}),
        )


def budget_signature(goals: Iterable[Goal], budget: float, currency: str) -> str:
    """Hash of the goal set (currency, target, deadline) and the budget."""
    parts = [
        f"{g.id}|{normalize_currency(g.currency)}|{g.target_amount:.8f}|{g.deadline.isoformat()}"
        for g in sorted(goals, key=lambda g: g.id)
    ]
    parts.append(f"budget|{budget:.8f}|{normalize_currency(currency)}")
    return hashlib.sha256(";".join(parts).encode()).hexdigest()


class BudgetCalculator:
    """Pure budget feasibility and scheduling."""

    def __init__(self, converter: CurrencyConverter, params: Optional[BudgetParams] = None,
                 clock: Clock = utc_now):
        self.converter = converter
        self.params = params or BudgetParams()
        self.clock = clock
        self.logger = logger

    def check_feasibility(
        self,
        requirements: Iterable[MonthlyRequirement],
        budget: float,
        currency: str,
        skipped_ids: Iterable[str] = ()
    ) -> FeasibilityResult:
        """
        Check whether the budget covers every goal's monthly requirement.

        Raises:
            NegativeAmountError: If the budget is negative
            ConversionUnavailableError: If a goal currency cannot be converted
        """
        self._validate_budget(budget)
        reqs = self._eligible(requirements, skipped_ids)
        rates = self._rates(reqs, currency)

        required = {r.goal_id: r.required_monthly * rates[r.goal_id] for r in reqs}
        total = sum(required.values())
        minimum = self._minimum_budget(reqs, rates)
        tolerance = self.params.tolerance

        if total <= budget + tolerance:
            return FeasibilityResult(
                is_feasible=True,
                budget=budget,
                currency=currency,
                total_required=total,
                minimum_budget=minimum,
                required_by_goal=required,
            )

        suggestions = [BudgetSuggestion(
            kind=SuggestionKind.INCREASE_BUDGET,
            currency=currency,
            amount=total - budget,
        )]

        if budget > 0:
            latest_first = sorted(reqs, key=lambda r: (r.deadline, r.goal_id), reverse=True)
            for req in latest_first:
                if required[req.goal_id] <= tolerance:
                    continue
                share = budget * required[req.goal_id] / total
                suggestions.extend(self._goal_suggestions(req, share, rates[req.goal_id], currency))

        self.logger.info(
            "Budget infeasible",
            budget=budget,
            currency=currency,
            total_required=total,
            suggestions=len(suggestions)
        )
        return FeasibilityResult(
            is_feasible=False,
            budget=budget,
            currency=currency,
            total_required=total,
            minimum_budget=minimum,
            required_by_goal=required,
            suggestions=tuple(suggestions),
        )

    def minimum_budget(self, requirements: Iterable[MonthlyRequirement], currency: str,
                       skipped_ids: Iterable[str] = ()) -> float:
        """
        Smallest constant budget that meets every deadline when funding
        earliest deadlines first.
        """
        reqs = self._eligible(requirements, skipped_ids)
        return self._minimum_budget(reqs, self._rates(reqs, currency))

    def generate_schedule(
        self,
        requirements: Iterable[MonthlyRequirement],
        budget: float,
        currency: str,
        start_month: Optional[str] = None,
        skipped_ids: Iterable[str] = ()
    ) -> BudgetSchedule:
        """
        Project the budget forward month by month.

        The same inputs always produce the same schedule.
        """
        self._validate_budget(budget)
        tolerance = self.params.tolerance
        reqs = self._eligible(requirements, skipped_ids)
        rates = self._rates(reqs, currency)
        start = start_month or month_label(self.clock())

        order = sorted(
            (r for r in reqs if r.remaining_amount * rates[r.goal_id] > tolerance),
            key=lambda r: (r.deadline, r.goal_id)
        )
        remaining = {r.goal_id: r.remaining_amount * rates[r.goal_id] for r in order}
        names = {r.goal_id: r.goal_name for r in order}

        blocks: list[ScheduleBlock] = []
        completion: dict[str, str] = {}
        months_projected = 0

        for step in range(self.params.horizon_months):
            if budget <= tolerance or all(v <= tolerance for v in remaining.values()):
                break

            label = add_months_to_label(start, step)
            months_projected += 1
            budget_left = budget
            allocated: dict[str, float] = {}

            for req in order:
                rem = remaining[req.goal_id]
                if rem <= tolerance or budget_left <= 0:
                    continue
                months_left = max(req.months_remaining - step, 1)
                amount = min(rem / months_left, budget_left, rem)
                allocated[req.goal_id] = amount
                budget_left -= amount

            if budget_left > tolerance:
                lacking = {
                    r.goal_id: remaining[r.goal_id] - allocated.get(r.goal_id, 0.0)
                    for r in order
                    if remaining[r.goal_id] - allocated.get(r.goal_id, 0.0) > tolerance
                }
                total_lacking = sum(lacking.values())
                if total_lacking > 0:
                    for goal_id, lack in lacking.items():
                        extra = lack if budget_left >= total_lacking else budget_left * lack / total_lacking
                        allocated[goal_id] = allocated.get(goal_id, 0.0) + extra

            for req in order:
                amount = allocated.get(req.goal_id, 0.0)
                if amount <= tolerance:
                    continue
                blocks.append(ScheduleBlock(goal_id=req.goal_id, month_label=label, amount=amount))
                remaining[req.goal_id] = max(remaining[req.goal_id] - amount, 0.0)
                if remaining[req.goal_id] <= tolerance and req.goal_id not in completion:
                    completion[req.goal_id] = label

        unfunded = {goal_id: rem for goal_id, rem in remaining.items() if rem > tolerance}
        schedule = BudgetSchedule(
            budget=budget,
            currency=currency,
            start_month=start,
            blocks=tuple(blocks),
            timelines=tuple(self._timelines(blocks, names, completion)),
            completion_months=completion,
            unfunded=unfunded,
            months_projected=months_projected,
        )

        self.logger.info(
            "Budget schedule generated",
            budget=budget,
            currency=currency,
            goals=len(order),
            months=months_projected,
            unfunded_goals=len(unfunded)
        )
        return schedule

    def _goal_suggestions(self, req: MonthlyRequirement, share: float, rate: float,
                          currency: str) -> list[BudgetSuggestion]:
        """Deadline extension and target reduction that fit a goal into its share."""
        suggestions = []
        months = max(req.months_remaining, 1)
        remaining_in_budget = req.remaining_amount * rate

        months_needed = math.ceil(remaining_in_budget / share - 1e-9)
        extension = months_needed - months
        if extension > 0:
            suggestions.append(BudgetSuggestion(
                kind=SuggestionKind.EXTEND_DEADLINE,
                currency=currency,
                goal_id=req.goal_id,
                months=extension,
            ))

        new_target = req.current_total + (share / rate) * months
        if new_target < req.target_amount - self.params.tolerance:
            suggestions.append(BudgetSuggestion(
                kind=SuggestionKind.REDUCE_TARGET,
                currency=req.currency,
                goal_id=req.goal_id,
                from_target=req.target_amount,
                to_target=new_target,
            ))

        return suggestions

    def _minimum_budget(self, reqs: list[MonthlyRequirement], rates: dict[str, float]) -> float:
        cumulative = 0.0
        minimum = 0.0
        for req in sorted(reqs, key=lambda r: (r.deadline, r.goal_id)):
            remaining = req.remaining_amount * rates[req.goal_id]
            if remaining <= 0:
                continue
            cumulative += remaining
            minimum = max(minimum, cumulative / max(req.months_remaining, 1))
        return minimum

    @staticmethod
    def _timelines(blocks: list[ScheduleBlock], names: dict[str, str],
                   completion: dict[str, str]) -> list[GoalTimeline]:
        spans: dict[str, list[ScheduleBlock]] = {}
        for block in blocks:
            spans.setdefault(block.goal_id, []).append(block)

        timelines = [
            GoalTimeline(
                goal_id=goal_id,
                goal_name=names.get(goal_id, goal_id),
                start_month=goal_blocks[0].month_label,
                end_month=goal_blocks[-1].month_label,
                total_amount=sum(b.amount for b in goal_blocks),
                payment_count=len(goal_blocks),
                completes=goal_id in completion,
            )
            for goal_id, goal_blocks in spans.items()
        ]
        return sorted(timelines, key=lambda t: (t.start_month, t.goal_id))

    def _rates(self, reqs: list[MonthlyRequirement], currency: str) -> dict[str, float]:
        """Goal currency -> budget currency rate per goal."""
        by_currency: dict[str, float] = {}
        rates = {}
        for req in reqs:
            code = normalize_currency(req.currency)
            if code not in by_currency:
                by_currency[code] = self.converter.fetch_rate(code, currency)
            rates[req.goal_id] = by_currency[code]
        return rates

    @staticmethod
    def _eligible(requirements: Iterable[MonthlyRequirement],
                  skipped_ids: Iterable[str]) -> list[MonthlyRequirement]:
        skipped = set(skipped_ids)
        return [r for r in requirements if r.goal_id not in skipped]

    @staticmethod
    def _validate_budget(budget: float) -> None:
        if not math.isfinite(budget):
            raise ValidationError(f"Budget must be a finite number, got {budget}",
                                  field="budget", value=budget)
        if budget < 0:
            raise NegativeAmountError(f"Budget cannot be negative: {budget}", amount=budget, field="budget")


class BudgetService:
    """Applies budget schedules to monthly plans and detects stale budgets."""

    def __init__(self, store: PlannerStore, plan_service: MonthlyPlanService,
                 calculator: BudgetCalculator, clock: Clock = utc_now):
        self.store = store
        self.plan_service = plan_service
        self.calculator = calculator
        self.clock = clock
        self.logger = logger

    def apply(self, goals: Iterable[Goal], budget: float, currency: str,
              month: Optional[str] = None) -> BudgetApplication:
        """
        Write this month's scheduled amounts as custom amounts.

        Skipped goals keep their skip. Every other active goal gets a custom
        amount (zero when the schedule gives it nothing this month) and is
        thereby protected. All conversions happen before anything is written.

        Raises:
            ConversionUnavailableError: If any rate is missing; nothing is written
        """
        target_month = month or month_label(self.clock())
        goals = [g for g in goals if g.is_active]

        # Rates are resolved before the write transaction opens.
        skipped = {p.goal_id for p in self.plan_service.plans_for_month(target_month)
                   if p.flex_state == FlexState.SKIPPED}
        funded = [g for g in goals if g.id not in skipped]

        requirements = self.plan_service.requirements_for(funded)
        schedule = self.calculator.generate_schedule(
            requirements, budget, currency, start_month=target_month
        )
        scheduled = schedule.amounts_for_month(target_month)

        amounts: dict[str, float] = {}
        for req in requirements:
            if req.is_completed:
                continue
            in_budget = scheduled.get(req.goal_id, 0.0)
            rate = self.calculator.converter.fetch_rate(req.currency, currency)
            amounts[req.goal_id] = in_budget / rate

        with self.store.transaction("apply_budget"):
            plans = self.plan_service.get_or_create_plans(target_month, goals)
            skipped_now = {p.goal_id for p in plans if p.flex_state == FlexState.SKIPPED}
            amounts = {goal_id: amount for goal_id, amount in amounts.items()
                       if goal_id not in skipped_now}

            for goal_id, amount in amounts.items():
                self.plan_service.set_custom_amount(goal_id, target_month, amount)

            application = BudgetApplication(
                month_label=target_month,
                signature=budget_signature(goals, budget, currency),
                budget=budget,
                currency=normalize_currency(currency),
                applied_at=self.clock(),
                amounts=amounts,
            )
            self.store.set_setting(BUDGET_SETTING_KEY, application.to_dict())

        self.logger.info(
            "Budget applied",
            month_label=target_month,
            budget=budget,
            currency=currency,
            goals=len(amounts)
        )
        return application

    def current_application(self) -> Optional[BudgetApplication]:
        data = self.store.get_setting(BUDGET_SETTING_KEY)
        return BudgetApplication.from_dict(data) if data else None

    def is_stale(self, goals: Iterable[Goal], month: Optional[str] = None) -> bool:
        """
        True when the applied budget no longer matches the goals or month.

        A budget that was never applied is not stale.
        """
        application = self.current_application()
        if application is None:
            return False

        current_month = month or month_label(self.clock())
        if application.month_label != current_month:
            return True

        active = [g for g in goals if g.is_active]
        return budget_signature(active, application.budget, application.currency) != application.signature

    def acknowledge(self, goals: Iterable[Goal], month: Optional[str] = None) -> Optional[BudgetApplication]:
        """Accept the current goal set without changing any plan."""
        application = self.current_application()
        if application is None:
            return None

        active = [g for g in goals if g.is_active]
        updated = BudgetApplication(
            month_label=month or month_label(self.clock()),
            signature=budget_signature(active, application.budget, application.currency),
            budget=application.budget,
            currency=application.currency,
            applied_at=application.applied_at,
            amounts=application.amounts,
        )
        with self.store.transaction("acknowledge_budget"):
            self.store.set_setting(BUDGET_SETTING_KEY, updated.to_dict())
        return updated
