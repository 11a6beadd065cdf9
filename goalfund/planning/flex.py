"""
Flex adjustment engine.

Scales the month's flexible requirements by a global multiplier while
protected goals keep their requirement (or custom amount) and skipped goals
drop to zero. The multiplier is stored on each plan instead of being folded
into ``custom_amount``, so applying the same multiplier twice yields the same
effective amounts.

``simulate`` is a read-only preview that additionally clamps flexible
amounts to a band around their requirement, redistributes what the band cut
off using one of several strategies, and estimates the impact on each goal.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import structlog

from ..config.defaults import FlexParams
from ..errors import ValidationError
from ..models import FlexState, MonthlyPlan, MonthlyRequirement

logger = structlog.get_logger(__name__)

# Net excess below this is not worth redistributing.
MIN_REDISTRIBUTION = 1.0


class FlexStrategy(str, Enum):
    """How simulated excess is redistributed among flexible goals."""
    BALANCED = "balanced"
    PRIORITIZE_URGENT = "prioritize_urgent"
    PRIORITIZE_LARGEST = "prioritize_largest"
    MINIMIZE_RISK = "minimize_risk"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_RISK_ORDER = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


@dataclass(frozen=True)
class AdjustmentImpact:
    """Effect of an adjusted amount on a goal."""
    change_amount: float
    change_percentage: float
    estimated_delay_months: Optional[int]     # None when nothing is contributed
    risk_level: RiskLevel


@dataclass(frozen=True)
class FlexAdjustment:
    """Simulated amount for one goal."""
    goal_id: str
    currency: str
    required_amount: float
    adjusted_amount: float
    flex_state: FlexState
    redistribution_amount: float
    impact: AdjustmentImpact


@dataclass(frozen=True)
class FlexSimulation:
    """Result of a flex preview."""
    multiplier: float
    strategy: FlexStrategy
    adjustments: tuple[FlexAdjustment, ...]

    @property
    def total_required(self) -> float:
        return sum(a.required_amount for a in self.adjustments)

    @property
    def total_adjusted(self) -> float:
        return sum(a.adjusted_amount for a in self.adjustments)

    @property
    def total_savings(self) -> float:
        return self.total_required - self.total_adjusted

    @property
    def goals_at_risk(self) -> list[str]:
        return [a.goal_id for a in self.adjustments if a.impact.risk_level == RiskLevel.HIGH]

    def adjustment(self, goal_id: str) -> Optional[FlexAdjustment]:
        for adjustment in self.adjustments:
            if adjustment.goal_id == goal_id:
                return adjustment
        return None


class FlexAdjustmentEngine:
    """Applies and previews flex adjustments over a month's plans."""

    def __init__(self, params: Optional[FlexParams] = None):
        self.params = params or FlexParams()
        self.logger = logger

    def validate_multiplier(self, multiplier: float, preview: bool = False) -> None:
        """
        Raises:
            ValidationError: If the multiplier is outside the allowed range
        """
        upper = self.params.preview_max_multiplier if preview else self.params.max_multiplier
        if not isinstance(multiplier, (int, float)) or math.isnan(multiplier) \
                or multiplier < 0 or multiplier > upper:
            raise ValidationError(
                f"Flex multiplier must be between 0 and {upper}, got {multiplier}",
                field="multiplier",
                value=multiplier
            )

    def apply(
        self,
        plans: Iterable[MonthlyPlan],
        multiplier: float,
        protected_ids: Iterable[str] = (),
        skipped_ids: Iterable[str] = (),
        preview: bool = False
    ) -> list[MonthlyPlan]:
        """
        Assign flex states and the multiplier to plans.

        A goal listed as skipped is skipped even if also protected. A plan
        with a custom amount is always protected unless skipped.

        Returns:
            New plan values, in input order
        """
        self.validate_multiplier(multiplier, preview=preview)
        protected = set(protected_ids)
        skipped = set(skipped_ids)

        adjusted = []
        for plan in plans:
            if plan.goal_id in skipped:
                state = FlexState.SKIPPED
            elif plan.goal_id in protected or plan.custom_amount is not None:
                state = FlexState.PROTECTED
            else:
                state = FlexState.FLEXIBLE
            adjusted.append(plan.with_flex(state, multiplier=multiplier))

        self.logger.debug(
            "Flex adjustment applied",
            multiplier=multiplier,
            protected=len(protected),
            skipped=len(skipped),
            plans=len(adjusted),
            preview=preview
        )
        return adjusted

    @staticmethod
    def effective_amounts(plans: Iterable[MonthlyPlan]) -> dict[str, float]:
        return {plan.goal_id: plan.effective_amount for plan in plans}

    @staticmethod
    def total_effective(plans: Iterable[MonthlyPlan]) -> float:
        return sum(plan.effective_amount for plan in plans)

    def simulate(
        self,
        requirements: Iterable[MonthlyRequirement],
        multiplier: float,
        protected_ids: Iterable[str] = (),
        skipped_ids: Iterable[str] = (),
        strategy: FlexStrategy = FlexStrategy.BALANCED
    ) -> FlexSimulation:
        """Preview a multiplier with clamping, redistribution and impact analysis."""
        self.validate_multiplier(multiplier, preview=True)
        protected = set(protected_ids)
        skipped = set(skipped_ids)
        requirements = list(requirements)

        amounts: dict[str, float] = {}
        states: dict[str, FlexState] = {}
        excess = 0.0
        deficit = 0.0

        for req in requirements:
            if req.goal_id in skipped:
                states[req.goal_id] = FlexState.SKIPPED
                amounts[req.goal_id] = 0.0
            elif req.goal_id in protected:
                states[req.goal_id] = FlexState.PROTECTED
                amounts[req.goal_id] = req.required_monthly
            else:
                states[req.goal_id] = FlexState.FLEXIBLE
                raw = req.required_monthly * multiplier
                low = req.required_monthly * self.params.min_adjusted_ratio
                high = req.required_monthly * self.params.max_adjusted_ratio
                clamped = max(low, min(high, raw))
                excess += max(0.0, raw - clamped)
                deficit += max(0.0, clamped - raw)
                amounts[req.goal_id] = clamped

        redistributed = self._redistribute(
            requirements, amounts, states, excess - deficit, strategy
        )

        adjustments = []
        for req in requirements:
            adjusted = amounts[req.goal_id] + redistributed.get(req.goal_id, 0.0)
            adjustments.append(FlexAdjustment(
                goal_id=req.goal_id,
                currency=req.currency,
                required_amount=req.required_monthly,
                adjusted_amount=adjusted,
                flex_state=states[req.goal_id],
                redistribution_amount=redistributed.get(req.goal_id, 0.0),
                impact=self.calculate_impact(req, adjusted),
            ))

        return FlexSimulation(multiplier=multiplier, strategy=strategy, adjustments=tuple(adjustments))

    def calculate_impact(self, requirement: MonthlyRequirement, adjusted: float) -> AdjustmentImpact:
        """Change, delay and risk of contributing ``adjusted`` instead of the requirement."""
        required = requirement.required_monthly
        change = adjusted - required
        change_pct = (change / required) * 100 if required > 0 else 0.0

        delay: Optional[int] = 0
        if change < 0:
            months = max(requirement.months_remaining, 1)
            if adjusted <= 0:
                delay = None
            else:
                delay = max(math.ceil(months * required / adjusted - 1e-9) - months, 0)

        return AdjustmentImpact(
            change_amount=change,
            change_percentage=change_pct,
            estimated_delay_months=delay,
            risk_level=self.risk_level(requirement, adjusted),
        )

    @staticmethod
    def risk_level(requirement: MonthlyRequirement, adjusted: float) -> RiskLevel:
        required = requirement.required_monthly
        if required <= 0:
            return RiskLevel.LOW
        reduction_pct = (required - adjusted) / required * 100
        if reduction_pct > 50 or requirement.months_remaining <= 2:
            return RiskLevel.HIGH
        if reduction_pct > 25 or requirement.months_remaining <= 4:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _redistribute(
        self,
        requirements: list[MonthlyRequirement],
        amounts: dict[str, float],
        states: dict[str, FlexState],
        net_excess: float,
        strategy: FlexStrategy
    ) -> dict[str, float]:
        """Extra amount per goal from spreading the net excess over flexible goals."""
        if net_excess <= MIN_REDISTRIBUTION:
            return {}

        ceiling_ratio = self.params.max_adjusted_ratio
        eligible = [
            req for req in requirements
            if states[req.goal_id] == FlexState.FLEXIBLE
            and amounts[req.goal_id] > 0
            and amounts[req.goal_id] < req.required_monthly * ceiling_ratio
        ]
        if not eligible:
            return {}

        def headroom(req: MonthlyRequirement) -> float:
            return req.required_monthly * ceiling_ratio - amounts[req.goal_id]

        extra: dict[str, float] = {}

        if strategy == FlexStrategy.BALANCED:
            share = net_excess / len(eligible)
            for req in eligible:
                extra[req.goal_id] = min(share, headroom(req))

        elif strategy == FlexStrategy.PRIORITIZE_LARGEST:
            total = sum(req.required_monthly for req in eligible)
            for req in eligible:
                extra[req.goal_id] = min(net_excess * req.required_monthly / total, headroom(req))

        else:
            if strategy == FlexStrategy.PRIORITIZE_URGENT:
                ordered = sorted(eligible, key=lambda r: (r.months_remaining, r.progress, r.goal_id))
            else:
                ordered = sorted(
                    eligible,
                    key=lambda r: (-_RISK_ORDER[self.risk_level(r, amounts[r.goal_id])], r.goal_id)
                )
            remaining = net_excess
            for req in ordered:
                if remaining <= MIN_REDISTRIBUTION:
                    break
                if strategy == FlexStrategy.MINIMIZE_RISK:
                    boost = 0.8 if self.risk_level(req, amounts[req.goal_id]) == RiskLevel.HIGH else 0.3
                else:
                    boost = 0.5
                increase = min(remaining, req.required_monthly * boost, headroom(req))
                extra[req.goal_id] = increase
                remaining -= increase

        return {goal_id: amount for goal_id, amount in extra.items() if amount > 0}
