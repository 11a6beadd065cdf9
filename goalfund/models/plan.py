"""
Monthly planning data models.

A MonthlyPlan holds one goal's requirement for one month together with the
user's overrides. The effective amount is always derived, never stored, so
re-applying the same flex multiplier cannot drift the plan.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional


class FlexState(str, Enum):
    """How a plan reacts to flex adjustments."""
    FLEXIBLE = "flexible"
    PROTECTED = "protected"
    SKIPPED = "skipped"


class RequirementStatus(str, Enum):
    """Funding status of a goal relative to its deadline."""
    COMPLETED = "completed"
    ON_TRACK = "on_track"
    ATTENTION = "attention"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MonthlyRequirement:
    """Derived monthly contribution requirement for a goal."""

    goal_id: str
    goal_name: str
    currency: str
    target_amount: float
    current_total: float
    remaining_amount: float
    months_remaining: int
    required_monthly: float
    progress: float
    deadline: date
    days_remaining: int
    status: RequirementStatus

    @property
    def is_completed(self) -> bool:
        return self.status == RequirementStatus.COMPLETED


@dataclass(frozen=True)
class MonthlyPlan:
    """Per-goal, per-month plan with user overrides."""

    id: str
    goal_id: str
    month_label: str
    currency: str
    required_monthly: float
    remaining_amount: float
    months_remaining: int
    status: RequirementStatus = RequirementStatus.ON_TRACK
    flex_state: FlexState = FlexState.FLEXIBLE
    custom_amount: Optional[float] = None
    flex_multiplier: float = 1.0
    created_at: Optional[datetime] = None
    last_calculated: Optional[datetime] = None

    @property
    def is_skipped(self) -> bool:
        return self.flex_state == FlexState.SKIPPED

    @property
    def is_protected(self) -> bool:
        return self.flex_state == FlexState.PROTECTED

    @property
    def effective_amount(self) -> float:
        """Amount the user is expected to contribute this month."""
        if self.is_skipped:
            return 0.0
        if self.custom_amount is not None:
            return self.custom_amount
        if self.is_protected:
            return self.required_monthly
        return self.required_monthly * self.flex_multiplier

    def with_requirement(self, requirement: MonthlyRequirement,
                         timestamp: Optional[datetime] = None) -> "MonthlyPlan":
        """Refresh calculated fields while keeping user overrides."""
        return replace(
            self,
            currency=requirement.currency,
            required_monthly=requirement.required_monthly,
            remaining_amount=requirement.remaining_amount,
            months_remaining=requirement.months_remaining,
            status=requirement.status,
            last_calculated=timestamp,
        )

    def with_custom_amount(self, amount: Optional[float]) -> "MonthlyPlan":
        """Set a custom amount; setting one promotes the plan to protected."""
        if amount is None:
            return replace(self, custom_amount=None)
        return replace(self, custom_amount=amount, flex_state=FlexState.PROTECTED)

    def with_flex(self, flex_state: FlexState,
                  multiplier: Optional[float] = None) -> "MonthlyPlan":
        return replace(
            self,
            flex_state=flex_state,
            flex_multiplier=self.flex_multiplier if multiplier is None else multiplier,
        )

    def reset(self) -> "MonthlyPlan":
        """Drop every user override."""
        return replace(self, flex_state=FlexState.FLEXIBLE, custom_amount=None,
                       flex_multiplier=1.0)
