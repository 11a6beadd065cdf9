"""
Monthly requirement calculation.

required_monthly = max(target - allocated, 0) / max(months_remaining, 1)

where months_remaining counts whole calendar months until the deadline.
Status is assigned from the first matching rule:

1. allocated >= target                                  -> completed
2. fewer than ``critical_days`` left and progress below
   ``critical_progress`` (overdue goals included)       -> critical
3. progress behind the linear pace from start to deadline -> attention
4. otherwise                                            -> on_track
"""

from datetime import date, datetime
from typing import Iterable, Optional

from ..config.defaults import RequirementParams
from ..models import Goal, MonthlyRequirement, RequirementStatus
from ..utils.time import Clock, days_between, months_between, utc_now


class RequirementCalculator:
    """Derives monthly requirements from goals and their allocated totals."""

    def __init__(self, params: Optional[RequirementParams] = None, clock: Clock = utc_now):
        self.params = params or RequirementParams()
        self.clock = clock

    def calculate(self, goal: Goal, allocated_total: float,
                  now: Optional[datetime] = None) -> MonthlyRequirement:
        """
        Calculate the requirement for one goal.

        Args:
            goal: Goal to calculate
            allocated_total: Sum of allocations to the goal, in goal currency
            now: Evaluation time, defaults to the injected clock

        Returns:
            MonthlyRequirement for the goal
        """
        today = (now or self.clock()).date()
        target = goal.target_amount
        remaining = max(target - allocated_total, 0.0)
        months = months_between(today, goal.deadline)
        days = days_between(today, goal.deadline)
        progress = min(allocated_total / target, 1.0) if target > 0 else 1.0

        if allocated_total >= target:
            required = 0.0
            status = RequirementStatus.COMPLETED
        else:
            required = remaining / max(months, 1)
            status = self.status_for(progress, days, self.expected_progress(goal, today))

        return MonthlyRequirement(
            goal_id=goal.id,
            goal_name=goal.name,
            currency=goal.currency,
            target_amount=target,
            current_total=allocated_total,
            remaining_amount=remaining,
            months_remaining=months,
            required_monthly=required,
            progress=progress,
            deadline=goal.deadline,
            days_remaining=days,
            status=status,
        )

    def calculate_all(self, goals: Iterable[Goal], allocated_totals: dict[str, float],
                      now: Optional[datetime] = None) -> list[MonthlyRequirement]:
        now = now or self.clock()
        return [self.calculate(goal, allocated_totals.get(goal.id, 0.0), now) for goal in goals]

    def status_for(self, progress: float, days_remaining: int,
                   expected_progress: float) -> RequirementStatus:
        """Status of an unfinished goal."""
        if days_remaining < self.params.critical_days and progress < self.params.critical_progress:
            return RequirementStatus.CRITICAL
        if progress < expected_progress - self.params.pace_tolerance:
            return RequirementStatus.ATTENTION
        return RequirementStatus.ON_TRACK

    @staticmethod
    def expected_progress(goal: Goal, today: date) -> float:
        """Fraction of the goal a linear saver would have reached by today."""
        total_days = days_between(goal.start_date, goal.deadline)
        if total_days <= 0:
            return 1.0
        elapsed = days_between(goal.start_date, today)
        return min(max(elapsed / total_days, 0.0), 1.0)
