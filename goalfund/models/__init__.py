"""
Domain data models.

Immutable data structures for goals, assets, allocations, monthly plans and
execution records. Updates produce new values which are then persisted.
"""

from .allocation import Allocation, AllocationHistoryEntry, AllocationStatus
from .execution import (
    CompletedExecution,
    Contribution,
    ExecutionGoalSnapshot,
    ExecutionRecord,
    ExecutionSnapshot,
    ExecutionStatus,
)
from .goal import Asset, Goal, GoalStatus
from .plan import FlexState, MonthlyPlan, MonthlyRequirement, RequirementStatus

__all__ = [
    "Allocation",
    "AllocationHistoryEntry",
    "AllocationStatus",
    "Asset",
    "CompletedExecution",
    "Contribution",
    "ExecutionGoalSnapshot",
    "ExecutionRecord",
    "ExecutionSnapshot",
    "ExecutionStatus",
    "FlexState",
    "Goal",
    "GoalStatus",
    "MonthlyPlan",
    "MonthlyRequirement",
    "RequirementStatus",
]
