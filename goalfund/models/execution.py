"""
Execution tracking data models.

An ExecutionRecord follows one month through draft -> executing -> closed.
The snapshot captured when tracking starts and the CompletedExecution rows
written at completion are frozen: later goal or plan edits never touch them.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..utils.time import format_timestamp, parse_timestamp
from .plan import FlexState


class ExecutionStatus(str, Enum):
    """Execution record lifecycle states."""
    DRAFT = "draft"
    EXECUTING = "executing"
    CLOSED = "closed"


@dataclass(frozen=True)
class ExecutionGoalSnapshot:
    """Frozen per-goal figures captured when tracking starts."""

    goal_id: str
    goal_name: str
    planned_amount: float
    currency: str
    flex_state: FlexState
    required_amount: float = 0.0

    @property
    def is_skipped(self) -> bool:
        return self.flex_state == FlexState.SKIPPED

    @property
    def is_protected(self) -> bool:
        return self.flex_state == FlexState.PROTECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "goal_name": self.goal_name,
            "planned_amount": self.planned_amount,
            "currency": self.currency,
            "flex_state": self.flex_state.value,
            "required_amount": self.required_amount,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionGoalSnapshot":
        return cls(
            goal_id=data["goal_id"],
            goal_name=data["goal_name"],
            planned_amount=data["planned_amount"],
            currency=data["currency"],
            flex_state=FlexState(data["flex_state"]),
            required_amount=data.get("required_amount", 0.0),
        )


@dataclass(frozen=True)
class ExecutionSnapshot:
    """Immutable copy of the month's plan at the moment tracking started."""

    captured_at: datetime
    goals: tuple[ExecutionGoalSnapshot, ...]

    @property
    def total_planned(self) -> float:
        return sum(goal.planned_amount for goal in self.goals)

    @property
    def goal_ids(self) -> list[str]:
        return [goal.goal_id for goal in self.goals]

    def goal(self, goal_id: str) -> Optional[ExecutionGoalSnapshot]:
        for entry in self.goals:
            if entry.goal_id == goal_id:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "captured_at": format_timestamp(self.captured_at),
            "total_planned": self.total_planned,
            "goals": [goal.to_dict() for goal in self.goals],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionSnapshot":
        return cls(
            captured_at=parse_timestamp(data["captured_at"]),
            goals=tuple(ExecutionGoalSnapshot.from_dict(g) for g in data.get("goals", [])),
        )


@dataclass(frozen=True)
class ExecutionRecord:
    """Execution state of a single month."""

    id: str
    month_label: str
    status: ExecutionStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    can_undo_until: Optional[datetime] = None
    goal_ids: tuple[str, ...] = ()
    snapshot: Optional[ExecutionSnapshot] = None

    @property
    def is_executing(self) -> bool:
        return self.status == ExecutionStatus.EXECUTING

    @property
    def is_closed(self) -> bool:
        return self.status == ExecutionStatus.CLOSED

    def can_undo(self, now: datetime) -> bool:
        """Undo is allowed strictly before can_undo_until."""
        return self.can_undo_until is not None and now < self.can_undo_until

    def with_status(self, status: ExecutionStatus, **changes: Any) -> "ExecutionRecord":
        return replace(self, status=status, **changes)


@dataclass(frozen=True)
class CompletedExecution:
    """Per-goal fulfilment frozen at the moment a month was marked complete."""

    record_id: str
    goal_id: str
    goal_name: str
    currency: str
    planned_amount: float
    contributed_amount: float
    completed_at: datetime
    id: Optional[int] = None

    @property
    def is_fulfilled(self) -> bool:
        return self.contributed_amount >= self.planned_amount


@dataclass(frozen=True)
class Contribution:
    """Money moved towards a goal from an asset."""

    id: str
    goal_id: str
    asset_id: str
    amount: float
    exchange_rate: float
    amount_in_goal_currency: float
    timestamp: datetime
    month_label: str
    source: str = "manual"
    execution_record_id: Optional[str] = None
