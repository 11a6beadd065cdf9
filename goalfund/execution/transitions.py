"""
Execution record transitions.

draft --start_tracking--> executing --mark_complete--> closed
draft <-undo_start_tracking-- executing <-undo_completion-- closed

Undo transitions are only allowed strictly before the record's
can_undo_until. Starting tracking and marking complete open a new undo
window; a window of zero hours disables undo.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

import structlog

from ..errors import InvalidTransitionError, UndoExpiredError
from ..logging.config import get_state_logger, log_state_transition
from ..models import ExecutionRecord, ExecutionStatus

logger = structlog.get_logger(__name__)
state_logger = get_state_logger(__name__)


class ExecutionTrigger(str, Enum):
    START_TRACKING = "start_tracking"
    MARK_COMPLETE = "mark_complete"
    UNDO_START_TRACKING = "undo_start_tracking"
    UNDO_COMPLETION = "undo_completion"


TRANSITIONS: dict[ExecutionTrigger, tuple[ExecutionStatus, ExecutionStatus]] = {
    ExecutionTrigger.START_TRACKING: (ExecutionStatus.DRAFT, ExecutionStatus.EXECUTING),
    ExecutionTrigger.MARK_COMPLETE: (ExecutionStatus.EXECUTING, ExecutionStatus.CLOSED),
    ExecutionTrigger.UNDO_START_TRACKING: (ExecutionStatus.EXECUTING, ExecutionStatus.DRAFT),
    ExecutionTrigger.UNDO_COMPLETION: (ExecutionStatus.CLOSED, ExecutionStatus.EXECUTING),
}

UNDO_TRIGGERS = frozenset({ExecutionTrigger.UNDO_START_TRACKING, ExecutionTrigger.UNDO_COMPLETION})


class ExecutionTransitionHandler:
    """Validates and applies execution record transitions."""

    def __init__(self, undo_grace_period_hours: float = 24.0):
        self.undo_grace_period_hours = undo_grace_period_hours
        self.logger = logger

    def undo_deadline(self, now: datetime) -> Optional[datetime]:
        """End of the undo window opened at now, None when undo is disabled."""
        if self.undo_grace_period_hours <= 0:
            return None
        return now + timedelta(hours=self.undo_grace_period_hours)

    def validate(self, record: ExecutionRecord, trigger: ExecutionTrigger, now: datetime) -> None:
        """
        Check that a trigger may fire for a record.

        Raises:
            InvalidTransitionError: If the record is not in the trigger's source status
            UndoExpiredError: If an undo is attempted at or after can_undo_until
        """
        source, target = TRANSITIONS[trigger]
        if record.status != source:
            raise InvalidTransitionError(
                f"Cannot {trigger.value} from {record.status.value}",
                current_state=record.status.value,
                attempted_transition=target.value,
                context={"record_id": record.id, "month_label": record.month_label}
            )

        if trigger in UNDO_TRIGGERS and not record.can_undo(now):
            raise UndoExpiredError(
                f"Undo window for {record.month_label} has closed",
                can_undo_until=record.can_undo_until,
                attempted_at=now,
                current_state=record.status.value,
                attempted_transition=target.value,
                context={"record_id": record.id, "month_label": record.month_label}
            )

    def apply(self, record: ExecutionRecord, trigger: ExecutionTrigger,
              now: datetime, **changes) -> ExecutionRecord:
        """
        Validate and apply a transition.

        Args:
            record: Record to transition
            trigger: Transition to fire
            now: Transition time
            **changes: Extra fields to set on the new record (e.g. snapshot)

        Returns:
            New record in the target status
        """
        try:
            self.validate(record, trigger, now)
        except (InvalidTransitionError, UndoExpiredError) as e:
            self.logger.warning(
                "Execution transition rejected",
                record_id=record.id,
                month_label=record.month_label,
                current_state=record.status.value,
                trigger=trigger.value,
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        _, target = TRANSITIONS[trigger]

        if trigger == ExecutionTrigger.START_TRACKING:
            fields = dict(started_at=now, completed_at=None, can_undo_until=self.undo_deadline(now))
        elif trigger == ExecutionTrigger.MARK_COMPLETE:
            fields = dict(completed_at=now, can_undo_until=self.undo_deadline(now))
        elif trigger == ExecutionTrigger.UNDO_START_TRACKING:
            fields = dict(started_at=None, can_undo_until=None, snapshot=None, goal_ids=())
        else:
            fields = dict(completed_at=None, can_undo_until=None)

        fields.update(changes)
        updated = record.with_status(target, **fields)

        log_state_transition(
            state_logger,
            record_id=record.id,
            month_label=record.month_label,
            from_state=record.status.value,
            to_state=target.value,
            trigger=trigger.value,
            context={"can_undo_until": str(updated.can_undo_until) if updated.can_undo_until else None}
        )
        return updated
