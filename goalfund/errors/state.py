"""
Execution state error classifications.

Raised when an execution record transition is not allowed from its current
status, or when an undo is attempted after its grace window has closed.
"""

from datetime import datetime
from typing import Optional, Dict, Any


class StateError(Exception):
    """Base class for rejected state transitions."""

    def __init__(self, message: str, current_state: Optional[str] = None,
                 attempted_transition: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.current_state = current_state
        self.attempted_transition = attempted_transition
        self.context = context or {}
        self.recoverable = True


class AlreadyTrackingError(StateError):
    """Tracking was started for a month that is already executing or closed."""

    def __init__(self, message: str, month_label: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.month_label = month_label


class UndoExpiredError(StateError):
    """The undo grace window has closed (or the record is not undoable)."""

    def __init__(self, message: str, can_undo_until: Optional[datetime] = None,
                 attempted_at: Optional[datetime] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.can_undo_until = can_undo_until
        self.attempted_at = attempted_at


class InvalidTransitionError(StateError):
    """The requested transition is not defined for the current status."""
