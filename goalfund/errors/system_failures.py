"""
System failure error classifications for unrecoverable errors.

These exceptions represent failures of the underlying storage or background
machinery. The enclosing transaction is rolled back before they propagate.
"""

from typing import Optional, Dict, Any


class SystemFailureError(Exception):
    """Base class for unrecoverable system failures."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class PersistenceError(SystemFailureError):
    """Database persistence failures."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.target = target


class RecomputeError(SystemFailureError):
    """Background plan recomputation failed."""

    def __init__(self, message: str, month_label: Optional[str] = None,
                 goal_ids: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.month_label = month_label
        self.goal_ids = goal_ids or []
