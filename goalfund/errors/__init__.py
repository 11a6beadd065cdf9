"""
Error classification system for the planning engine.

This module provides a structured exception hierarchy for validation, state,
degradation and system failures encountered while allocating balances,
planning monthly contributions and tracking execution.
"""

from .validation import (
    ValidationError,
    NegativeAmountError,
    ExceedsAvailableBalanceError,
    NotFoundError,
)
from .state import (
    StateError,
    AlreadyTrackingError,
    UndoExpiredError,
    InvalidTransitionError,
)
from .system_failures import (
    SystemFailureError,
    PersistenceError,
    RecomputeError,
)
from .recovery import (
    GracefulDegradationError,
    ConversionUnavailableError,
)

__all__ = [
    # Validation Errors
    "ValidationError",
    "NegativeAmountError",
    "ExceedsAvailableBalanceError",
    "NotFoundError",
    # State Errors
    "StateError",
    "AlreadyTrackingError",
    "UndoExpiredError",
    "InvalidTransitionError",
    # System Failures
    "SystemFailureError",
    "PersistenceError",
    "RecomputeError",
    # Recovery Categories
    "GracefulDegradationError",
    "ConversionUnavailableError",
]
