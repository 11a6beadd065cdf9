"""
Input validation error classifications.

These exceptions are raised synchronously for caller mistakes: invalid
amounts, allocations that would break the conservation invariant and
references to entities that do not exist. Nothing is mutated when one of
these is raised.
"""

from typing import Optional, Dict, Any


class ValidationError(Exception):
    """Base class for rejected input. The operation had no effect."""

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Any = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.field = field
        self.value = value
        self.context = context or {}
        self.recoverable = True


class NegativeAmountError(ValidationError):
    """An amount that must be non-negative was negative."""

    def __init__(self, message: str, amount: Optional[float] = None, **kwargs):
        kwargs.setdefault("value", amount)
        super().__init__(message, **kwargs)
        self.amount = amount


class ExceedsAvailableBalanceError(ValidationError):
    """Allocating the amount would exceed the asset's current balance."""

    def __init__(self, message: str, attempted: float = 0.0,
                 available: float = 0.0, asset_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.attempted = attempted
        self.available = available
        self.asset_id = asset_id


class NotFoundError(Exception):
    """A referenced entity does not exist."""

    def __init__(self, message: str, entity_type: Optional[str] = None,
                 entity_id: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.context = context or {}
        self.recoverable = True
