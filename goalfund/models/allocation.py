"""Allocation ledger data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Allocation:
    """Portion of an asset's balance assigned to a goal, in asset currency."""

    asset_id: str
    goal_id: str
    amount: float
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class AllocationHistoryEntry:
    """Immutable audit entry recording an allocation's amount at a point in time."""

    asset_id: str
    goal_id: str
    amount: float
    timestamp: datetime
    month_label: str
    id: Optional[int] = None


@dataclass(frozen=True)
class AllocationStatus:
    """How much of an asset's balance is allocated."""

    asset_id: str
    currency: str
    total_balance: float
    total_allocated: float
    epsilon: float = 1e-7

    @property
    def delta(self) -> float:
        """Balance minus allocations; negative when over-allocated."""
        return self.total_balance - self.total_allocated

    @property
    def unallocated(self) -> float:
        return max(self.delta, 0.0)

    @property
    def is_fully_allocated(self) -> bool:
        return abs(self.delta) <= self.epsilon

    @property
    def is_over_allocated(self) -> bool:
        # Possible only after the asset balance shrinks below its allocations.
        return self.delta < -self.epsilon
