"""Goal and asset data models."""

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Optional


class GoalStatus(str, Enum):
    """Goal lifecycle status."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Goal:
    """A savings goal with a target amount, currency and deadline."""

    id: str
    name: str
    currency: str
    target_amount: float
    deadline: date
    start_date: date
    status: GoalStatus = GoalStatus.ACTIVE
    emoji: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == GoalStatus.ACTIVE

    def with_status(self, status: GoalStatus) -> "Goal":
        return replace(self, status=status)


@dataclass(frozen=True)
class Asset:
    """
    A holding whose balance can be apportioned across goals.

    The on-chain part of the balance is supplied by an external provider and
    is read-only here; the manual part is user-entered.
    """

    id: str
    currency: str
    manual_amount: float = 0.0
    on_chain_amount: float = 0.0
    chain: Optional[str] = None
    address: Optional[str] = None
    symbol: Optional[str] = None

    @property
    def current_amount(self) -> float:
        return self.manual_amount + self.on_chain_amount

    @property
    def has_on_chain_source(self) -> bool:
        return bool(self.chain and self.address)

    def with_manual_amount(self, amount: float) -> "Asset":
        return replace(self, manual_amount=amount)

    def with_on_chain_amount(self, amount: float) -> "Asset":
        return replace(self, on_chain_amount=amount)
