"""
Allocation ledger.

Apportions each asset's balance across goals. For every asset the sum of its
allocations never exceeds the asset's current balance at the moment of a
write; the check and the write happen in the same transaction. Every change
larger than epsilon is recorded in the allocation history, including a
zero-amount entry when an allocation is removed.
"""

import math
from datetime import datetime
from typing import Optional

from ..config.defaults import LedgerParams
from ..currency.base import CurrencyConverter
from ..errors import (
    ExceedsAvailableBalanceError,
    NegativeAmountError,
    NotFoundError,
    ValidationError,
)
from ..events.bus import AllocationChanged, EventBus
from ..logging.config import get_ledger_logger, log_allocation_change
from ..models import (
    Allocation,
    AllocationHistoryEntry,
    AllocationStatus,
    Asset,
)
from ..persistence.store import PlannerStore
from ..utils.time import Clock, month_label, utc_now

ledger_logger = get_ledger_logger(__name__)


class AllocationLedger:
    """Validated mutations of the (asset, goal) allocation table."""

    def __init__(
        self,
        store: PlannerStore,
        params: Optional[LedgerParams] = None,
        event_bus: Optional[EventBus] = None,
        clock: Clock = utc_now
    ):
        self.store = store
        self.params = params or LedgerParams()
        self.event_bus = event_bus
        self.clock = clock
        self.logger = ledger_logger

    @property
    def epsilon(self) -> float:
        return self.params.epsilon

    def set_allocation(self, asset_id: str, goal_id: str, amount: float) -> Optional[Allocation]:
        """
        Allocate an amount of an asset to a goal, replacing any previous amount.

        Args:
            asset_id: Asset to allocate from
            goal_id: Goal to allocate to
            amount: New amount in asset currency; zero removes the allocation

        Returns:
            The stored allocation, or None when the amount removed it

        Raises:
            NegativeAmountError: If amount < 0
            ValidationError: If amount is not a finite number
            ExceedsAvailableBalanceError: If other allocations plus amount exceed the balance
            NotFoundError: If the asset or goal does not exist
        """
        self._require_finite(amount, "amount")
        if amount < 0:
            raise NegativeAmountError(
                f"Allocation amount cannot be negative: {amount}",
                amount=amount,
                field="amount"
            )

        with self.store.transaction("set_allocation"):
            asset = self._require_asset(asset_id)
            self._require_goal(goal_id)

            allocations = self.store.allocations_for_asset(asset_id)
            old_amount = sum(a.amount for a in allocations if a.goal_id == goal_id)
            other_total = sum(a.amount for a in allocations if a.goal_id != goal_id)
            self._check_balance(asset, other_total + amount)

            now = self.clock()
            if amount <= self.epsilon:
                self.store.delete_allocation(asset_id, goal_id)
                stored = None
            else:
                stored = Allocation(asset_id=asset_id, goal_id=goal_id, amount=amount, updated_at=now)
                self.store.upsert_allocation(stored)

            changed = self._record_change(asset_id, goal_id, old_amount, amount if stored else 0.0,
                                          now, "set_allocation")
            if changed:
                self._publish_after_commit(asset_id, [goal_id])

        return stored

    def remove_allocation(self, asset_id: str, goal_id: str) -> bool:
        """
        Remove an allocation.

        Returns:
            True if an allocation existed
        """
        with self.store.transaction("remove_allocation"):
            existing = self.store.get_allocation(asset_id, goal_id)
            if existing is None:
                return False

            self.store.delete_allocation(asset_id, goal_id)
            if self._record_change(asset_id, goal_id, existing.amount, 0.0, self.clock(),
                                   "remove_allocation"):
                self._publish_after_commit(asset_id, [goal_id])

        return True

    def bulk_update(self, asset_id: str, amounts: dict[str, float]) -> list[Allocation]:
        """
        Replace an asset's complete allocation set atomically.

        Goals missing from ``amounts`` lose their allocation. Everything is
        validated before anything is written.

        Returns:
            The allocations stored for the asset afterwards
        """
        for goal_id, amount in amounts.items():
            self._require_finite(amount, goal_id)
            if amount < 0:
                raise NegativeAmountError(
                    f"Allocation amount for goal {goal_id} cannot be negative: {amount}",
                    amount=amount,
                    field=goal_id
                )

        with self.store.transaction("bulk_update"):
            asset = self._require_asset(asset_id)
            for goal_id in amounts:
                self._require_goal(goal_id)
            self._check_balance(asset, sum(amounts.values()))

            previous = {a.goal_id: a.amount for a in self.store.allocations_for_asset(asset_id)}
            now = self.clock()

            for goal_id in previous:
                if goal_id not in amounts:
                    self.store.delete_allocation(asset_id, goal_id)

            new_amounts: dict[str, float] = {}
            for goal_id, amount in amounts.items():
                if amount <= self.epsilon:
                    self.store.delete_allocation(asset_id, goal_id)
                    new_amounts[goal_id] = 0.0
                else:
                    self.store.upsert_allocation(
                        Allocation(asset_id=asset_id, goal_id=goal_id, amount=amount, updated_at=now)
                    )
                    new_amounts[goal_id] = amount

            changed_goals = [
                goal_id
                for goal_id in sorted(set(previous) | set(new_amounts))
                if self._record_change(asset_id, goal_id, previous.get(goal_id, 0.0),
                                       new_amounts.get(goal_id, 0.0), now, "bulk_update")
            ]
            if changed_goals:
                self._publish_after_commit(asset_id, changed_goals)

            return self.store.allocations_for_asset(asset_id)

    def remove_all_for_goal(self, goal_id: str) -> list[str]:
        """
        Remove every allocation to a goal, recording deletions in history.

        Returns:
            IDs of the assets that lost an allocation
        """
        with self.store.transaction("remove_all_for_goal"):
            allocations = self.store.allocations_for_goal(goal_id)
            now = self.clock()
            for allocation in allocations:
                self.store.delete_allocation(allocation.asset_id, goal_id)
                if self._record_change(allocation.asset_id, goal_id, allocation.amount, 0.0, now,
                                       "remove_all_for_goal"):
                    self._publish_after_commit(allocation.asset_id, [goal_id])

        return [a.asset_id for a in allocations]

    def remove_all_for_asset(self, asset_id: str) -> list[str]:
        """
        Remove every allocation of an asset, recording deletions in history.

        Returns:
            IDs of the goals that lost an allocation
        """
        with self.store.transaction("remove_all_for_asset"):
            allocations = self.store.allocations_for_asset(asset_id)
            now = self.clock()
            changed = []
            for allocation in allocations:
                self.store.delete_allocation(asset_id, allocation.goal_id)
                if self._record_change(asset_id, allocation.goal_id, allocation.amount, 0.0, now,
                                       "remove_all_for_asset"):
                    changed.append(allocation.goal_id)
            if changed:
                self._publish_after_commit(asset_id, changed)

        return [a.goal_id for a in allocations]

    def allocation_status(self, asset_id: str) -> AllocationStatus:
        """Balance versus allocations for one asset."""
        asset = self._require_asset(asset_id)
        return self._status_for(asset)

    def all_allocation_statuses(self) -> list[AllocationStatus]:
        return [self._status_for(asset) for asset in self.store.list_assets()]

    def over_allocated_assets(self) -> list[AllocationStatus]:
        """Assets whose balance dropped below their allocations."""
        return [status for status in self.all_allocation_statuses() if status.is_over_allocated]

    def allocated_total(self, goal_id: str, currency: str,
                        converter: Optional[CurrencyConverter] = None) -> float:
        """
        Sum of all allocations to a goal, expressed in ``currency``.

        Raises:
            ConversionUnavailableError: If an asset currency cannot be converted
        """
        total = 0.0
        for allocation in self.store.allocations_for_goal(goal_id):
            asset = self.store.get_asset(allocation.asset_id)
            if asset is None:
                continue
            if converter is None or asset.currency.upper() == currency.upper():
                total += allocation.amount
            else:
                total += converter.convert(allocation.amount, asset.currency, currency)
        return total

    def allocations_for_goal(self, goal_id: str) -> list[Allocation]:
        return self.store.allocations_for_goal(goal_id)

    def allocations_for_asset(self, asset_id: str) -> list[Allocation]:
        return self.store.allocations_for_asset(asset_id)

    def history(
        self,
        asset_id: Optional[str] = None,
        goal_id: Optional[str] = None,
        month: Optional[str] = None
    ) -> list[AllocationHistoryEntry]:
        return self.store.list_history(asset_id=asset_id, goal_id=goal_id, month_label=month)

    def _status_for(self, asset: Asset) -> AllocationStatus:
        total_allocated = sum(a.amount for a in self.store.allocations_for_asset(asset.id))
        return AllocationStatus(
            asset_id=asset.id,
            currency=asset.currency,
            total_balance=asset.current_amount,
            total_allocated=total_allocated,
            epsilon=self.epsilon,
        )

    @staticmethod
    def _require_finite(amount: float, field: str) -> None:
        if not math.isfinite(amount):
            raise ValidationError(
                f"Allocation amount must be a finite number, got {amount}",
                field=field,
                value=amount
            )

    def _check_balance(self, asset: Asset, attempted: float) -> None:
        if attempted > asset.current_amount:
            self.logger.warning(
                "Allocation rejected",
                asset_id=asset.id,
                attempted=attempted,
                available=asset.current_amount
            )
            raise ExceedsAvailableBalanceError(
                f"Allocating {attempted} exceeds available balance {asset.current_amount} "
                f"of asset {asset.id}",
                attempted=attempted,
                available=asset.current_amount,
                asset_id=asset.id
            )

    def _record_change(self, asset_id: str, goal_id: str, old_amount: float, new_amount: float,
                       timestamp: datetime, operation: str) -> bool:
        """Write a history entry when the change exceeds epsilon."""
        if abs(old_amount - new_amount) <= self.epsilon:
            return False

        self.store.add_history_entry(AllocationHistoryEntry(
            asset_id=asset_id,
            goal_id=goal_id,
            amount=new_amount,
            timestamp=timestamp,
            month_label=month_label(timestamp),
        ))
        log_allocation_change(self.logger, asset_id, goal_id, old_amount, new_amount, operation)
        return True

    def _publish_after_commit(self, asset_id: str, goal_ids: list[str]) -> None:
        if self.event_bus is None:
            return
        event = AllocationChanged(asset_id=asset_id, goal_ids=tuple(goal_ids))
        self.store.after_commit(lambda: self.event_bus.publish(event))

    def _require_asset(self, asset_id: str) -> Asset:
        asset = self.store.get_asset(asset_id)
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found", entity_type="asset", entity_id=asset_id)
        return asset

    def _require_goal(self, goal_id: str) -> None:
        if self.store.get_goal(goal_id) is None:
            raise NotFoundError(f"Goal {goal_id} not found", entity_type="goal", entity_id=goal_id)
