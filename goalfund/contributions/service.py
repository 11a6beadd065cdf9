"""Contribution service."""

import math
import uuid
from typing import Optional

import structlog

from ..errors import NegativeAmountError, NotFoundError, ValidationError
from ..events.bus import ContributionRecorded, EventBus
from ..models import Contribution, ExecutionStatus
from ..persistence.store import PlannerStore
from ..utils.time import Clock, month_label, utc_now

logger = structlog.get_logger(__name__)


class ContributionService:
    """Stores contributions and links them to the executing month."""

    def __init__(self, store: PlannerStore, event_bus: Optional[EventBus] = None,
                 clock: Clock = utc_now):
        self.store = store
        self.event_bus = event_bus
        self.clock = clock
        self.logger = logger

    def record_contribution(
        self,
        goal_id: str,
        asset_id: str,
        amount: float,
        exchange_rate: float = 1.0,
        execution_record_id: Optional[str] = None,
        source: str = "manual"
    ) -> Contribution:
        """
        Record money moved from an asset to a goal.

        Args:
            goal_id: Goal receiving the contribution
            asset_id: Asset the money came from
            amount: Amount in asset currency
            exchange_rate: Asset currency -> goal currency rate
            execution_record_id: Record to link; defaults to the executing
                record of the current month, if any
            source: Origin label, e.g. "manual" or "on_chain"

        Raises:
            NegativeAmountError: If amount is negative
            ValidationError: If amount is not finite or exchange_rate is not a
                positive finite number
            NotFoundError: If the goal, asset or record does not exist
        """
        if not math.isfinite(amount):
            raise ValidationError(
                f"Contribution amount must be a finite number, got {amount}",
                field="amount",
                value=amount
            )
        if amount < 0:
            raise NegativeAmountError(
                f"Contribution amount cannot be negative: {amount}", amount=amount, field="amount"
            )
        if not math.isfinite(exchange_rate) or exchange_rate <= 0:
            raise ValidationError(
                f"Exchange rate must be positive: {exchange_rate}",
                field="exchange_rate",
                value=exchange_rate
            )

        now = self.clock()
        label = month_label(now)

        with self.store.transaction("record_contribution"):
            if self.store.get_goal(goal_id) is None:
                raise NotFoundError(f"Goal not found: {goal_id}", entity_type="goal", entity_id=goal_id)
            if self.store.get_asset(asset_id) is None:
                raise NotFoundError(f"Asset not found: {asset_id}", entity_type="asset", entity_id=asset_id)

            record_id = self._resolve_record(execution_record_id, label)
            contribution = Contribution(
                id=str(uuid.uuid4()),
                goal_id=goal_id,
                asset_id=asset_id,
                amount=amount,
                exchange_rate=exchange_rate,
                amount_in_goal_currency=amount * exchange_rate,
                timestamp=now,
                month_label=label,
                source=source,
                execution_record_id=record_id,
            )
            self.store.add_contribution(contribution)

            if self.event_bus is not None:
                event = ContributionRecorded(
                    contribution_id=contribution.id,
                    goal_id=goal_id,
                    execution_record_id=record_id
                )
                self.store.after_commit(lambda: self.event_bus.publish(event))

        self.logger.info(
            "Contribution recorded",
            contribution_id=contribution.id,
            goal_id=goal_id,
            asset_id=asset_id,
            amount=amount,
            amount_in_goal_currency=contribution.amount_in_goal_currency,
            execution_record_id=record_id
        )
        return contribution

    def contributions_for_record(self, record_id: str) -> list[Contribution]:
        return self.store.list_contributions(execution_record_id=record_id)

    def contributions_for_goal(self, goal_id: str,
                               month: Optional[str] = None) -> list[Contribution]:
        return self.store.list_contributions(goal_id=goal_id, month_label=month)

    def _resolve_record(self, record_id: Optional[str], label: str) -> Optional[str]:
        if record_id is not None:
            if self.store.get_execution_record(record_id) is None:
                raise NotFoundError(
                    f"Execution record not found: {record_id}",
                    entity_type="execution_record",
                    entity_id=record_id
                )
            return record_id

        record = self.store.get_execution_record_for_month(label)
        if record is not None and record.status == ExecutionStatus.EXECUTING:
            return record.id
        return None
