"""
Main planning engine coordinator.

Wires the store, ledger, planning services and execution tracker together
behind one facade:

Assets/Allocations -> Requirements -> Flex/Budget -> Monthly plan -> Execution
"""

import math
import uuid
from dataclasses import asdict
from datetime import date
from typing import Iterable, Optional

import structlog

from .assets.balance import AssetBalanceService, OnChainBalanceProvider
from .config.defaults import PlannerConfig
from .config.loader import ConfigLoader
from .config.validation import ConfigValidator
from .contributions.service import ContributionService
from .currency.base import CurrencyConverter, normalize_currency
from .currency.cached import CachedRateConverter
from .currency.coingecko import CoinGeckoRateSource
from .errors import NotFoundError, ValidationError
from .events.bus import EventBus
from .execution.progress import ExecutionDisplay, ExecutionProgressView
from .execution.tracker import ExecutionTracker
from .ledger.allocation import AllocationLedger
from .models import (
    Allocation,
    AllocationStatus,
    Asset,
    Contribution,
    ExecutionRecord,
    FlexState,
    Goal,
    GoalStatus,
    MonthlyPlan,
    MonthlyRequirement,
)
from .persistence.store import PlannerStore
from .planning.budget import BudgetApplication, BudgetCalculator, BudgetSchedule, \
    BudgetService, FeasibilityResult
from .planning.flex import FlexAdjustmentEngine, FlexSimulation, FlexStrategy
from .planning.plans import MonthlyPlanService
from .planning.recompute import PlanRecomputeWorker
from .planning.requirements import RequirementCalculator
from .utils.time import Clock, month_label, utc_now

logger = structlog.get_logger(__name__)


class SavingsPlanner:
    """
    Main coordinator for the goal planning system.

    Collaborators not supplied are built from the configuration: an SQLite
    store at ``store.db_path`` and a cached CoinGecko rate source.
    """

    def __init__(
        self,
        config: Optional[PlannerConfig] = None,
        store: Optional[PlannerStore] = None,
        converter: Optional[CurrencyConverter] = None,
        balance_provider: Optional[OnChainBalanceProvider] = None,
        event_bus: Optional[EventBus] = None,
        clock: Clock = utc_now,
        background_recompute: bool = True,
        config_dir: Optional[str] = None
    ) -> None:
        self.logger = logger
        self.config = config or ConfigLoader.create(config_dir).load()

        issues = ConfigValidator.validate_config(asdict(self.config))
        if issues:
            raise ValidationError(
                f"Invalid configuration: {'; '.join(f'{i.field}: {i.message}' for i in issues)}",
                context={"issues": [i.field for i in issues]}
            )

        self.clock = clock
        self.event_bus = event_bus or EventBus()
        self.store = store or PlannerStore(self.config.store.db_path)
        self.converter = converter or CachedRateConverter(
            CoinGeckoRateSource(self.config.rates),
            ttl_seconds=self.config.rates.cache_ttl_seconds,
            timeout_seconds=self.config.rates.fetch_timeout_seconds,
        )

        self.ledger = AllocationLedger(self.store, self.config.ledger, self.event_bus, clock)
        self.balances = AssetBalanceService(self.store, balance_provider)
        self.requirements = RequirementCalculator(self.config.requirements, clock)
        self.plans = MonthlyPlanService(
            self.store, self.ledger, self.requirements, self.converter, self.event_bus, clock
        )
        self.flex = FlexAdjustmentEngine(self.config.flex)
        self.budget_calculator = BudgetCalculator(self.converter, self.config.budget, clock)
        self.budget = BudgetService(self.store, self.plans, self.budget_calculator, clock)
        self.contributions = ContributionService(self.store, self.event_bus, clock)
        self.tracker = ExecutionTracker(self.store, self.config.execution, self.event_bus, clock)
        self.progress = ExecutionProgressView(self.store, self.tracker, self.converter)

        self.recompute_worker = PlanRecomputeWorker(self.plans, clock)
        if background_recompute:
            self.recompute_worker.attach(self.event_bus)

        self.logger.info("Savings planner initialized", db_path=self.config.store.db_path)

    def current_month(self) -> str:
        return month_label(self.clock())

    # Goals

    def add_goal(self, name: str, currency: str, target_amount: float, deadline: date,
                 start_date: Optional[date] = None, emoji: Optional[str] = None) -> Goal:
        """Create a goal. Its plans appear lazily the next time plans are read."""
        if not name or not name.strip():
            raise ValidationError("Goal name is required", field="name", value=name)
        if not math.isfinite(target_amount) or target_amount <= 0:
            raise ValidationError("Target amount must be positive", field="target_amount", value=target_amount)

        goal = Goal(
            id=str(uuid.uuid4()),
            name=name.strip(),
            currency=normalize_currency(currency),
            target_amount=target_amount,
            deadline=deadline,
            start_date=start_date or self.clock().date(),
            emoji=emoji,
        )
        with self.store.transaction("add_goal"):
            self.store.save_goal(goal)

        self.logger.info("Goal added", goal_id=goal.id, currency=goal.currency, target_amount=target_amount)
        return goal

    def update_goal(self, goal: Goal) -> Goal:
        """Persist an edited goal and refresh its plan for the current month."""
        if not math.isfinite(goal.target_amount) or goal.target_amount <= 0:
            raise ValidationError("Target amount must be positive", field="target_amount",
                                  value=goal.target_amount)
        with self.store.transaction("update_goal"):
            self.get_goal(goal.id)
            self.store.save_goal(goal)
            self.plans.recompute_plans(self.current_month(), [goal.id])
        return goal

    def set_goal_status(self, goal_id: str, status: GoalStatus) -> Goal:
        goal = self.get_goal(goal_id).with_status(status)
        with self.store.transaction("set_goal_status"):
            self.store.save_goal(goal)
        return goal

    def get_goal(self, goal_id: str) -> Goal:
        goal = self.store.get_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal not found: {goal_id}", entity_type="goal", entity_id=goal_id)
        return goal

    def list_goals(self, active_only: bool = False) -> list[Goal]:
        return self.store.list_goals(GoalStatus.ACTIVE if active_only else None)

    def delete_goal(self, goal_id: str) -> None:
        """Delete a goal together with its allocations, plans and contributions."""
        with self.store.transaction("delete_goal"):
            self.get_goal(goal_id)
            self.ledger.remove_all_for_goal(goal_id)
            self.store.delete_goal(goal_id)
        self.logger.info("Goal deleted", goal_id=goal_id)

    # Assets

    def add_asset(self, currency: str, manual_amount: float = 0.0, chain: Optional[str] = None,
                  address: Optional[str] = None, symbol: Optional[str] = None) -> Asset:
        if not math.isfinite(manual_amount) or manual_amount < 0:
            raise ValidationError("Manual amount must be a non-negative number", field="manual_amount", value=manual_amount)

        asset = Asset(
            id=str(uuid.uuid4()),
            currency=normalize_currency(currency),
            manual_amount=manual_amount,
            chain=chain,
            address=address,
            symbol=symbol,
        )
        with self.store.transaction("add_asset"):
            self.store.save_asset(asset)
        return asset

    def get_asset(self, asset_id: str) -> Asset:
        asset = self.store.get_asset(asset_id)
        if asset is None:
            raise NotFoundError(f"Asset not found: {asset_id}", entity_type="asset", entity_id=asset_id)
        return asset

    def list_assets(self) -> list[Asset]:
        return self.store.list_assets()

    def set_manual_balance(self, asset_id: str, amount: float) -> Asset:
        """
        Change the user-entered balance of an asset.

        Lowering a balance below its allocations is allowed; the asset then
        shows up in ``over_allocated_assets`` until allocations are reduced.
        """
        asset = self.balances.set_manual_amount(asset_id, amount)
        self._balance_changed(asset_id)
        return asset

    def refresh_asset_balance(self, asset_id: str) -> Asset:
        asset, changed = self.balances.refresh(asset_id)
        if changed:
            self._balance_changed(asset_id)
        return asset

    def delete_asset(self, asset_id: str) -> None:
        with self.store.transaction("delete_asset"):
            self.get_asset(asset_id)
            self.ledger.remove_all_for_asset(asset_id)
            self.store.delete_asset(asset_id)
        self.logger.info("Asset deleted", asset_id=asset_id)

    # Allocations

    def set_allocation(self, asset_id: str, goal_id: str, amount: float) -> Optional[Allocation]:
        return self.ledger.set_allocation(asset_id, goal_id, amount)

    def remove_allocation(self, asset_id: str, goal_id: str) -> bool:
        return self.ledger.remove_allocation(asset_id, goal_id)

    def bulk_update_allocations(self, asset_id: str, amounts: dict[str, float]) -> list[Allocation]:
        return self.ledger.bulk_update(asset_id, amounts)

    def allocation_status(self, asset_id: str) -> AllocationStatus:
        return self.ledger.allocation_status(asset_id)

    def over_allocated_assets(self) -> list[AllocationStatus]:
        return self.ledger.over_allocated_assets()

    # Monthly planning

    def monthly_requirements(self) -> list[MonthlyRequirement]:
        return self.plans.requirements_for(self.list_goals(active_only=True))

    def monthly_plans(self, month: Optional[str] = None) -> list[MonthlyPlan]:
        """Plans of every active goal for a month, created on first access."""
        return self.plans.get_or_create_plans(month or self.current_month(), self.list_goals(active_only=True))

    def recompute_plans(self, month: Optional[str] = None) -> list[MonthlyPlan]:
        """Synchronous recompute, for callers that need fresh plans immediately."""
        return self.plans.recompute_plans(month or self.current_month())

    def apply_flex_adjustment(
        self,
        multiplier: float,
        protected_ids: Iterable[str] = (),
        skipped_ids: Iterable[str] = (),
        month: Optional[str] = None
    ) -> list[MonthlyPlan]:
        """Persist flex states and the multiplier on a month's plans."""
        target_month = month or self.current_month()
        with self.store.transaction("apply_flex_adjustment"):
            plans = self.monthly_plans(target_month)
            adjusted = self.flex.apply(plans, multiplier, protected_ids, skipped_ids)
            self.plans.save_plans(adjusted)

        self.logger.info(
            "Flex adjustment saved",
            month_label=target_month,
            multiplier=multiplier,
            total_effective=self.flex.total_effective(adjusted)
        )
        return adjusted

    def preview_flex(
        self,
        multiplier: float,
        protected_ids: Iterable[str] = (),
        skipped_ids: Iterable[str] = (),
        strategy: FlexStrategy = FlexStrategy.BALANCED
    ) -> FlexSimulation:
        return self.flex.simulate(self.monthly_requirements(), multiplier, protected_ids, skipped_ids, strategy)

    def roll_forward(self, from_month: str, to_month: str) -> list[MonthlyPlan]:
        return self.plans.roll_forward(from_month, to_month, self.list_goals(active_only=True))

    # Budget

    def check_budget(self, budget: float, currency: str) -> FeasibilityResult:
        return self.budget_calculator.check_feasibility(
            self.monthly_requirements(), budget, currency, self._skipped_ids()
        )

    def budget_schedule(self, budget: float, currency: str) -> BudgetSchedule:
        return self.budget_calculator.generate_schedule(
            self.monthly_requirements(), budget, currency,
            start_month=self.current_month(), skipped_ids=self._skipped_ids()
        )

    def apply_budget(self, budget: float, currency: str,
                     month: Optional[str] = None) -> BudgetApplication:
        return self.budget.apply(self.list_goals(active_only=True), budget, currency, month)

    def is_budget_stale(self, month: Optional[str] = None) -> bool:
        return self.budget.is_stale(self.list_goals(active_only=True), month)

    def acknowledge_budget(self, month: Optional[str] = None) -> Optional[BudgetApplication]:
        return self.budget.acknowledge(self.list_goals(active_only=True), month)

    # Execution

    def start_tracking(self, month: Optional[str] = None) -> ExecutionRecord:
        target_month = month or self.current_month()
        goals = self.list_goals(active_only=True)
        with self.store.transaction("start_tracking"):
            plans = self.plans.get_or_create_plans(target_month, goals)
            return self.tracker.start_tracking(target_month, plans, goals)

    def mark_complete(self, record_id: str) -> ExecutionRecord:
        return self.tracker.mark_complete(record_id)

    def undo_start_tracking(self, record_id: str) -> ExecutionRecord:
        return self.tracker.undo_start_tracking(record_id)

    def undo_completion(self, record_id: str) -> ExecutionRecord:
        return self.tracker.undo_completion(record_id)

    def active_record(self) -> Optional[ExecutionRecord]:
        return self.tracker.get_active_record()

    def completed_records(self, limit: int = 10, offset: int = 0) -> list[ExecutionRecord]:
        return self.tracker.get_completed_records(limit, offset)

    def record_contribution(self, goal_id: str, asset_id: str, amount: float,
                            exchange_rate: float = 1.0, source: str = "manual") -> Contribution:
        return self.contributions.record_contribution(
            goal_id, asset_id, amount, exchange_rate, source=source
        )

    def execution_display(self, record_id: str, display_currency: str) -> Optional[ExecutionDisplay]:
        return self.progress.refresh(record_id, display_currency)

    def shutdown(self) -> None:
        """Stop background work and close the store."""
        self.recompute_worker.shutdown()
        if isinstance(self.converter, CachedRateConverter):
            self.converter.shutdown()
        self.store.close()
        self.logger.info("Savings planner shut down")

    def _skipped_ids(self) -> list[str]:
        return [
            plan.goal_id
            for plan in self.store.list_plans(month_label=self.current_month(), flex_state=FlexState.SKIPPED)
        ]

    def _balance_changed(self, asset_id: str) -> None:
        goal_ids = [a.goal_id for a in self.ledger.allocations_for_asset(asset_id)]
        if goal_ids:
            self.recompute_worker.schedule(goal_ids)
