"""Default configuration parameters for the goal planning engine."""

from dataclasses import dataclass


@dataclass(frozen=True)
class LedgerParams:
    """Allocation ledger parameters."""
    epsilon: float = 1e-7                       # Changes at or below this are not history-worthy


@dataclass(frozen=True)
class RequirementParams:
    """Requirement status thresholds (first match wins, after completion)."""
    critical_days: int = 30                     # Deadline closer than this may be critical
    critical_progress: float = 0.9              # ...when progress is below this fraction
    pace_tolerance: float = 0.0                 # Allowed lag behind linear pace before attention


@dataclass(frozen=True)
class FlexParams:
    """Flex adjustment parameters."""
    max_multiplier: float = 1.5                 # Upper bound when applying
    preview_max_multiplier: float = 2.0         # Upper bound for previews
    min_adjusted_ratio: float = 0.1             # Simulation floor (10% of required)
    max_adjusted_ratio: float = 1.5             # Simulation ceiling (150% of required)


@dataclass(frozen=True)
class BudgetParams:
    """Budget scheduling parameters."""
    horizon_months: int = 36                    # Projection cap
    tolerance: float = 0.01                     # Amounts below this are treated as funded


@dataclass(frozen=True)
class ExecutionParams:
    """Execution tracking parameters."""
    undo_grace_period_hours: int = 24           # 0 disables undo


@dataclass(frozen=True)
class RateParams:
    """Exchange rate parameters."""
    cache_ttl_seconds: int = 300
    fetch_timeout_seconds: float = 10.0
    api_base_url: str = "https://api.coingecko.com/api/v3"
    api_key: str = ""
    cross_currency: str = "usdt"


@dataclass(frozen=True)
class StoreParams:
    """Persistence parameters."""
    db_path: str = ":memory:"


@dataclass(frozen=True)
class PlannerConfig:
    """Complete planner configuration."""
    ledger: LedgerParams
    requirements: RequirementParams
    flex: FlexParams
    budget: BudgetParams
    execution: ExecutionParams
    rates: RateParams
    store: StoreParams


def get_default_config() -> PlannerConfig:
    """Get the default configuration instance."""
    return PlannerConfig(
        ledger=LedgerParams(),
        requirements=RequirementParams(),
        flex=FlexParams(),
        budget=BudgetParams(),
        execution=ExecutionParams(),
        rates=RateParams(),
        store=StoreParams(),
    )
