"""Pytest configuration and shared fixtures."""

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest

from goalfund.currency.base import StaticRateConverter
from goalfund.events.bus import EventBus
from goalfund.ledger.allocation import AllocationLedger
from goalfund.models import Asset, Goal
from goalfund.persistence.store import PlannerStore
from goalfund.planning.plans import MonthlyPlanService
from goalfund.planning.requirements import RequirementCalculator


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at 2025-01-15 12:00 UTC."""
    return FrozenClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    """In-memory planner store."""
    planner_store = PlannerStore(":memory:")
    yield planner_store
    planner_store.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def converter() -> StaticRateConverter:
    """Static rates: 1 BTC = 50000 USD, 1 EUR = 1.25 USD."""
    return StaticRateConverter({
        ("BTC", "USD"): 50000.0,
        ("EUR", "USD"): 1.25,
    })


@pytest.fixture
def ledger(store, event_bus, clock) -> AllocationLedger:
    return AllocationLedger(store, event_bus=event_bus, clock=clock)


@pytest.fixture
def plan_service(store, ledger, converter, event_bus, clock) -> MonthlyPlanService:
    return MonthlyPlanService(
        store, ledger, RequirementCalculator(clock=clock), converter, event_bus, clock
    )


@pytest.fixture
def make_goal(store):
    """Factory that stores and returns a goal."""
    def factory(name: str = "Vacation", target_amount: float = 1200.0, currency: str = "USD",
                deadline: date = date(2025, 5, 15), start_date: date = date(2025, 1, 15),
                goal_id: Optional[str] = None) -> Goal:
        goal = Goal(
            id=goal_id or str(uuid.uuid4()),
            name=name,
            currency=currency,
            target_amount=target_amount,
            deadline=deadline,
            start_date=start_date,
        )
        with store.transaction():
            store.save_goal(goal)
        return goal
    return factory


@pytest.fixture
def make_asset(store):
    """Factory that stores and returns an asset."""
    def factory(manual_amount: float = 1000.0, currency: str = "USD",
                asset_id: Optional[str] = None) -> Asset:
        asset = Asset(id=asset_id or str(uuid.uuid4()), currency=currency, manual_amount=manual_amount)
        with store.transaction():
            store.save_asset(asset)
        return asset
    return factory
