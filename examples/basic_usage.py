#!/usr/bin/env python3
"""
Basic Usage Example - goalfund Savings Planner

This script walks through one planning month with static exchange rates so
it runs offline. It shows how to:
- Create goals and assets
- Allocate asset balances to goals
- Read monthly requirements and check a budget
- Start, contribute to and complete a tracked month

Run: python examples/basic_usage.py
"""

from datetime import date, datetime, timezone

from goalfund.config.defaults import get_default_config
from goalfund.currency import StaticRateConverter
from goalfund.engine import SavingsPlanner
from goalfund.logging.config import configure_logging


def print_requirements(planner: SavingsPlanner) -> None:
    print("\n📈 Monthly requirements:")
    for req in planner.monthly_requirements():
        print(f"  • {req.goal_name}: {req.required_monthly:,.2f} {req.currency}/month "
              f"({req.months_remaining} months left, {req.status.value})")


def main():
    configure_logging(level="WARNING")

    converter = StaticRateConverter({
        ("BTC", "USD"): 50000.0,
        ("EUR", "USD"): 1.25,
    })
    planner = SavingsPlanner(
        config=get_default_config(),
        converter=converter,
        clock=lambda: datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc),
        background_recompute=False,
    )

    try:
        print("🎯 Creating goals...")
        laptop = planner.add_goal("Laptop", "USD", 2400.0, date(2025, 7, 15), emoji="💻")
        trip = planner.add_goal("Trip", "EUR", 3000.0, date(2025, 11, 15), emoji="✈️")

        print("💰 Adding assets...")
        savings = planner.add_asset("USD", manual_amount=1000.0)
        wallet = planner.add_asset("BTC", manual_amount=0.02)

        planner.set_allocation(savings.id, laptop.id, 600.0)
        planner.set_allocation(wallet.id, trip.id, 0.01)
        status = planner.allocation_status(savings.id)
        print(f"  Savings: {status.total_allocated:,.2f} of {status.total_balance:,.2f} USD allocated")

        print_requirements(planner)

        print("\n🧮 Checking a 500 USD budget...")
        result = planner.check_budget(500.0, "USD")
        if result.is_feasible:
            print(f"  ✅ Feasible, {result.total_required:,.2f} USD required")
        else:
            print(f"  ⚠️  Short by {result.shortfall:,.2f} USD")
            for suggestion in result.suggestions:
                print(f"    - {suggestion.kind.value} {suggestion.goal_id or ''}")

        print("\n▶️  Tracking January...")
        record = planner.start_tracking()
        planner.record_contribution(laptop.id, savings.id, 200.0)
        display = planner.execution_display(record.id, "USD")
        for row in display.rows:
            print(f"  • {row.goal_name}: {row.contributed_amount:,.2f}/{row.planned_amount:,.2f} "
                  f"{row.currency}, {row.remaining_display:,.2f} {row.display_currency} to go")
        print(f"  Progress: {display.progress_percent:.1f}%")

        closed = planner.mark_complete(record.id)
        print(f"\n✅ {closed.month_label} closed, undo possible until {closed.can_undo_until}")

    finally:
        planner.shutdown()


if __name__ == "__main__":
    main()
