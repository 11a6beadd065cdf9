"""Tests for the flex adjustment engine."""

from datetime import date

import pytest

from goalfund.errors import ValidationError
from goalfund.models import FlexState, MonthlyPlan, MonthlyRequirement, RequirementStatus
from goalfund.planning.flex import FlexAdjustmentEngine, FlexStrategy, RiskLevel


def plan(goal_id: str, required: float, custom=None, flex_state=FlexState.FLEXIBLE) -> MonthlyPlan:
    return MonthlyPlan(
        id=f"plan-{goal_id}",
        goal_id=goal_id,
        month_label="2025-01",
        currency="USD",
        required_monthly=required,
        remaining_amount=required * 4,
        months_remaining=4,
        flex_state=flex_state,
        custom_amount=custom,
    )


def requirement(goal_id: str, required: float, months: int = 6) -> MonthlyRequirement:
    return MonthlyRequirement(
        goal_id=goal_id,
        goal_name=goal_id,
        currency="USD",
        target_amount=required * months,
        current_total=0.0,
        remaining_amount=required * months,
        months_remaining=months,
        required_monthly=required,
        progress=0.0,
        deadline=date(2025, 7, 15),
        days_remaining=181,
        status=RequirementStatus.ON_TRACK,
    )


class TestApply:
    """Test FlexAdjustmentEngine.apply."""

    def setup_method(self):
        self.engine = FlexAdjustmentEngine()
        self.plans = [plan("a", 100.0), plan("b", 200.0), plan("c", 300.0)]

    def test_identity_at_one(self):
        """Test a multiplier of 1.0 with no overrides leaves every amount unchanged."""
        adjusted = self.engine.apply(self.plans, 1.0)

        assert self.engine.effective_amounts(adjusted) == {"a": 100.0, "b": 200.0, "c": 300.0}

    def test_protected_and_skipped(self):
        adjusted = self.engine.apply(self.plans, 0.5, protected_ids=["a"], skipped_ids=["c"])

        states = {p.goal_id: p.flex_state for p in adjusted}
        assert states == {"a": FlexState.PROTECTED, "b": FlexState.FLEXIBLE, "c": FlexState.SKIPPED}
        assert self.engine.effective_amounts(adjusted) == {"a": 100.0, "b": 100.0, "c": 0.0}
        assert self.engine.total_effective(adjusted) == pytest.approx(200.0)

    def test_skip_wins_over_protect(self):
        adjusted = self.engine.apply(self.plans, 1.0, protected_ids=["a"], skipped_ids=["a"])

        assert adjusted[0].flex_state == FlexState.SKIPPED

    def test_custom_amount_is_protected(self):
        plans = [plan("a", 100.0, custom=40.0)]

        adjusted = self.engine.apply(plans, 0.5)

        assert adjusted[0].flex_state == FlexState.PROTECTED
        assert adjusted[0].effective_amount == 40.0

    def test_reapplying_does_not_compound(self):
        once = self.engine.apply(self.plans, 0.8)
        twice = self.engine.apply(once, 0.8)

        assert self.engine.effective_amounts(once) == self.engine.effective_amounts(twice)

    @pytest.mark.parametrize("multiplier", [-0.1, 1.6, float("nan")])
    def test_invalid_multiplier(self, multiplier):
        with pytest.raises(ValidationError):
            self.engine.apply(self.plans, multiplier)

    def test_preview_allows_higher_multiplier(self):
        adjusted = self.engine.apply(self.plans, 2.0, preview=True)

        assert adjusted[0].effective_amount == pytest.approx(200.0)


class TestSimulate:
    """Test flex previews."""

    def setup_method(self):
        self.engine = FlexAdjustmentEngine()

    def test_amounts_are_clamped(self):
        simulation = self.engine.simulate([requirement("a", 100.0)], 0.0)

        assert simulation.adjustment("a").adjusted_amount == pytest.approx(10.0)

    def test_excess_redistributed_balanced(self):
        """Test excess cut by the ceiling is shared among flexible goals with headroom."""
        reqs = [requirement("a", 100.0), requirement("b", 100.0), requirement("c", 100.0)]

        simulation = self.engine.simulate(reqs, 2.0, protected_ids=["c"], strategy=FlexStrategy.BALANCED)

        a = simulation.adjustment("a")
        assert a.adjusted_amount == pytest.approx(150.0)
        assert a.redistribution_amount == 0.0
        assert simulation.adjustment("c").adjusted_amount == pytest.approx(100.0)

    def test_skipped_goal_is_zero_and_high_risk(self):
        simulation = self.engine.simulate([requirement("a", 100.0)], 1.0, skipped_ids=["a"])

        adjustment = simulation.adjustment("a")
        assert adjustment.adjusted_amount == 0.0
        assert adjustment.flex_state == FlexState.SKIPPED
        assert adjustment.impact.estimated_delay_months is None
        assert simulation.goals_at_risk == ["a"]

    def test_totals(self):
        reqs = [requirement("a", 100.0), requirement("b", 300.0)]

        simulation = self.engine.simulate(reqs, 0.5)

        assert simulation.total_required == pytest.approx(400.0)
        assert simulation.total_adjusted == pytest.approx(200.0)
        assert simulation.total_savings == pytest.approx(200.0)


class TestImpact:
    """Test impact estimation."""

    def setup_method(self):
        self.engine = FlexAdjustmentEngine()

    def test_delay_from_reduced_amount(self):
        impact = self.engine.calculate_impact(requirement("a", 100.0, months=6), 75.0)

        assert impact.change_amount == pytest.approx(-25.0)
        assert impact.change_percentage == pytest.approx(-25.0)
        assert impact.estimated_delay_months == 2
        assert impact.risk_level == RiskLevel.LOW

    def test_risk_levels(self):
        assert self.engine.risk_level(requirement("a", 100.0, months=12), 40.0) == RiskLevel.HIGH
        assert self.engine.risk_level(requirement("a", 100.0, months=12), 70.0) == RiskLevel.MEDIUM
        assert self.engine.risk_level(requirement("a", 100.0, months=3), 100.0) == RiskLevel.MEDIUM
        assert self.engine.risk_level(requirement("a", 100.0, months=2), 100.0) == RiskLevel.HIGH
        assert self.engine.risk_level(requirement("a", 100.0, months=12), 100.0) == RiskLevel.LOW

    def test_increase_has_no_delay(self):
        impact = self.engine.calculate_impact(requirement("a", 100.0), 120.0)

        assert impact.estimated_delay_months == 0
