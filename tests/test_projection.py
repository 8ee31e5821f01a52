# =============================================================================
# FINPLAN ENGINE - MONTHLY PROJECTION CALCULATOR TESTS
# =============================================================================

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from finplan.amortization import depreciation_for_year, outstanding_balance
from finplan.errors import NoProductsError, NoSalesProjectionsError, PreconditionError
from finplan.inputs import (
    CapexItem, Loan, OpexItem, Product, Project, ProjectInputs,
    SalesProjection, ScenarioFactors
)
from finplan.projection import (
    calculate_loan_service, calculate_monthly_depreciation, calculate_monthly_opex, generate_periods,
    opex_fires, projection_engine, round_currency, round_percent,
    summarize_outputs, validate_projection_output
)


def simple_inputs(start_month=1, horizon_years=1, **extra):
    """One product selling one unit per month at 10 with cost 4."""
    sales = tuple(
        SalesProjection("p", year, month, 1)
        for year, month in generate_periods(2025, start_month, horizon_years * 12)
    )
    return ProjectInputs(
        project=Project("t", 2025, start_month, horizon_years),
        products=(Product("p", 10, 4),),
        sales_projections=sales,
        **extra
    )


class TestPeriods:
    """Tests for horizon generation."""

    def test_calendar_year(self):
        periods = generate_periods(2025, 1, 12)
        assert periods[0] == (2025, 1)
        assert periods[-1] == (2025, 12)

    def test_offset_start_wraps_year(self):
        periods = generate_periods(2025, 7, 12)
        assert periods[0] == (2025, 7)
        assert periods[6] == (2026, 1)
        assert periods[-1] == (2026, 6)

    def test_series_covers_horizon(self, full_inputs):
        """Outputs cover exactly horizon_years * 12 consecutive months."""
        outputs = projection_engine(full_inputs).outputs
        assert len(outputs) == 24
        assert [(o.year, o.month) for o in outputs] == generate_periods(2025, 1, 24)
        assert [o.period_index for o in outputs] == list(range(1, 25))

    def test_offset_start_series(self):
        outputs = projection_engine(simple_inputs(start_month=4)).outputs
        assert outputs[0].period == "2025-04"
        assert outputs[-1].period == "2026-03"


class TestEndToEnd:
    """Single product, single sale."""

    def test_first_month(self, minimal_inputs):
        first = projection_engine(minimal_inputs).outputs[0]
        assert first.revenue == 5000
        assert first.cogs == 2000
        assert first.gross_margin == 3000
        assert first.gross_margin_percent == 60.0
        assert first.opex_total == 0
        assert first.depreciation == 0
        assert first.ebitda == 3000
        assert first.ebit == 3000
        assert first.net_income == 3000
        assert first.loan_payments == 0
        assert first.cash_flow == 3000
        assert first.cash_balance == 3000
        assert first.dscr is None

    def test_following_months_carry_cash(self, minimal_inputs):
        outputs = projection_engine(minimal_inputs).outputs
        assert len(outputs) == 12
        for row in outputs[1:]:
            assert row.revenue == 0
            assert row.gross_margin_percent == 0.0
            assert row.cash_balance == 3000

    def test_summary(self, minimal_inputs):
        summary = projection_engine(minimal_inputs).summary
        assert summary["months_calculated"] == 12
        assert summary["total_revenue"] == 5000
        assert summary["net_income"] == 3000
        assert summary["gross_margin_percent"] == 60.0
        assert summary["net_margin_percent"] == 60.0
        assert summary["avg_monthly_revenue"] == 417
        assert summary["profitability"] == "profitable"
        assert summary["break_even"] == "reached"
        assert summary["first_positive_cash_month"] == 1
        assert summary["financing_need"] == 0.0


class TestOpex:
    """Tests for opex frequencies."""

    def test_frequency_rules(self):
        assert all(opex_fires("monthly", m) for m in range(1, 13))
        assert [m for m in range(1, 13) if opex_fires("quarterly", m)] == [1, 4, 7, 10]
        assert [m for m in range(1, 13) if opex_fires("yearly", m)] == [1]

    def test_monthly_totals(self):
        items = (
            OpexItem("rent", 100, "monthly", 2025),
            OpexItem("audit", 1000, "quarterly", 2025),
            OpexItem("license", 10000, "yearly", 2025),
        )
        outputs = projection_engine(simple_inputs(opex=items)).outputs
        totals = [row.opex_total for row in outputs]
        assert totals == [11100, 100, 100, 1100, 100, 100, 1100, 100, 100, 1100, 100, 100]

    def test_start_year(self):
        items = (OpexItem("later", 500, "monthly", 2026),)
        assert calculate_monthly_opex(items, 2025, 6) == 0.0
        assert calculate_monthly_opex(items, 2026, 6) == 500

    def test_opex_factor(self):
        items = (OpexItem("rent", 100, "monthly", 2025),)
        factors = ScenarioFactors(opex_factor=1.5)
        assert calculate_monthly_opex(items, 2025, 1, factors) == 150


class TestCapex:
    """Tests for depreciation inside the projection."""

    def test_depreciation_and_book_value(self):
        capex = (CapexItem("tool", 12000, 2025, 1),)
        outputs = projection_engine(simple_inputs(horizon_years=2, capex=capex)).outputs
        assert outputs[0].depreciation == 1000
        assert outputs[0].net_fixed_assets == 11000
        assert outputs[11].net_fixed_assets == 0
        assert outputs[12].depreciation == 0

    def test_depreciation_is_non_cash(self):
        capex = (CapexItem("tool", 12000, 2025, 1),)
        first = projection_engine(simple_inputs(capex=capex)).outputs[0]
        # net income 6 - 1000; cash flow adds depreciation back
        assert first.net_income == -994
        assert first.cash_flow == 6

    def test_capex_factor(self):
        capex = (CapexItem("tool", 12000, 2025, 1),)
        factors = ScenarioFactors(capex_factor=2.0)
        first = projection_engine(simple_inputs(capex=capex), factors=factors).outputs[0]
        assert first.depreciation == 2000

    def test_window_matches_amortization(self):
        capex = (CapexItem("press", 24000, 2026, 1, residual_value=0),)
        assert calculate_monthly_depreciation(capex, 2025) == 0
        assert calculate_monthly_depreciation(capex, 2026) == depreciation_for_year(24000, 0, 1, 2026, 2026)
        assert calculate_monthly_depreciation(capex, 2026) == 2000
        assert calculate_monthly_depreciation(capex, 2027) == 0


class TestLoans:
    """Tests for debt service."""

    def test_grace_period(self):
        loans = (Loan("l", 120000, 0.0, 12, 2025, 1, grace_period_months=3),)
        outputs = projection_engine(simple_inputs(horizon_years=2, loans=loans)).outputs
        payments = [row.loan_payments for row in outputs]
        assert payments[:3] == [0, 0, 0]
        assert payments[3:15] == [10000] * 12
        assert payments[15:] == [0] * 9
        assert outputs[0].debt_balance == 120000
        assert outputs[3].debt_balance == 110000
        assert outputs[14].debt_balance == 0

    def test_not_yet_disbursed(self):
        loans = (Loan("l", 60000, 0.0, 6, 2025, 6),)
        service = calculate_loan_service(loans, 2025, 5)
        assert service.payment == 0
        assert service.balance == 0
        service = calculate_loan_service(loans, 2025, 6)
        assert service.payment == 10000
        assert service.balance == 50000

    def test_interest_principal_split(self):
        loans = (Loan("l", 1_000_000, 12.0, 60, 2025, 1),)
        service = calculate_loan_service(loans, 2025, 1)
        assert service.payment == pytest.approx(22244.45, abs=0.01)
        assert service.interest == pytest.approx(10_000)
        assert service.interest + service.principal == pytest.approx(service.payment)

    def test_balance_follows_schedule(self):
        loans = (Loan("l", 1_000_000, 12.0, 60, 2025, 1, grace_period_months=2),)
        assert calculate_loan_service(loans, 2025, 2).balance == 1_000_000
        service = calculate_loan_service(loans, 2025, 7)
        assert service.balance == pytest.approx(outstanding_balance(1_000_000, 12.0, 60, 5))
        assert calculate_loan_service(loans, 2030, 3).balance == 0

    def test_dscr_only_with_debt_service(self, full_inputs):
        outputs = projection_engine(full_inputs).outputs
        assert all(row.dscr is None for row in outputs[:3])
        assert all(row.dscr is not None for row in outputs[3:])
        row = outputs[3]
        assert row.dscr == pytest.approx((row.net_income + row.depreciation) / row.loan_payments, abs=1e-4)


class TestRounding:
    """Tests for half-up late rounding."""

    def test_round_half_up(self):
        assert round_currency(2.5) == 3
        assert round_currency(3.5) == 4
        assert round_currency(-2.5) == -3
        assert round_percent(12.345) == 12.35

    def test_rounds_after_summing(self):
        inputs = ProjectInputs(
            project=Project("r", 2025, 1, 1),
            products=(Product("a", 0.4, 0), Product("b", 0.4, 0)),
            sales_projections=(SalesProjection("a", 2025, 1, 1), SalesProjection("b", 2025, 1, 1)),
        )
        first = projection_engine(inputs).outputs[0]
        assert first.revenue == 1


class TestPreconditions:
    """Tests for missing mandatory data."""

    def test_no_products(self):
        inputs = ProjectInputs(project=Project("x", 2025))
        with pytest.raises(NoProductsError) as info:
            projection_engine(inputs)
        assert "create products first" in str(info.value)
        assert isinstance(info.value, PreconditionError)

    def test_no_sales(self):
        inputs = ProjectInputs(project=Project("x", 2025), products=(Product("p", 1, 1),))
        with pytest.raises(NoSalesProjectionsError) as info:
            projection_engine(inputs)
        assert "create sales projections first" in str(info.value)


class TestScenarioFactors:
    """Tests for factor handling."""

    def test_zero_factor_is_honored(self, minimal_inputs):
        first = projection_engine(minimal_inputs, factors=ScenarioFactors(revenue_factor=0.0)).outputs[0]
        assert first.revenue == 0
        assert first.cogs == 2000

    def test_named_scenario(self, full_inputs):
        base = projection_engine(full_inputs).summary["total_revenue"]
        optimistic = projection_engine(full_inputs, scenario_id="optimistic")
        assert optimistic.summary["total_revenue"] == pytest.approx(base * 1.2)
        assert optimistic.outputs[0].scenario_id == "optimistic"

    def test_unknown_scenario_falls_back_to_base(self, full_inputs):
        output = projection_engine(full_inputs, scenario_id="missing")
        assert output.factors == ScenarioFactors()
        assert any("missing" in warning for warning in output.warnings)


class TestInvariants:
    """Tests for series identities."""

    def test_cash_carry(self, full_inputs):
        outputs = projection_engine(full_inputs).outputs
        previous = 0.0
        for row in outputs:
            assert row.cash_balance == previous + row.cash_flow
            previous = row.cash_balance
        assert validate_projection_output(outputs) == []

    def test_income_identities(self, full_inputs):
        for row in projection_engine(full_inputs).outputs:
            assert abs(row.gross_margin - (row.revenue - row.cogs)) <= 1
            assert abs(row.ebitda - (row.gross_margin - row.opex_total)) <= 1
            assert abs(row.cash_flow - (row.net_income + row.depreciation - row.loan_payments)) <= 1

    def test_deterministic(self, full_inputs):
        assert projection_engine(full_inputs).outputs == projection_engine(full_inputs).outputs

    def test_summary_of_empty_series(self):
        summary = summarize_outputs([])
        assert summary["months_calculated"] == 0
        assert summary["gross_margin_percent"] == 0.0
        assert summary["profitability"] == "not profitable"
