# =============================================================================
# FINPLAN ENGINE - PYTEST CONFIGURATION
# =============================================================================
# Shared fixtures and configuration for all tests.
# =============================================================================

import pytest
import sys
import os
from pathlib import Path

import yaml

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from finplan.assumptions import YamlInputRepository, load_engine_settings
from finplan.inputs import build_project_inputs
from finplan.projection import MonthlyFinancialOutput
from finplan.service import CalculationService
from finplan.store import FinancialOutputStore


@pytest.fixture
def project_root():
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def assumptions_dir(project_root):
    """Get assumptions directory."""
    return project_root / "assumptions"


@pytest.fixture
def minimal_assumptions():
    """One product sold once, nothing else."""
    return {
        "project": {"start_date": "2025-01-01", "horizon_years": 1},
        "products": [
            {"id": "p1", "name": "Widget", "unit_price": 100, "unit_cost": 40}
        ],
        "sales_projections": [
            {"product_id": "p1", "year": 2025, "month": 1, "volume": 50}
        ],
    }


@pytest.fixture
def full_assumptions():
    """Project with opex, capex, a loan and three scenarios."""
    sales = []
    for year in (2025, 2026):
        for month in range(1, 13):
            sales.append({"product_id": "juice", "year": year, "month": month, "volume": 1000})
            sales.append({"product_id": "syrup", "year": year, "month": month, "volume": 200})
    return {
        "project": {"start_year": 2025, "start_month": 1, "horizon_years": 2, "name": "Acme"},
        "products": [
            {"id": "juice", "unit_price": 1500, "unit_cost": 600},
            {"id": "syrup", "unit_price": 3500, "unit_cost": 1400},
        ],
        "sales_projections": sales,
        "opex": [
            {"name": "Salaries", "amount": 400000, "frequency": "monthly"},
            {"name": "Marketing", "amount": 300000, "frequency": "quarterly"},
            {"name": "Insurance", "amount": 120000, "frequency": "yearly"},
        ],
        "capex": [
            {"name": "Line", "amount": 6000000, "purchase_year": 2025,
             "depreciation_years": 5, "residual_value": 0},
        ],
        "loans": [
            {"name": "Bank loan", "principal_amount": 4000000, "interest_rate": 12.0,
             "duration_months": 24, "start_year": 2025, "start_month": 1,
             "grace_period_months": 3},
        ],
        "scenarios": [
            {"id": "base", "name": "Base", "type": "base"},
            {"id": "optimistic", "name": "Up", "type": "optimistic",
             "factors": {"revenue_factor": 1.2}},
            {"id": "pessimistic", "name": "Down", "type": "pessimistic",
             "factors": {"revenue_factor": 0.8}},
        ],
    }


@pytest.fixture
def minimal_inputs(minimal_assumptions):
    return build_project_inputs("mini", minimal_assumptions, load_engine_settings(minimal_assumptions))


@pytest.fixture
def full_inputs(full_assumptions):
    return build_project_inputs("acme", full_assumptions, load_engine_settings(full_assumptions))


@pytest.fixture
def yaml_dir(tmp_path, full_assumptions, minimal_assumptions):
    """Assumptions directory with acme.yaml and mini.yaml."""
    directory = tmp_path / "assumptions"
    directory.mkdir()
    for name, data in (("acme", full_assumptions), ("mini", minimal_assumptions)):
        with open(directory / f"{name}.yaml", "w", encoding="utf-8") as handle:
            yaml.safe_dump(data, handle, sort_keys=False)
    return directory


@pytest.fixture
def store(tmp_path):
    return FinancialOutputStore.from_url(f"sqlite:///{tmp_path / 'outputs.db'}")


@pytest.fixture
def service(yaml_dir, store):
    return CalculationService(YamlInputRepository(yaml_dir), store)


def build_row(period_index=1, year=2025, month=1, **overrides):
    """Hand-built monthly record with neutral defaults."""
    values = dict(
        project_id="test",
        scenario_id=None,
        year=year,
        month=month,
        period_index=period_index,
        revenue=0.0,
        cogs=0.0,
        gross_margin=0.0,
        gross_margin_percent=0.0,
        opex_total=0.0,
        depreciation=0.0,
        ebitda=0.0,
        ebit=0.0,
        net_income=0.0,
        loan_payments=0.0,
        interest_paid=0.0,
        principal_repaid=0.0,
        cash_flow=0.0,
        cash_balance=0.0,
        debt_balance=0.0,
        net_fixed_assets=0.0,
        ebitda_margin=0.0,
        net_margin=0.0,
        dscr=None,
        debt_to_equity=0.0,
        current_ratio=0.0,
    )
    values.update(overrides)
    return MonthlyFinancialOutput(**values)


@pytest.fixture
def make_series():
    """Build a series from per-month override dicts, chaining periods."""
    def _make(rows):
        series = []
        year, month = 2025, 1
        for index, overrides in enumerate(rows, start=1):
            series.append(build_row(period_index=index, year=year, month=month, **overrides))
            month += 1
            if month > 12:
                month = 1
                year += 1
        return series
    return _make
