import copy
from pathlib import Path

import pytest

from finplan.assumptions import (
    YamlInputRepository,
    deep_merge,
    load_engine_settings,
    load_project_assumptions,
    validate_assumptions,
)
from finplan.errors import InputValidationError, ProjectNotFoundError
from finplan.inputs import ScenarioFactors, build_project_inputs, parse_start_date


def test_deep_merge_keeps_originals():
    base = {"a": {"x": 1}, "b": 1}
    override = {"a": {"y": 2}}
    merged = deep_merge(base, override)
    assert merged == {"a": {"x": 1, "y": 2}, "b": 1}
    assert base == {"a": {"x": 1}, "b": 1}


def test_engine_settings_merge_over_defaults():
    settings = load_engine_settings({"settings": {"valuation": {"wacc": 0.08}}})
    assert settings["valuation"]["wacc"] == 0.08
    assert settings["valuation"]["irr_max_iterations"] == 100
    assert settings["sensitivity"]["step"] == 0.2


def test_validate_assumptions_happy_path(full_assumptions):
    assert validate_assumptions(full_assumptions) == []


def test_validate_assumptions_catches_bad_records(full_assumptions):
    bad = copy.deepcopy(full_assumptions)
    bad["sales_projections"].append({"product_id": "ghost", "year": 2025, "month": 13, "volume": -1})
    bad["capex"][0]["residual_value"] = 10_000_000
    bad["opex"][0]["frequency"] = "weekly"
    bad["scenarios"].append({"id": "base"})
    errors = validate_assumptions(bad)
    assert any("unknown product: ghost" in err for err in errors)
    assert any("month out of range" in err for err in errors)
    assert any("negative sales volume" in err for err in errors)
    assert any("residual_value" in err for err in errors)
    assert any("unknown frequency" in err for err in errors)
    assert any("duplicate scenario ids" in err for err in errors)


def test_parse_start_date():
    assert parse_start_date("2025-07-01") == (2025, 7)
    assert parse_start_date("2026-03") == (2026, 3)
    with pytest.raises(InputValidationError):
        parse_start_date("2025")
    with pytest.raises(InputValidationError):
        parse_start_date("2025-13-01")


def test_build_inputs(full_inputs):
    assert full_inputs.project_id == "acme"
    assert full_inputs.project.horizon_months == 24
    assert [p.product_id for p in full_inputs.products] == ["juice", "syrup"]
    assert len(full_inputs.sales_projections) == 48
    assert full_inputs.opex[0].start_year == 2025
    assert full_inputs.get_scenario("optimistic").factors == ScenarioFactors(revenue_factor=1.2)
    assert full_inputs.get_scenario(None) is None
    assert full_inputs.get_scenario("missing") is None


def test_duplicate_sales_first_entry_wins(minimal_assumptions):
    data = copy.deepcopy(minimal_assumptions)
    data["sales_projections"].append({"product_id": "p1", "year": 2025, "month": 1, "volume": 999})
    inputs = build_project_inputs("mini", data)
    assert inputs.sales_volume_index()[("p1", 2025, 1)] == 50


def test_loader_rejects_invalid_records(minimal_assumptions):
    data = copy.deepcopy(minimal_assumptions)
    data["opex"] = [{"name": "x", "amount": 1, "frequency": "weekly"}]
    with pytest.raises(InputValidationError):
        build_project_inputs("mini", data)

    data = copy.deepcopy(minimal_assumptions)
    data["loans"] = [{"principal_amount": 1000, "duration_months": 0, "start_year": 2025}]
    with pytest.raises(InputValidationError):
        build_project_inputs("mini", data)


def test_loader_rejects_non_numeric_values(minimal_assumptions):
    data = copy.deepcopy(minimal_assumptions)
    data["products"][0]["unit_price"] = "n/a"
    with pytest.raises(InputValidationError, match="Invalid value in project mini"):
        build_project_inputs("mini", data)

    data = copy.deepcopy(minimal_assumptions)
    data["scenarios"] = [{"id": "up", "factors": {"revenue_factor": "abc"}}]
    with pytest.raises(InputValidationError, match="revenue_factor is not a number"):
        build_project_inputs("mini", data)


def test_validate_assumptions_reports_non_numeric_values(full_assumptions):
    bad = copy.deepcopy(full_assumptions)
    bad["products"][0]["unit_price"] = "n/a"
    bad["loans"][0]["interest_rate"] = "twelve"
    bad["scenarios"][1]["factors"]["revenue_factor"] = "abc"
    errors = validate_assumptions(bad)
    assert "product juice unit_price is not a number: 'n/a'" in errors
    assert "loan Bank loan interest_rate is not a number: 'twelve'" in errors
    assert "scenario optimistic revenue_factor is not a number: 'abc'" in errors


def test_scenario_factor_defaults():
    assert ScenarioFactors.from_mapping({"revenue_factor": None}) == ScenarioFactors()
    assert ScenarioFactors.from_mapping({"cost_factor": 0}).cost_factor == 0.0
    assert ScenarioFactors(revenue_factor=2.0).scaled(revenue_factor=0.5).revenue_factor == 1.0
    with pytest.raises(KeyError):
        ScenarioFactors().scaled(tax_factor=2.0)


def test_load_project_assumptions(yaml_dir: Path):
    data = load_project_assumptions("acme", yaml_dir)
    assert data["project"]["name"] == "Acme"
    with pytest.raises(ProjectNotFoundError):
        load_project_assumptions("nope", yaml_dir)


def test_yaml_repository(yaml_dir: Path, full_inputs):
    inputs = YamlInputRepository(yaml_dir).load("acme")
    assert inputs == full_inputs


def test_demo_project_is_valid(assumptions_dir: Path):
    repository = YamlInputRepository(assumptions_dir)
    assert validate_assumptions(repository.load_assumptions("demo")) == []
    inputs = repository.load("demo")
    assert inputs.project.horizon_months == 36
    assert len(inputs.sales_projections) == 72
    assert {s.scenario_id for s in inputs.scenarios} == {"base", "optimistic", "pessimistic"}
