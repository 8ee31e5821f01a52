"""Assumptions loading, settings merge and validation utilities."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Dict, List, Mapping

import yaml

from .errors import ProjectNotFoundError
from .inputs import (
    OPEX_FREQUENCIES,
    SCENARIO_FACTOR_KEYS,
    ProjectInputs,
    build_project_inputs,
    parse_start_date,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict = {
    "valuation": {
        "wacc": 0.12,
        "initial_investment": None,  # None -> total capex
        "irr_guess": 0.12,
        "irr_max_iterations": 100,
        "irr_tolerance": 0.01,
    },
    "risk": {
        "dscr_medium": 1.2,
        "dscr_high": 1.0,
        "loss_share_medium": 0.5,
        "loss_share_high": 0.8,
        "consecutive_losses_alert": 3,
    },
    "sensitivity": {
        "step": 0.2,
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base; lists are replaced, not merged."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_yaml_file(path: Path) -> dict:
    """Load a YAML file and return an object (empty dict for empty files)."""
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_engine_settings(assumptions: Mapping) -> dict:
    """Merge the project's `settings` section over the engine defaults."""
    return deep_merge(DEFAULT_SETTINGS, dict(assumptions.get("settings") or {}))


def load_project_assumptions(project_id: str, assumptions_dir: Path) -> dict:
    """Load `<assumptions_dir>/<project_id>.yaml`."""
    path = Path(assumptions_dir) / f"{project_id}.yaml"
    if not path.exists():
        raise ProjectNotFoundError(f"Project not found: {project_id} ({path})")
    logger.debug("Loading assumptions from %s", path)
    return load_yaml_file(path)


def _number(value, label: str, errors: List[str], cast=float):
    """Convert a numeric field, recording an error instead of raising."""
    try:
        return cast(value)
    except (TypeError, ValueError):
        errors.append(f"{label} is not a number: {value!r}")
        return None


def validate_assumptions(assumptions: Dict) -> List[str]:
    """
    Validate assumptions structure and key constraints.

    Precondition checks (products, sales projections) are not repeated here;
    they are raised by the projection engine before any month is computed.
    """
    errors: List[str] = []

    if "project" not in assumptions:
        errors.append("Missing required section: project")

    project = assumptions.get("project", {}) or {}
    if project.get("start_date"):
        try:
            parse_start_date(project["start_date"])
        except ValueError as exc:
            errors.append(str(exc))
    elif project and "start_year" not in project:
        errors.append("project requires start_date or start_year")

    horizon = project.get("horizon_years", 3)
    if not isinstance(horizon, int) or horizon < 1:
        errors.append(f"horizon_years invalid: {horizon} (must be an integer >= 1)")

    product_ids = {str(p.get("id")) for p in assumptions.get("products", []) or []}
    for product in assumptions.get("products", []) or []:
        label = f"product {product.get('id')}"
        price = _number(product.get("unit_price", 0.0), f"{label} unit_price", errors)
        cost = _number(product.get("unit_cost", 0.0), f"{label} unit_cost", errors)
        if (price is not None and price < 0) or (cost is not None and cost < 0):
            errors.append(f"product {product.get('id')} has a negative unit price or cost")

    for sale in assumptions.get("sales_projections", []) or []:
        product_id = str(sale.get("product_id"))
        if product_id not in product_ids:
            errors.append(f"sales projection references unknown product: {product_id}")
        month = sale.get("month", 0)
        if not isinstance(month, int) or month < 1 or month > 12:
            errors.append(f"sales projection month out of range for {product_id}: {month}")
        volume = _number(sale.get("volume", 0.0), f"sales volume for {product_id}", errors)
        if volume is not None and volume < 0:
            errors.append(f"negative sales volume for {product_id}: {sale.get('volume')}")

    for item in assumptions.get("opex", []) or []:
        frequency = item.get("frequency", "monthly")
        if frequency not in OPEX_FREQUENCIES:
            errors.append(f"opex {item.get('name', '<unnamed>')} has unknown frequency: {frequency}")

    for item in assumptions.get("capex", []) or []:
        label = f"capex {item.get('name', '<unnamed>')}"
        amount = _number(item.get("amount", 0.0), f"{label} amount", errors)
        residual = _number(item.get("residual_value", 0.0) or 0.0, f"{label} residual_value", errors)
        if amount is not None and residual is not None and residual > amount:
            errors.append(f"{label} residual_value ({residual}) > amount ({amount})")
        years = _number(item.get("depreciation_years", 0), f"{label} depreciation_years", errors, int)
        if years is not None and years <= 0:
            errors.append(f"{label} depreciation_years must be > 0")

    for loan in assumptions.get("loans", []) or []:
        label = f"loan {loan.get('name', '<unnamed>')}"
        duration = _number(loan.get("duration_months", 0), f"{label} duration_months", errors, int)
        if duration is not None and duration <= 0:
            errors.append(f"{label} duration_months must be > 0")
        grace = _number(loan.get("grace_period_months", 0) or 0, f"{label} grace_period_months", errors, int)
        if grace is not None and grace < 0:
            errors.append(f"{label} grace_period_months must be >= 0")
        rate = _number(loan.get("interest_rate", 0.0), f"{label} interest_rate", errors)
        if rate is not None and rate < 0:
            errors.append(f"{label} interest_rate must be >= 0")

    scenario_ids = [str(s.get("id")) for s in assumptions.get("scenarios", []) or []]
    if len(scenario_ids) != len(set(scenario_ids)):
        errors.append("duplicate scenario ids")
    for scenario in assumptions.get("scenarios", []) or []:
        factors = scenario.get("factors", scenario) or {}
        for key in SCENARIO_FACTOR_KEYS:
            if factors.get(key) is not None:
                _number(factors[key], f"scenario {scenario.get('id')} {key}", errors)

    wacc = _number(load_engine_settings(assumptions)["valuation"]["wacc"], "wacc", errors)
    if wacc is not None and wacc <= -1:
        errors.append(f"wacc ({wacc}) must be > -1")

    return errors


class YamlInputRepository:
    """Reads project inputs from YAML files in one directory."""

    def __init__(self, assumptions_dir: Path):
        self.assumptions_dir = Path(assumptions_dir)

    def load_assumptions(self, project_id: str) -> dict:
        return load_project_assumptions(project_id, self.assumptions_dir)

    def load(self, project_id: str) -> ProjectInputs:
        assumptions = self.load_assumptions(project_id)
        settings = load_engine_settings(assumptions)
        return build_project_inputs(project_id, assumptions, settings)
