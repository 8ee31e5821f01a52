# =============================================================================
# FINPLAN ENGINE - SCENARIO COMPARATOR / SENSITIVITY ENGINE
# =============================================================================
# Re-runs the projection under alternate scenario factors and compares them.
#
# KEY PRINCIPLES:
# - Scenarios change FACTORS only, never formulas
# - Pure functions, no shared state between runs
# - Deterministic: same inputs -> same outputs
# - Ordering validation: Pessimistic <= Base <= Optimistic
# =============================================================================

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from .inputs import BASE_FACTORS, ProjectInputs, Scenario, ScenarioFactors
from .projection import ProjectionOutput, projection_engine, total_capex
from .valuation import ValuationOutput, ValuationParams, load_valuation_params, valuation_engine

logger = logging.getLogger(__name__)

BASE_SCENARIO_ID = "base"

# Fixed stress set: (scenario id, factor multipliers)
STRESS_CASES = (
    ("revenue_down_20", {"revenue_factor": 0.8}),
    ("cost_up_20", {"cost_factor": 1.2}),
    ("opex_up_20", {"opex_factor": 1.2}),
    ("capex_up_20", {"capex_factor": 1.2}),
    ("combined_downturn", {"revenue_factor": 0.8, "cost_factor": 1.2, "opex_factor": 1.2}),
)

COMPARED_METRICS = ("total_revenue", "net_profit", "npv", "irr", "dscr_min")


@dataclass
class ScenarioResult:
    """Complete results for one scenario."""
    scenario_id: str
    name: str = ""
    scenario_type: str = "custom"
    factors: ScenarioFactors = BASE_FACTORS

    # Engine outputs
    projection: Optional[ProjectionOutput] = None
    valuation: Optional[ValuationOutput] = None

    # Key metrics summary
    total_revenue: float = 0.0
    net_profit: float = 0.0
    npv: float = 0.0
    irr: float = 0.0
    irr_converged: bool = False
    dscr_min: Optional[float] = None

    # Validation
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def metrics(self) -> Dict:
        return {metric: getattr(self, metric) for metric in COMPARED_METRICS + ("irr_converged",)}


@dataclass
class ComparisonMatrix:
    """Comparison of multiple scenarios."""
    scenarios: List[str] = field(default_factory=list)
    base_scenario: Optional[str] = None
    metrics: Dict[str, Dict[str, Optional[float]]] = field(default_factory=dict)
    deltas: Dict[str, Dict[str, float]] = field(default_factory=dict)  # relative to base

    revenue_variance: float = 0.0
    profit_variance: float = 0.0
    npv_variance: float = 0.0
    best_case: Optional[str] = None
    worst_case: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "scenarios": list(self.scenarios),
            "base_scenario": self.base_scenario,
            "metrics": self.metrics,
            "deltas": self.deltas,
            "comparison_metrics": {
                "revenue_variance": self.revenue_variance,
                "profit_variance": self.profit_variance,
                "npv_variance": self.npv_variance,
                "best_case": self.best_case,
                "worst_case": self.worst_case,
            },
        }


def base_scenario(name: str = "Base case") -> Scenario:
    return Scenario(scenario_id=BASE_SCENARIO_ID, name=name, scenario_type="base")


def run_scenario(
    inputs: ProjectInputs,
    scenario: Optional[Scenario] = None,
    params: Optional[ValuationParams] = None
) -> ScenarioResult:
    """
    Execute projection and valuation for one scenario.

    Execution order:
    1. Projection Engine with the scenario's factors
    2. Valuation Engine on the resulting monthly series

    Args:
        inputs: Project inputs snapshot (never mutated)
        scenario: Scenario to apply; None runs the base case
        params: Valuation parameters; loaded from the input settings when None

    Returns:
        ScenarioResult
    """
    scenario = scenario or base_scenario()
    params = params or load_valuation_params(inputs.settings)

    result = ScenarioResult(
        scenario_id=scenario.scenario_id,
        name=scenario.name,
        scenario_type=scenario.scenario_type,
        factors=scenario.factors,
    )

    # 1. Projection Engine
    stored_id = None if scenario.scenario_id == BASE_SCENARIO_ID else scenario.scenario_id
    result.projection = projection_engine(inputs, scenario_id=stored_id, factors=scenario.factors)
    result.warnings.extend(result.projection.warnings)

    # 2. Valuation Engine
    result.valuation = valuation_engine(
        result.projection.outputs,
        params,
        initial_investment=total_capex(inputs.capex, scenario.factors),
    )
    result.warnings.extend(result.valuation.warnings)

    # Extract key metrics
    result.total_revenue = result.valuation.total_revenue
    result.net_profit = result.valuation.net_profit
    result.npv = result.valuation.npv
    result.irr = result.valuation.irr
    result.irr_converged = result.valuation.irr_converged
    result.dscr_min = result.valuation.dscr_min

    logger.debug(
        "Scenario %s: revenue=%.0f net_profit=%.0f npv=%.2f",
        result.scenario_id, result.total_revenue, result.net_profit, result.npv,
    )
    return result


def run_all_scenarios(
    inputs: ProjectInputs,
    scenarios: Optional[Sequence[Scenario]] = None,
    params: Optional[ValuationParams] = None
) -> Dict[str, ScenarioResult]:
    """
    Run scenarios independently and collect results.

    Args:
        inputs: Project inputs snapshot
        scenarios: Scenarios to run (defaults to the project's scenarios)
        params: Valuation parameters

    Returns:
        Dict mapping scenario_id to ScenarioResult, in run order
    """
    if scenarios is None:
        scenarios = inputs.scenarios
    results = {}
    for scenario in scenarios:
        results[scenario.scenario_id] = run_scenario(inputs, scenario, params)
    return results


def calculate_variance(values: Sequence[float]) -> float:
    """
    Population variance.

    Formula: SUM((x - mean)^2) / N (0 for an empty sequence)
    """
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)


def _pick_base(results: Mapping[str, ScenarioResult], base_id: Optional[str]) -> Optional[str]:
    if base_id is not None and base_id in results:
        return base_id
    for scenario_id, result in results.items():
        if result.scenario_type == "base":
            return scenario_id
    return next(iter(results), None)


def compare_scenarios(
    results: Mapping[str, ScenarioResult],
    base_id: Optional[str] = None
) -> ComparisonMatrix:
    """
    Generate comparison matrix and variance analysis.

    best_case and worst_case are picked by NPV; on ties the first scenario
    encountered is kept.

    Args:
        results: Scenario results in run order
        base_id: Reference scenario for deltas (defaults to the first of type
            "base", else the first result)

    Returns:
        ComparisonMatrix
    """
    matrix = ComparisonMatrix()
    matrix.scenarios = list(results.keys())
    if not results:
        return matrix

    matrix.base_scenario = _pick_base(results, base_id)
    base_result = results[matrix.base_scenario]

    for metric in COMPARED_METRICS:
        matrix.metrics[metric] = {}
        matrix.deltas[metric] = {}

        for scenario_id, result in results.items():
            value = getattr(result, metric)
            matrix.metrics[metric][scenario_id] = value

            base_value = getattr(base_result, metric)
            if value is not None and base_value:
                matrix.deltas[metric][scenario_id] = (value - base_value) / abs(base_value)

    ordered = list(results.values())
    matrix.revenue_variance = calculate_variance([r.total_revenue for r in ordered])
    matrix.profit_variance = calculate_variance([r.net_profit for r in ordered])
    matrix.npv_variance = calculate_variance([r.npv for r in ordered])

    best = ordered[0]
    worst = ordered[0]
    for result in ordered[1:]:
        if result.npv > best.npv:
            best = result
        if result.npv < worst.npv:
            worst = result
    matrix.best_case = best.scenario_id
    matrix.worst_case = worst.scenario_id

    return matrix


def sensitivity_analysis(
    inputs: ProjectInputs,
    params: Optional[ValuationParams] = None,
    step: Optional[float] = None,
    base_factors: ScenarioFactors = BASE_FACTORS
) -> Dict[str, ScenarioResult]:
    """
    Run base, optimistic and pessimistic revenue bands.

    Optimistic multiplies the revenue factor by (1 + step), pessimistic by
    (1 - step). Step defaults to the `sensitivity.step` setting.
    """
    if step is None:
        step = float((inputs.settings.get("sensitivity") or {}).get("step", 0.2))

    bands = (
        Scenario(BASE_SCENARIO_ID, "Base case", "base", base_factors),
        Scenario("optimistic", f"Revenue +{step:.0%}", "optimistic",
                 base_factors.scaled(revenue_factor=1 + step)),
        Scenario("pessimistic", f"Revenue -{step:.0%}", "pessimistic",
                 base_factors.scaled(revenue_factor=1 - step)),
    )
    return run_all_scenarios(inputs, bands, params)


def stress_test(
    inputs: ProjectInputs,
    params: Optional[ValuationParams] = None,
    base_factors: ScenarioFactors = BASE_FACTORS
) -> Dict[str, ScenarioResult]:
    """Run the base case followed by the fixed stress set."""
    cases = [Scenario(BASE_SCENARIO_ID, "Base case", "base", base_factors)]
    for scenario_id, multipliers in STRESS_CASES:
        cases.append(Scenario(
            scenario_id, scenario_id.replace("_", " "), "stress",
            base_factors.scaled(**multipliers),
        ))
    return run_all_scenarios(inputs, cases, params)


def _first_of_type(results: Mapping[str, ScenarioResult], scenario_type: str) -> Optional[ScenarioResult]:
    for result in results.values():
        if result.scenario_type == scenario_type:
            return result
    return results.get(scenario_type)


def validate_scenario_ordering(
    results: Mapping[str, ScenarioResult]
) -> List[str]:
    """
    Validate: Pessimistic <= Base <= Optimistic for key metrics.

    Returns list of ordering violations (blocking errors).
    """
    errors = []

    pess = _first_of_type(results, "pessimistic")
    base = _first_of_type(results, "base")
    opt = _first_of_type(results, "optimistic")

    if not (pess and base and opt):
        return []  # Can't validate without all three

    for metric in ("total_revenue", "net_profit", "npv"):
        pess_val = getattr(pess, metric)
        base_val = getattr(base, metric)
        opt_val = getattr(opt, metric)

        if not (pess_val <= base_val <= opt_val):
            errors.append(
                f"Scenario ordering violation for {metric}: "
                f"Pessimistic ({pess_val:.2f}) <= Base ({base_val:.2f}) <= "
                f"Optimistic ({opt_val:.2f}) is not satisfied"
            )

    return errors


# =============================================================================
# END OF SCENARIO COMPARATOR / SENSITIVITY ENGINE
# =============================================================================
