"""
Calculation service.

Entry points used by outer layers (CLI, web handlers): trigger, status and
delete of a stored calculation, plus metrics, risks, scenario comparison,
sensitivity and model validation on top of it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from .errors import FinplanError, ScenarioNotFoundError
from .inputs import ProjectInputs, Scenario
from .projection import MonthlyFinancialOutput, projection_engine, summarize_outputs, total_capex
from .risk import RiskOutput, load_risk_thresholds, risk_engine
from .scenario import (
    BASE_SCENARIO_ID,
    ComparisonMatrix,
    ScenarioResult,
    base_scenario,
    compare_scenarios,
    run_all_scenarios,
    sensitivity_analysis,
    stress_test,
)
from .store import FinancialOutputStore
from .validation_report import ValidationReport, generate_validation_report
from .valuation import ValuationOutput, load_valuation_params, valuation_engine

logger = logging.getLogger(__name__)


class InputRepository(Protocol):
    def load(self, project_id: str) -> ProjectInputs:
        ...


@dataclass
class CalculationResult:
    """Outcome of a trigger-calculation call."""
    project_id: str
    scenario_id: Optional[str]
    message: str
    recalculated: bool
    months_calculated: int = 0
    summary: Dict = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "project_id": self.project_id,
            "scenario_id": self.scenario_id,
            "message": self.message,
            "recalculated": self.recalculated,
            "months_calculated": self.months_calculated,
            "summary": self.summary,
            "warnings": list(self.warnings),
        }


@dataclass
class CalculationStatus:
    has_calculations: bool
    last_calculation: Optional[datetime]
    total_months: int
    summary: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "has_calculations": self.has_calculations,
            "last_calculation": self.last_calculation.isoformat() if self.last_calculation else None,
            "total_months": self.total_months,
            "summary": self.summary,
        }


class CalculationService:
    """Runs calculations for projects and serves results from the store."""

    def __init__(self, repository: InputRepository, store: FinancialOutputStore):
        self.repository = repository
        self.store = store

    def _resolve_scenario(self, inputs: ProjectInputs, scenario_id: Optional[str]) -> Optional[Scenario]:
        if scenario_id is None:
            return None
        scenario = inputs.get_scenario(scenario_id)
        if scenario is None:
            raise ScenarioNotFoundError(
                f"Scenario {scenario_id} not found for project {inputs.project_id}"
            )
        return scenario

    def _capex(self, inputs: ProjectInputs, scenario: Optional[Scenario]) -> float:
        """Initial investment of a run; the scenario capex factor applies."""
        if scenario is None:
            return total_capex(inputs.capex)
        return total_capex(inputs.capex, scenario.factors)

    def trigger_calculation(
        self,
        project_id: str,
        scenario_id: Optional[str] = None,
        force: bool = False
    ) -> CalculationResult:
        """
        Calculate and store the monthly series.

        Idempotent unless forced: when a series already exists it is left
        untouched and recalculated is False.

        Raises:
            ProjectNotFoundError, ScenarioNotFoundError, PreconditionError
        """
        if not force and self.store.has_outputs(project_id, scenario_id):
            logger.info("Calculations already exist for project=%s scenario=%s", project_id, scenario_id or "base")
            outputs = self.store.load_outputs(project_id, scenario_id)
            return CalculationResult(
                project_id=project_id,
                scenario_id=scenario_id,
                message="Calculations already exist",
                recalculated=False,
                months_calculated=len(outputs),
                summary=summarize_outputs(outputs),
            )

        inputs = self.repository.load(project_id)
        scenario = self._resolve_scenario(inputs, scenario_id)
        factors = scenario.factors if scenario else None
        projection = projection_engine(inputs, scenario_id=scenario_id, factors=factors)
        self.store.replace_outputs(project_id, scenario_id, projection.outputs)

        return CalculationResult(
            project_id=project_id,
            scenario_id=scenario_id,
            message="Calculations completed successfully",
            recalculated=True,
            months_calculated=len(projection.outputs),
            summary=projection.summary,
            warnings=projection.warnings,
        )

    def recalculate_scenarios(self, project_id: str, scenario_ids: Sequence[str]) -> List[Dict]:
        """Force recalculation of several scenarios; failures are reported per scenario."""
        results = []
        for scenario_id in scenario_ids:
            try:
                result = self.trigger_calculation(project_id, scenario_id, force=True)
            except FinplanError as exc:
                logger.warning("Recalculation failed for scenario %s: %s", scenario_id, exc)
                results.append({"scenario_id": scenario_id, "success": False, "error": str(exc)})
            else:
                results.append({"scenario_id": scenario_id, "success": True, "data": result.to_dict()})
        return results

    def get_status(self, project_id: str, scenario_id: Optional[str] = None) -> CalculationStatus:
        outputs = self.store.load_outputs(project_id, scenario_id)
        return CalculationStatus(
            has_calculations=bool(outputs),
            last_calculation=self.store.last_calculated_at(project_id, scenario_id),
            total_months=len(outputs),
            summary=summarize_outputs(outputs) if outputs else {},
        )

    def delete_calculation(self, project_id: str, scenario_id: Optional[str] = None) -> int:
        return self.store.delete_outputs(project_id, scenario_id)

    def load_outputs(self, project_id: str, scenario_id: Optional[str] = None) -> List[MonthlyFinancialOutput]:
        return self.store.load_outputs(project_id, scenario_id)

    def get_metrics(self, project_id: str, scenario_id: Optional[str] = None) -> ValuationOutput:
        """Valuation of the stored series."""
        inputs = self.repository.load(project_id)
        scenario = self._resolve_scenario(inputs, scenario_id)
        outputs = self.store.load_outputs(project_id, scenario_id)
        return valuation_engine(
            outputs, load_valuation_params(inputs.settings), initial_investment=self._capex(inputs, scenario)
        )

    def get_risks(self, project_id: str, scenario_id: Optional[str] = None) -> RiskOutput:
        """Risk indicators and alerts of the stored series."""
        inputs = self.repository.load(project_id)
        outputs = self.store.load_outputs(project_id, scenario_id)
        return risk_engine(outputs, load_risk_thresholds(inputs.settings))

    def compare_scenarios(
        self,
        project_id: str,
        scenario_ids: Optional[Sequence[str]] = None,
        include_base: bool = True
    ) -> ComparisonMatrix:
        """Run the base case and the selected scenarios, then compare them."""
        inputs = self.repository.load(project_id)
        if scenario_ids is None:
            scenarios = list(inputs.scenarios)
        else:
            scenarios = [self._resolve_scenario(inputs, sid) for sid in scenario_ids]
        if include_base and not any(
            s.scenario_type == "base" or s.scenario_id == BASE_SCENARIO_ID for s in scenarios
        ):
            scenarios.insert(0, base_scenario())
        results = run_all_scenarios(inputs, scenarios, load_valuation_params(inputs.settings))
        return compare_scenarios(results)

    def sensitivity(self, project_id: str, step: Optional[float] = None) -> Dict[str, ScenarioResult]:
        inputs = self.repository.load(project_id)
        return sensitivity_analysis(inputs, load_valuation_params(inputs.settings), step)

    def stress_test(self, project_id: str) -> Dict[str, ScenarioResult]:
        inputs = self.repository.load(project_id)
        return stress_test(inputs, load_valuation_params(inputs.settings))

    def validate_model(self, project_id: str, scenario_id: Optional[str] = None) -> ValidationReport:
        """
        Rule checks on inputs and the stored series.

        Input checks are always reported; output checks only when a series
        is stored.
        """
        inputs = self.repository.load(project_id)
        scenario = self._resolve_scenario(inputs, scenario_id)
        outputs = self.store.load_outputs(project_id, scenario_id)
        valuation = None
        sensitivity = None
        if outputs:
            valuation = valuation_engine(
                outputs, load_valuation_params(inputs.settings), initial_investment=self._capex(inputs, scenario)
            )
        if inputs.products and inputs.sales_projections:
            sensitivity = sensitivity_analysis(inputs, load_valuation_params(inputs.settings))
        return generate_validation_report(inputs, outputs, valuation, sensitivity, scenario_id)
