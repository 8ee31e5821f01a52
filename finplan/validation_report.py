# =============================================================================
# FINPLAN ENGINE - MODEL VALIDATION REPORT
# =============================================================================
# Rule checks on a project's inputs and calculated series.
#
# RULES:
# - has_products, has_sales_projections
# - reasonable_gross_margin: first-year average in [-50%, 95%]
# - reasonable_ebitda_margin: first-year average in [-100%, 80%]
# - adequate_dscr: minimum DSCR >= 1.2 (months with debt service only)
# =============================================================================

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .inputs import ProjectInputs
from .projection import MonthlyFinancialOutput, validate_projection_output
from .risk import min_dscr
from .scenario import ScenarioResult, validate_scenario_ordering
from .valuation import ValuationOutput, validate_valuation_output

FIRST_YEAR_MONTHS = 12
GROSS_MARGIN_RANGE = (-50.0, 95.0)
EBITDA_MARGIN_RANGE = (-100.0, 80.0)
MIN_DSCR = 1.2


@dataclass
class CheckResult:
    """Result of a single validation rule."""
    rule: str
    passed: bool
    description: str = ""
    message: str = ""
    value: Optional[float] = None


@dataclass
class ValidationReport:
    """Complete validation report."""
    timestamp: str = ""
    project_id: str = ""
    scenario_id: str = ""

    # Results by category
    input_checks: List[CheckResult] = field(default_factory=list)
    output_checks: List[CheckResult] = field(default_factory=list)
    engine_checks: Dict[str, List[CheckResult]] = field(default_factory=dict)

    # Summary
    total_passed: int = 0
    total_failed: int = 0
    overall_passed: bool = False

    def all_checks(self) -> List[CheckResult]:
        checks = list(self.input_checks) + list(self.output_checks)
        for results in self.engine_checks.values():
            checks.extend(results)
        return checks

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "project_id": self.project_id,
            "scenario_id": self.scenario_id,
            "validations": [vars(check) for check in self.all_checks()],
            "total_passed": self.total_passed,
            "total_failed": self.total_failed,
            "overall_passed": self.overall_passed,
        }


def check_inputs(inputs: ProjectInputs) -> List[CheckResult]:
    """Mandatory data checks."""
    has_products = len(inputs.products) > 0
    has_sales = len(inputs.sales_projections) > 0
    return [
        CheckResult(
            "has_products", has_products,
            "Project must have at least one product or service",
            "" if has_products else "create products first",
        ),
        CheckResult(
            "has_sales_projections", has_sales,
            "Project must have sales projections",
            "" if has_sales else "create sales projections first",
        ),
    ]


def _first_year_average(values: Sequence[float]) -> float:
    window = list(values)[:FIRST_YEAR_MONTHS]
    return sum(window) / len(window)


def check_outputs(outputs: Sequence[MonthlyFinancialOutput]) -> List[CheckResult]:
    """
    Reasonableness checks on a calculated series.

    Margin checks average the first twelve months; they are skipped for an
    empty series. The DSCR check is skipped when no month carries debt
    service.
    """
    results: List[CheckResult] = []
    if not outputs:
        return results

    low, high = GROSS_MARGIN_RANGE
    gross = _first_year_average([row.gross_margin_percent for row in outputs])
    results.append(CheckResult(
        "reasonable_gross_margin", low <= gross <= high,
        f"Gross margin should be between {low:.0f}% and {high:.0f}%",
        f"first-year average {gross:.2f}%", gross,
    ))

    low, high = EBITDA_MARGIN_RANGE
    ebitda = _first_year_average([row.ebitda_margin for row in outputs])
    results.append(CheckResult(
        "reasonable_ebitda_margin", low <= ebitda <= high,
        f"EBITDA margin should be between {low:.0f}% and {high:.0f}%",
        f"first-year average {ebitda:.2f}%", ebitda,
    ))

    dscr = min_dscr(outputs)
    if dscr is not None:
        results.append(CheckResult(
            "adequate_dscr", dscr >= MIN_DSCR,
            f"DSCR should be at least {MIN_DSCR}",
            f"minimum {dscr:.2f}", dscr,
        ))

    return results


def _from_errors(rule: str, errors: List[str]) -> CheckResult:
    if errors:
        return CheckResult(rule, False, message="; ".join(errors[:3]))
    return CheckResult(rule, True)


def generate_validation_report(
    inputs: ProjectInputs,
    outputs: Sequence[MonthlyFinancialOutput],
    valuation: Optional[ValuationOutput] = None,
    sensitivity: Optional[Dict[str, ScenarioResult]] = None,
    scenario_id: Optional[str] = None
) -> ValidationReport:
    """
    Generate the model validation report.

    Args:
        inputs: Project inputs snapshot
        outputs: Calculated (or stored) monthly series
        valuation: Valuation of the series, when available
        sensitivity: Sensitivity bands, checked for ordering when given
        scenario_id: Scenario the series belongs to

    Returns:
        ValidationReport with all rule results
    """
    report = ValidationReport(
        timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        project_id=inputs.project_id,
        scenario_id=scenario_id or "base",
    )

    report.input_checks = check_inputs(inputs)
    report.output_checks = check_outputs(outputs)

    if outputs:
        report.engine_checks["Projection"] = [
            _from_errors("series_identities", validate_projection_output(outputs))
        ]
    if valuation is not None:
        report.engine_checks["Valuation"] = [
            _from_errors("valuation_ranges", validate_valuation_output(valuation))
        ]
    if sensitivity:
        report.engine_checks["Scenarios"] = [
            _from_errors("scenario_ordering", validate_scenario_ordering(sensitivity))
        ]

    checks = report.all_checks()
    report.total_passed = sum(1 for check in checks if check.passed)
    report.total_failed = sum(1 for check in checks if not check.passed)
    report.overall_passed = report.total_failed == 0

    return report


def format_report(report: ValidationReport) -> str:
    """Format validation report as text."""
    lines = [
        "=" * 60,
        "VALIDATION REPORT",
        "=" * 60,
        f"Date: {report.timestamp}",
        f"Project: {report.project_id}",
        f"Scenario: {report.scenario_id}",
        "",
        "MODEL RULES",
        "-" * 40
    ]

    for check in report.input_checks + report.output_checks:
        status = "PASSED" if check.passed else "FAILED"
        detail = f" ({check.message})" if check.message else ""
        lines.append(f"{check.rule}: {status}{detail}")

    if report.engine_checks:
        lines.extend([
            "",
            "ENGINE CHECKS",
            "-" * 40
        ])
        for engine, checks in report.engine_checks.items():
            passed = sum(1 for check in checks if check.passed)
            status = "PASSED" if passed == len(checks) else "FAILED"
            lines.append(f"{engine}: {passed}/{len(checks)} {status}")

    lines.extend([
        "",
        "=" * 60,
        f"OVERALL: {'PASSED' if report.overall_passed else 'FAILED'}",
        f"Total: {report.total_passed} passed, {report.total_failed} failed",
        "=" * 60
    ])

    return "\n".join(lines)


# =============================================================================
# END OF MODEL VALIDATION REPORT
# =============================================================================
