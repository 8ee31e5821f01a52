# =============================================================================
# FINPLAN ENGINE - PROJECT INPUTS
# =============================================================================
# Typed, immutable snapshot of everything a calculation run reads.
#
# RECORDS:
# Project, Product, SalesProjection, OpexItem, CapexItem, Loan, Scenario
#
# KEY PRINCIPLE: inputs are built once per run and never mutated afterwards
# =============================================================================

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import InputValidationError, NoProductsError, NoSalesProjectionsError

OPEX_FREQUENCIES = ("monthly", "quarterly", "yearly")
SCENARIO_FACTOR_KEYS = ("revenue_factor", "cost_factor", "opex_factor", "capex_factor")


@dataclass(frozen=True)
class ScenarioFactors:
    """Multiplicative adjustments applied to each baseline category."""
    revenue_factor: float = 1.0
    cost_factor: float = 1.0
    opex_factor: float = 1.0
    capex_factor: float = 1.0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping]) -> "ScenarioFactors":
        """Build factors from a mapping; missing or null entries default to 1.0."""
        data = data or {}

        def _factor(key: str) -> float:
            value = data.get(key)
            if value is None:
                return 1.0
            try:
                return float(value)
            except (TypeError, ValueError) as exc:
                raise InputValidationError(f"Scenario factor {key} is not a number: {value!r}") from exc

        return cls(
            revenue_factor=_factor("revenue_factor"),
            cost_factor=_factor("cost_factor"),
            opex_factor=_factor("opex_factor"),
            capex_factor=_factor("capex_factor"),
        )

    def scaled(self, **multipliers: float) -> "ScenarioFactors":
        """Return a copy with the named factors multiplied."""
        values = {
            "revenue_factor": self.revenue_factor,
            "cost_factor": self.cost_factor,
            "opex_factor": self.opex_factor,
            "capex_factor": self.capex_factor,
        }
        for key, multiplier in multipliers.items():
            if key not in values:
                raise KeyError(f"Unknown scenario factor: {key}")
            values[key] = values[key] * multiplier
        return ScenarioFactors(**values)


BASE_FACTORS = ScenarioFactors()


@dataclass(frozen=True)
class Project:
    """Project header: horizon and start period."""
    project_id: str
    start_year: int
    start_month: int = 1
    horizon_years: int = 3
    name: str = ""

    @property
    def horizon_months(self) -> int:
        return self.horizon_years * 12


@dataclass(frozen=True)
class Product:
    """Product or service sold by the project."""
    product_id: str
    unit_price: float
    unit_cost: float
    name: str = ""
    unit: str = "unit"


@dataclass(frozen=True)
class SalesProjection:
    """Sales volume of one product in one month."""
    product_id: str
    year: int
    month: int
    volume: float


@dataclass(frozen=True)
class OpexItem:
    """Operating expense line."""
    name: str
    amount: float
    frequency: str = "monthly"  # monthly | quarterly | yearly
    start_year: int = 0


@dataclass(frozen=True)
class CapexItem:
    """Capital expenditure depreciated on a straight line."""
    name: str
    amount: float
    purchase_year: int
    depreciation_years: int
    residual_value: float = 0.0


@dataclass(frozen=True)
class Loan:
    """Amortizing loan with an optional grace period."""
    name: str
    principal_amount: float
    interest_rate: float  # Annual %
    duration_months: int
    start_year: int
    start_month: int = 1
    grace_period_months: int = 0


@dataclass(frozen=True)
class Scenario:
    """Named set of scenario factors."""
    scenario_id: str
    name: str = ""
    scenario_type: str = "custom"
    factors: ScenarioFactors = BASE_FACTORS


@dataclass(frozen=True)
class ProjectInputs:
    """Everything one calculation run reads for a project."""
    project: Project
    products: Tuple[Product, ...] = ()
    sales_projections: Tuple[SalesProjection, ...] = ()
    opex: Tuple[OpexItem, ...] = ()
    capex: Tuple[CapexItem, ...] = ()
    loans: Tuple[Loan, ...] = ()
    scenarios: Tuple[Scenario, ...] = ()
    settings: Mapping = field(default_factory=dict)

    @property
    def project_id(self) -> str:
        return self.project.project_id

    def get_scenario(self, scenario_id: Optional[str]) -> Optional[Scenario]:
        """Find a scenario by id; None for the base case."""
        if scenario_id is None:
            return None
        for scenario in self.scenarios:
            if scenario.scenario_id == scenario_id:
                return scenario
        return None

    def sales_volume_index(self) -> Dict[Tuple[str, int, int], float]:
        """Map (product_id, year, month) to volume; the first entry wins."""
        index: Dict[Tuple[str, int, int], float] = {}
        for projection in self.sales_projections:
            key = (projection.product_id, projection.year, projection.month)
            if key not in index:
                index[key] = projection.volume
        return index


def check_preconditions(inputs: ProjectInputs) -> None:
    """Raise before any month is computed when mandatory data is missing."""
    if not inputs.products:
        raise NoProductsError()
    if not inputs.sales_projections:
        raise NoSalesProjectionsError()


# =============================================================================
# LOADERS
# =============================================================================

def _require(record: Mapping, key: str, kind: str):
    if key not in record or record[key] is None:
        raise InputValidationError(f"{kind} record missing required field '{key}': {dict(record)}")
    return record[key]


def _check_month(month: int, kind: str) -> int:
    month = int(month)
    if month < 1 or month > 12:
        raise InputValidationError(f"{kind} month out of range [1, 12]: {month}")
    return month


def parse_start_date(value: str) -> Tuple[int, int]:
    """Split "YYYY-MM" or "YYYY-MM-DD" into (year, month)."""
    parts = str(value).split("-")
    if len(parts) < 2:
        raise InputValidationError(f"Invalid start_date format: {value}")
    try:
        year = int(parts[0])
        month = int(parts[1])
    except ValueError as exc:
        raise InputValidationError(f"Invalid start_date format: {value}") from exc
    return year, _check_month(month, "project")


def load_project(project_id: str, data: Mapping) -> Project:
    """Load the project header from assumptions."""
    if data.get("start_date"):
        start_year, start_month = parse_start_date(data["start_date"])
    else:
        start_year = int(_require(data, "start_year", "project"))
        start_month = _check_month(data.get("start_month", 1), "project")

    horizon_years = int(data.get("horizon_years", 3))
    if horizon_years < 1:
        raise InputValidationError(f"horizon_years must be >= 1: {horizon_years}")

    return Project(
        project_id=str(data.get("project_id", project_id)),
        start_year=start_year,
        start_month=start_month,
        horizon_years=horizon_years,
        name=str(data.get("name", "")),
    )


def load_products(records: List[Mapping]) -> Tuple[Product, ...]:
    result = []
    for record in records or []:
        result.append(Product(
            product_id=str(_require(record, "id", "product")),
            unit_price=float(record.get("unit_price", 0.0)),
            unit_cost=float(record.get("unit_cost", 0.0)),
            name=str(record.get("name", "")),
            unit=str(record.get("unit", "unit")),
        ))
    return tuple(result)


def load_sales_projections(records: List[Mapping]) -> Tuple[SalesProjection, ...]:
    result = []
    for record in records or []:
        volume = float(record.get("volume", 0.0))
        if volume < 0:
            raise InputValidationError(f"Negative sales volume: {dict(record)}")
        result.append(SalesProjection(
            product_id=str(_require(record, "product_id", "sales projection")),
            year=int(_require(record, "year", "sales projection")),
            month=_check_month(_require(record, "month", "sales projection"), "sales projection"),
            volume=volume,
        ))
    return tuple(result)


def load_opex_items(records: List[Mapping], default_start_year: int) -> Tuple[OpexItem, ...]:
    result = []
    for record in records or []:
        frequency = str(record.get("frequency", "monthly"))
        if frequency not in OPEX_FREQUENCIES:
            raise InputValidationError(
                f"Unknown opex frequency '{frequency}' for {record.get('name', '<unnamed>')}"
            )
        result.append(OpexItem(
            name=str(record.get("name", "")),
            amount=float(_require(record, "amount", "opex")),
            frequency=frequency,
            start_year=int(record.get("start_year", default_start_year)),
        ))
    return tuple(result)


def load_capex_items(records: List[Mapping]) -> Tuple[CapexItem, ...]:
    result = []
    for record in records or []:
        result.append(CapexItem(
            name=str(record.get("name", "")),
            amount=float(_require(record, "amount", "capex")),
            purchase_year=int(_require(record, "purchase_year", "capex")),
            depreciation_years=int(_require(record, "depreciation_years", "capex")),
            residual_value=float(record.get("residual_value", 0.0) or 0.0),
        ))
    return tuple(result)


def load_loans(records: List[Mapping]) -> Tuple[Loan, ...]:
    result = []
    for record in records or []:
        duration = int(_require(record, "duration_months", "loan"))
        if duration <= 0:
            raise InputValidationError(f"Loan duration must be positive: {dict(record)}")
        result.append(Loan(
            name=str(record.get("name", "")),
            principal_amount=float(_require(record, "principal_amount", "loan")),
            interest_rate=float(record.get("interest_rate", 0.0)),
            duration_months=duration,
            start_year=int(_require(record, "start_year", "loan")),
            start_month=_check_month(record.get("start_month", 1), "loan"),
            grace_period_months=int(record.get("grace_period_months", 0) or 0),
        ))
    return tuple(result)


def load_scenarios(records: List[Mapping]) -> Tuple[Scenario, ...]:
    result = []
    for record in records or []:
        factors = record.get("factors", record)
        result.append(Scenario(
            scenario_id=str(_require(record, "id", "scenario")),
            name=str(record.get("name", "")),
            scenario_type=str(record.get("type", "custom")),
            factors=ScenarioFactors.from_mapping(factors),
        ))
    return tuple(result)


def build_project_inputs(
    project_id: str,
    assumptions: Mapping,
    settings: Optional[Mapping] = None
) -> ProjectInputs:
    """
    Build typed project inputs from an assumptions mapping.

    Args:
        project_id: Identifier used when the project section has none
        assumptions: Parsed project file
        settings: Engine settings already merged over defaults

    Returns:
        ProjectInputs snapshot

    Raises:
        InputValidationError: On invalid records or non-numeric values
    """
    try:
        project = load_project(project_id, assumptions.get("project", {}))
        return ProjectInputs(
            project=project,
            products=load_products(assumptions.get("products", [])),
            sales_projections=load_sales_projections(assumptions.get("sales_projections", [])),
            opex=load_opex_items(assumptions.get("opex", []), project.start_year),
            capex=load_capex_items(assumptions.get("capex", [])),
            loans=load_loans(assumptions.get("loans", [])),
            scenarios=load_scenarios(assumptions.get("scenarios", [])),
            settings=dict(settings or {}),
        )
    except InputValidationError:
        raise
    except (TypeError, ValueError) as exc:
        # Non-numeric values in numeric fields
        raise InputValidationError(f"Invalid value in project {project_id}: {exc}") from exc


# =============================================================================
# END OF PROJECT INPUTS
# =============================================================================
