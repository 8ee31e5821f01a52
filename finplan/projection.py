# =============================================================================
# FINPLAN ENGINE - MONTHLY PROJECTION CALCULATOR
# =============================================================================
# Folds products, sales, opex, capex and loans into one financial record per
# month of the project horizon.
#
# FLOW:
# Revenue = SUM_p(volume * unit_price * revenue_factor)
# COGS = SUM_p(volume * unit_cost * cost_factor)
# Gross Margin = Revenue - COGS
# EBITDA = Gross Margin - OpEx
# EBIT = EBITDA - Depreciation
# Net Income = EBIT (no tax modeled)
# Cash Flow = Net Income + Depreciation - Loan Payments
# Cash Balance[t] = Cash Balance[t-1] + Cash Flow[t]
#
# KEY PRINCIPLE: round late; every monetary field is rounded once, after all
# additions for the month are done.
# =============================================================================

import logging
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .amortization import (
    LoanInstallment,
    depreciation_for_year,
    loan_schedule,
    monthly_depreciation,
    monthly_loan_payment,
    outstanding_balance,
)
from .inputs import (
    BASE_FACTORS,
    CapexItem,
    Loan,
    OpexItem,
    Product,
    ProjectInputs,
    ScenarioFactors,
    check_preconditions,
)

logger = logging.getLogger(__name__)

QUARTER_START_MONTHS = (1, 4, 7, 10)


@dataclass(frozen=True)
class MonthlyFinancialOutput:
    """Financial statement record for one month."""
    project_id: str
    scenario_id: Optional[str]
    year: int
    month: int
    period_index: int  # 1-based position in the horizon

    # Income statement
    revenue: float
    cogs: float
    gross_margin: float
    gross_margin_percent: float
    opex_total: float
    depreciation: float
    ebitda: float
    ebit: float
    net_income: float

    # Debt service and cash
    loan_payments: float
    interest_paid: float
    principal_repaid: float
    cash_flow: float
    cash_balance: float
    debt_balance: float
    net_fixed_assets: float

    # Ratios
    ebitda_margin: float
    net_margin: float
    dscr: Optional[float]  # None when no debt service is due
    debt_to_equity: float
    current_ratio: float

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LoanService:
    """Aggregated debt service of all loans in one month."""
    payment: float = 0.0
    interest: float = 0.0
    principal: float = 0.0
    balance: float = 0.0


@dataclass
class ProjectionOutput:
    """Output structure for the projection engine."""
    project_id: str
    scenario_id: Optional[str] = None
    factors: ScenarioFactors = BASE_FACTORS
    outputs: List[MonthlyFinancialOutput] = field(default_factory=list)
    summary: Dict = field(default_factory=dict)

    # Warnings (non-blocking)
    warnings: List[str] = field(default_factory=list)


def round_currency(value: float) -> float:
    """Round to the nearest whole currency unit, halves away from zero."""
    return float(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_percent(value: float) -> float:
    """Round a percentage to two decimals, halves away from zero."""
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def safe_ratio(numerator: float, denominator: float) -> float:
    """Division that resolves to 0 on a zero denominator."""
    return numerator / denominator if denominator else 0.0


def generate_periods(
    start_year: int,
    start_month: int,
    horizon_months: int
) -> List[Tuple[int, int]]:
    """
    Generate consecutive (year, month) pairs starting at the project start.

    Args:
        start_year: First calendar year
        start_month: First calendar month (1-12)
        horizon_months: Number of months to generate

    Returns:
        List of (year, month) tuples in chronological order
    """
    periods = []
    year = start_year
    month = start_month

    for _ in range(horizon_months):
        periods.append((year, month))
        month += 1
        if month > 12:
            month = 1
            year += 1

    return periods


def months_between(start_year: int, start_month: int, year: int, month: int) -> int:
    """Signed number of months from (start_year, start_month) to (year, month)."""
    return (year - start_year) * 12 + (month - start_month)


# =============================================================================
# REVENUE / COGS
# =============================================================================

def calculate_revenue_and_cogs(
    products: Sequence[Product],
    volume_index: Mapping[Tuple[str, int, int], float],
    year: int,
    month: int,
    factors: ScenarioFactors = BASE_FACTORS
) -> Tuple[float, float]:
    """
    Calculate unrounded revenue and COGS for one month.

    Formula: Revenue = SUM_p(volume[p,t] * unit_price[p] * revenue_factor)
             COGS = SUM_p(volume[p,t] * unit_cost[p] * cost_factor)
    """
    revenue = 0.0
    cogs = 0.0

    for product in products:
        volume = volume_index.get((product.product_id, year, month), 0.0)
        if volume > 0:
            revenue += volume * product.unit_price * factors.revenue_factor
            cogs += volume * product.unit_cost * factors.cost_factor

    return revenue, cogs


# =============================================================================
# OPEX
# =============================================================================

def opex_fires(frequency: str, month: int) -> bool:
    """Whether an expense of this frequency is booked in `month`."""
    if frequency == "monthly":
        return True
    if frequency == "quarterly":
        return month in QUARTER_START_MONTHS
    if frequency == "yearly":
        return month == 1
    return False


def calculate_monthly_opex(
    opex_items: Sequence[OpexItem],
    year: int,
    month: int,
    factors: ScenarioFactors = BASE_FACTORS
) -> float:
    """
    Calculate unrounded OpEx for one month.

    Formula: OpEx[t] = SUM_i(amount[i] * opex_factor) for active items whose
    frequency fires in month t
    """
    total = 0.0
    for item in opex_items:
        if item.start_year <= year and opex_fires(item.frequency, month):
            total += item.amount * factors.opex_factor
    return total


# =============================================================================
# CAPEX / DEPRECIATION
# =============================================================================

def calculate_monthly_depreciation(
    capex_items: Sequence[CapexItem],
    year: int,
    factors: ScenarioFactors = BASE_FACTORS
) -> float:
    """
    Calculate unrounded depreciation for one month.

    An asset depreciates from January of its purchase year while fewer than
    `depreciation_years` whole years have elapsed.
    """
    return sum(
        depreciation_for_year(
            item.amount * factors.capex_factor,
            item.residual_value,
            item.depreciation_years,
            item.purchase_year,
            year,
        )
        for item in capex_items
    )


def calculate_net_fixed_assets(
    capex_items: Sequence[CapexItem],
    year: int,
    month: int,
    factors: ScenarioFactors = BASE_FACTORS
) -> float:
    """Gross purchased capex less accumulated depreciation at month end."""
    total = 0.0
    for item in capex_items:
        if year < item.purchase_year:
            continue
        amount = item.amount * factors.capex_factor
        months_depreciated = min(
            months_between(item.purchase_year, 1, year, month) + 1,
            item.depreciation_years * 12,
        )
        charge = monthly_depreciation(amount, item.residual_value, item.depreciation_years)
        total += amount - charge * max(months_depreciated, 0)
    return total


def total_capex(capex_items: Sequence[CapexItem], factors: ScenarioFactors = BASE_FACTORS) -> float:
    """Total capital expenditure after the capex factor."""
    return sum(item.amount * factors.capex_factor for item in capex_items)


# =============================================================================
# LOANS
# =============================================================================

def repayment_index(loan: Loan, year: int, month: int) -> int:
    """
    Installment index (0-based) due in (year, month).

    Negative before the grace period ends; >= duration once repaid.
    """
    return months_between(loan.start_year, loan.start_month, year, month) - loan.grace_period_months


def build_loan_schedules(loans: Sequence[Loan]) -> List[List[LoanInstallment]]:
    """Amortization tables, one per loan, in input order."""
    return [
        loan_schedule(loan.principal_amount, loan.interest_rate, loan.duration_months)
        for loan in loans
    ]


def calculate_loan_service(
    loans: Sequence[Loan],
    year: int,
    month: int,
    schedules: Optional[Sequence[List[LoanInstallment]]] = None
) -> LoanService:
    """
    Calculate debt service due in one month across all loans.

    Payment follows the annuity formula once the grace period has elapsed
    and while the installment index lies in [0, duration_months).
    """
    if schedules is None:
        schedules = build_loan_schedules(loans)

    payment = 0.0
    interest = 0.0
    principal = 0.0
    balance = 0.0

    for loan, schedule in zip(loans, schedules):
        elapsed = months_between(loan.start_year, loan.start_month, year, month)
        if elapsed < 0:
            continue  # Not yet disbursed

        index = repayment_index(loan, year, month)
        balance += outstanding_balance(
            loan.principal_amount, loan.interest_rate, loan.duration_months,
            max(index + 1, 0), schedule,
        )
        if index < 0 or index >= loan.duration_months:
            continue  # Grace period or fully repaid

        payment += monthly_loan_payment(
            loan.principal_amount, loan.interest_rate, loan.duration_months
        )
        installment = schedule[index]
        interest += installment.interest
        principal += installment.principal

    return LoanService(payment=payment, interest=interest, principal=principal, balance=balance)


# =============================================================================
# MONTHLY RECORD
# =============================================================================

def build_monthly_output(
    project_id: str,
    scenario_id: Optional[str],
    year: int,
    month: int,
    period_index: int,
    revenue: float,
    cogs: float,
    opex: float,
    depreciation: float,
    loan_service: LoanService,
    net_fixed_assets: float,
    previous_cash_balance: float
) -> MonthlyFinancialOutput:
    """Derive and round one month's statement from unrounded components."""
    gross_margin = revenue - cogs
    gross_margin_percent = safe_ratio(gross_margin, revenue) * 100 if revenue > 0 else 0.0
    ebitda = gross_margin - opex
    ebit = ebitda - depreciation
    net_income = ebit
    cash_flow = net_income + depreciation - loan_service.payment

    rounded_revenue = round_currency(revenue)
    rounded_net_income = round_currency(net_income)
    rounded_depreciation = round_currency(depreciation)
    rounded_loan_payments = round_currency(loan_service.payment)
    rounded_ebitda = round_currency(ebitda)
    rounded_cash_flow = round_currency(cash_flow)
    rounded_debt = round_currency(loan_service.balance)
    rounded_fixed_assets = round_currency(net_fixed_assets)

    cash_balance = previous_cash_balance + rounded_cash_flow

    dscr: Optional[float] = None
    if rounded_loan_payments > 0:
        dscr = round((rounded_net_income + rounded_depreciation) / rounded_loan_payments, 4)

    total_assets = rounded_fixed_assets + max(cash_balance, 0.0)
    equity = total_assets - rounded_debt
    debt_to_equity = round(rounded_debt / equity, 4) if equity > 0 else 0.0
    current_ratio = round(safe_ratio(max(cash_balance, 0.0), rounded_loan_payments * 12), 4)

    return MonthlyFinancialOutput(
        project_id=project_id,
        scenario_id=scenario_id,
        year=year,
        month=month,
        period_index=period_index,
        revenue=rounded_revenue,
        cogs=round_currency(cogs),
        gross_margin=round_currency(gross_margin),
        gross_margin_percent=round_percent(gross_margin_percent),
        opex_total=round_currency(opex),
        depreciation=rounded_depreciation,
        ebitda=rounded_ebitda,
        ebit=round_currency(ebit),
        net_income=rounded_net_income,
        loan_payments=rounded_loan_payments,
        interest_paid=round_currency(loan_service.interest),
        principal_repaid=round_currency(loan_service.principal),
        cash_flow=rounded_cash_flow,
        cash_balance=cash_balance,
        debt_balance=rounded_debt,
        net_fixed_assets=rounded_fixed_assets,
        ebitda_margin=round_percent(safe_ratio(ebitda, revenue) * 100),
        net_margin=round_percent(safe_ratio(net_income, revenue) * 100),
        dscr=dscr,
        debt_to_equity=debt_to_equity,
        current_ratio=current_ratio,
    )


def resolve_factors(
    inputs: ProjectInputs,
    scenario_id: Optional[str]
) -> Tuple[ScenarioFactors, Optional[str]]:
    """
    Resolve scenario factors once per run.

    Returns (factors, warning). An unknown scenario id runs with base
    factors and yields a warning message.
    """
    if scenario_id is None:
        return BASE_FACTORS, None
    scenario = inputs.get_scenario(scenario_id)
    if scenario is None:
        return BASE_FACTORS, f"Scenario {scenario_id} not found; using base factors"
    return scenario.factors, None


def calculate_monthly_projections(
    inputs: ProjectInputs,
    factors: ScenarioFactors = BASE_FACTORS,
    scenario_id: Optional[str] = None
) -> List[MonthlyFinancialOutput]:
    """
    Produce the full monthly series for the project horizon.

    Raises:
        NoProductsError: when the project has no products
        NoSalesProjectionsError: when the project has no sales projections
    """
    check_preconditions(inputs)

    project = inputs.project
    periods = generate_periods(project.start_year, project.start_month, project.horizon_months)
    volume_index = inputs.sales_volume_index()
    schedules = build_loan_schedules(inputs.loans)

    outputs: List[MonthlyFinancialOutput] = []
    cash_balance = 0.0

    for period_index, (year, month) in enumerate(periods, start=1):
        revenue, cogs = calculate_revenue_and_cogs(
            inputs.products, volume_index, year, month, factors
        )
        opex = calculate_monthly_opex(inputs.opex, year, month, factors)
        depreciation = calculate_monthly_depreciation(inputs.capex, year, factors)
        loan_service = calculate_loan_service(inputs.loans, year, month, schedules)
        fixed_assets = calculate_net_fixed_assets(inputs.capex, year, month, factors)

        record = build_monthly_output(
            project.project_id, scenario_id, year, month, period_index,
            revenue, cogs, opex, depreciation, loan_service, fixed_assets, cash_balance
        )
        cash_balance = record.cash_balance
        outputs.append(record)

        if period_index == 1:
            logger.debug(
                "First month %s: revenue=%s cogs=%s opex=%s depreciation=%s "
                "loan_payments=%s cash_flow=%s",
                record.period, record.revenue, record.cogs, record.opex_total,
                record.depreciation, record.loan_payments, record.cash_flow,
            )

    return outputs


def summarize_outputs(outputs: Sequence[MonthlyFinancialOutput]) -> Dict:
    """
    Summarize a monthly series.

    Averages are taken over the number of months calculated; percentages are
    rounded to two decimals.
    """
    count = len(outputs)
    total_revenue = sum(row.revenue for row in outputs)
    total_cogs = sum(row.cogs for row in outputs)
    total_opex = sum(row.opex_total for row in outputs)
    total_depreciation = sum(row.depreciation for row in outputs)
    total_net_income = sum(row.net_income for row in outputs)
    total_cash_flow = sum(row.cash_flow for row in outputs)
    total_loan_payments = sum(row.loan_payments for row in outputs)
    gross_margin = total_revenue - total_cogs

    cash_balances = [row.cash_balance for row in outputs]
    min_cash = min(cash_balances) if cash_balances else 0.0
    first_positive = next(
        (row.period_index for row in outputs if row.cash_balance > 0), None
    )

    return {
        "months_calculated": count,
        "total_revenue": total_revenue,
        "total_cogs": total_cogs,
        "gross_margin": gross_margin,
        "total_opex": total_opex,
        "total_depreciation": total_depreciation,
        "net_income": total_net_income,
        "cash_flow": total_cash_flow,
        "gross_margin_percent": round_percent(safe_ratio(gross_margin, total_revenue) * 100),
        "net_margin_percent": round_percent(safe_ratio(total_net_income, total_revenue) * 100),
        "avg_monthly_revenue": round_currency(safe_ratio(total_revenue, count)),
        "avg_monthly_opex": round_currency(safe_ratio(total_opex, count)),
        "avg_monthly_depreciation": round_currency(safe_ratio(total_depreciation, count)),
        "profitability": "profitable" if total_net_income > 0 else "not profitable",
        "break_even": "reached" if total_net_income > 0 else "not reached",
        "total_loan_payments": total_loan_payments,
        "min_cash_balance": min_cash,
        "max_cash_balance": max(cash_balances) if cash_balances else 0.0,
        "financing_need": abs(min_cash) if min_cash < 0 else 0.0,
        "first_positive_cash_month": first_positive,
    }


def projection_engine(
    inputs: ProjectInputs,
    scenario_id: Optional[str] = None,
    factors: Optional[ScenarioFactors] = None
) -> ProjectionOutput:
    """
    Main projection engine.

    Args:
        inputs: Project inputs snapshot
        scenario_id: Stored scenario to apply (None for the base case)
        factors: Explicit factors; overrides the scenario lookup when given

    Returns:
        ProjectionOutput with the monthly series and summary
    """
    output = ProjectionOutput(project_id=inputs.project_id, scenario_id=scenario_id)

    if factors is None:
        factors, warning = resolve_factors(inputs, scenario_id)
        if warning:
            logger.warning(warning)
            output.warnings.append(warning)
    output.factors = factors

    output.outputs = calculate_monthly_projections(inputs, factors, scenario_id)
    output.summary = summarize_outputs(output.outputs)

    for row in output.outputs:
        if row.cash_balance < 0:
            output.warnings.append(f"{row.period}: Negative cash balance {row.cash_balance:,.0f}")

    logger.info(
        "Projected %d months for project=%s scenario=%s (net income %s)",
        len(output.outputs), inputs.project_id, scenario_id or "base",
        output.summary["net_income"],
    )
    return output


def validate_projection_output(outputs: Sequence[MonthlyFinancialOutput]) -> List[str]:
    """Validate identities of a monthly series."""
    errors = []
    previous_balance = 0.0
    previous_key = None

    for row in outputs:
        if row.month < 1 or row.month > 12:
            errors.append(f"Month out of range at {row.period}")

        if previous_key is not None:
            expected_key = (previous_key[0] + (previous_key[1] == 12), previous_key[1] % 12 + 1)
            if (row.year, row.month) != expected_key:
                errors.append(f"Gap in series before {row.period}")
        previous_key = (row.year, row.month)

        if abs(row.cash_balance - (previous_balance + row.cash_flow)) > 0.5:
            errors.append(f"Cash balance carry broken at {row.period}")
        previous_balance = row.cash_balance

        if row.revenue < 0:
            errors.append(f"Negative revenue at {row.period}: {row.revenue}")

    return errors


# =============================================================================
# END OF MONTHLY PROJECTION CALCULATOR
# =============================================================================
