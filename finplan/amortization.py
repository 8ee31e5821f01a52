# =============================================================================
# FINPLAN ENGINE - AMORTIZATION MODULE
# =============================================================================
# Pure loan and depreciation mathematics.
#
# FORMULAS:
# Monthly rate r = annual_rate_pct / 100 / 12
# Annuity payment = P * r * (1+r)^n / ((1+r)^n - 1)   (P / n when r = 0)
# Straight-line depreciation = (amount - residual) / (years * 12)
# =============================================================================

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class LoanInstallment:
    """One row of a loan amortization table."""
    number: int  # 1-based installment number
    payment: float
    interest: float
    principal: float
    balance: float  # Outstanding principal after this installment


def monthly_rate(annual_rate_pct: float) -> float:
    """Convert an annual percentage rate into a monthly decimal rate."""
    return annual_rate_pct / 100 / 12


def monthly_loan_payment(
    principal: float,
    annual_rate_pct: float,
    months: int
) -> float:
    """
    Calculate the constant monthly annuity payment.

    Formula: payment = P * r * (1+r)^n / ((1+r)^n - 1), or P / n at zero rate
    """
    if months <= 0:
        return 0.0

    rate = monthly_rate(annual_rate_pct)
    if rate > 0:
        growth = (1 + rate) ** months
        return principal * rate * growth / (growth - 1)
    return principal / months


def monthly_depreciation(
    amount: float,
    residual_value: float,
    depreciation_years: int
) -> float:
    """
    Calculate the straight-line monthly depreciation charge.

    Formula: (amount - residual_value) / (depreciation_years * 12)
    """
    if depreciation_years <= 0:
        return 0.0
    return (amount - residual_value) / (depreciation_years * 12)


def depreciation_for_year(
    amount: float,
    residual_value: float,
    depreciation_years: int,
    purchase_year: int,
    year: int
) -> float:
    """Monthly charge in `year`, or 0 outside the depreciation window."""
    years_elapsed = year - purchase_year
    if years_elapsed < 0 or years_elapsed >= depreciation_years:
        return 0.0
    return monthly_depreciation(amount, residual_value, depreciation_years)


def loan_schedule(
    principal: float,
    annual_rate_pct: float,
    months: int
) -> List[LoanInstallment]:
    """
    Build the full amortization table of an annuity loan.

    The last installment absorbs floating point drift so the final balance
    is exactly zero.
    """
    schedule: List[LoanInstallment] = []
    if months <= 0:
        return schedule

    rate = monthly_rate(annual_rate_pct)
    payment = monthly_loan_payment(principal, annual_rate_pct, months)
    balance = principal

    for number in range(1, months + 1):
        interest = balance * rate
        principal_part = payment - interest
        if number == months:
            principal_part = balance
        balance = balance - principal_part
        schedule.append(LoanInstallment(
            number=number,
            payment=interest + principal_part,
            interest=interest,
            principal=principal_part,
            balance=max(balance, 0.0),
        ))

    return schedule


def outstanding_balance(
    principal: float,
    annual_rate_pct: float,
    months: int,
    installments_paid: int,
    schedule: Optional[List[LoanInstallment]] = None
) -> float:
    """
    Outstanding principal after `installments_paid` payments.

    A precomputed `schedule` of the same loan avoids rebuilding the table.
    """
    if installments_paid <= 0:
        return principal
    if installments_paid >= months:
        return 0.0
    if schedule is None:
        schedule = loan_schedule(principal, annual_rate_pct, months)
    return schedule[installments_paid - 1].balance


# =============================================================================
# END OF AMORTIZATION MODULE
# =============================================================================
