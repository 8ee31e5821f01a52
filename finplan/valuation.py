# =============================================================================
# FINPLAN ENGINE - VALUATION ANALYZER
# =============================================================================
# Bank-grade profitability indicators derived from a monthly series.
#
# METRICS:
# - NPV = SUM_i(cf[i] / (1 + wacc/12)^(i+1))
# - IRR = annual rate where NPV = 0 (Newton-Raphson, monthly compounding)
# - Payback = first month where cumulative cash flow > 0
# - DRCI = first month where cumulative discounted cash flow > initial investment
# - ROI = net profit / (COGS + OpEx) * 100
# - Profitability index = (NPV + I0) / I0
# =============================================================================

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from .projection import MonthlyFinancialOutput

logger = logging.getLogger(__name__)

# Rating thresholds: (minimum value, label) checked in order
NPV_RATINGS = ((500_000_000, "Excellent"), (100_000_000, "Good"), (0, "Acceptable"))
IRR_RATINGS = ((30.0, "Excellent"), (20.0, "Good"), (12.0, "Acceptable"))
# DRCI thresholds are maxima in years
DRCI_RATINGS = ((2.0, "Excellent"), (3.0, "Good"), (4.0, "Acceptable"))
POOR_RATING = "Problematic"


@dataclass
class ValuationParams:
    """Valuation parameters."""
    wacc: float = 0.12  # Annual discount rate, compounded monthly
    initial_investment: Optional[float] = None  # None -> total capex of the run
    irr_guess: float = 0.12
    irr_max_iterations: int = 100
    irr_tolerance: float = 0.01


@dataclass(frozen=True)
class IRRResult:
    """IRR solver result; rate_pct is held even when not converged."""
    rate_pct: float
    converged: bool
    iterations: int


@dataclass(frozen=True)
class DiscountedPayback:
    """Discounted payback (DRCI) result."""
    month: int  # 1-based recovery month, horizon length when not recovered
    years: float
    recovered: bool


@dataclass
class ValuationOutput:
    """Output structure for the valuation analyzer."""

    # Summary
    total_revenue: float = 0.0
    total_costs: float = 0.0
    net_profit: float = 0.0
    roi: float = 0.0
    payback_period: int = 0
    npv: float = 0.0
    irr: float = 0.0
    irr_converged: bool = False

    # Ratios
    gross_margin_avg: float = 0.0
    ebitda_margin_avg: float = 0.0
    debt_to_equity_avg: float = 0.0
    current_ratio_avg: float = 0.0
    dscr_min: Optional[float] = None

    # Cash metrics
    peak_funding_need: float = 0.0
    cash_generation_start: Optional[int] = None
    break_even_month: int = 0

    # Investment analysis
    initial_investment: float = 0.0
    drci: Optional[DiscountedPayback] = None
    profitability_index: float = 0.0
    ratings: Dict[str, str] = field(default_factory=dict)

    # Warnings
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "summary": {
                "total_revenue": self.total_revenue,
                "total_costs": self.total_costs,
                "net_profit": self.net_profit,
                "roi": self.roi,
                "payback_period": self.payback_period,
                "npv": self.npv,
                "irr": self.irr,
                "irr_converged": self.irr_converged,
            },
            "ratios": {
                "gross_margin_avg": self.gross_margin_avg,
                "ebitda_margin_avg": self.ebitda_margin_avg,
                "debt_to_equity_avg": self.debt_to_equity_avg,
                "current_ratio_avg": self.current_ratio_avg,
                "dscr_min": self.dscr_min,
            },
            "cash_flow": {
                "peak_funding_need": self.peak_funding_need,
                "cash_generation_start": self.cash_generation_start,
                "break_even_month": self.break_even_month,
            },
            "investment": {
                "initial_investment": self.initial_investment,
                "drci_month": self.drci.month if self.drci else None,
                "drci_years": self.drci.years if self.drci else None,
                "drci_recovered": self.drci.recovered if self.drci else False,
                "profitability_index": self.profitability_index,
                "ratings": dict(self.ratings),
            },
            "warnings": list(self.warnings),
        }


def load_valuation_params(settings: Mapping) -> ValuationParams:
    """Load valuation parameters from the merged engine settings."""
    val_config = settings.get("valuation", {}) or {}
    initial_investment = val_config.get("initial_investment")
    return ValuationParams(
        wacc=float(val_config.get("wacc", 0.12)),
        initial_investment=None if initial_investment is None else float(initial_investment),
        irr_guess=float(val_config.get("irr_guess", 0.12)),
        irr_max_iterations=int(val_config.get("irr_max_iterations", 100)),
        irr_tolerance=float(val_config.get("irr_tolerance", 0.01)),
    )


def calculate_npv(cash_flows: Sequence[float], wacc: float = 0.12) -> float:
    """
    Calculate Net Present Value of monthly cash flows.

    Formula: NPV = SUM_i(cf[i] / (1 + wacc/12)^(i+1))
    """
    monthly = 1 + wacc / 12
    return sum(cf / monthly ** (i + 1) for i, cf in enumerate(cash_flows))


def calculate_irr(
    cash_flows: Sequence[float],
    guess: float = 0.12,
    max_iterations: int = 100,
    tolerance: float = 0.01
) -> IRRResult:
    """
    Calculate IRR using Newton-Raphson method.

    The rate is annual with monthly compounding, consistent with
    calculate_npv. Iteration stops when |NPV| < tolerance; a zero derivative
    or a numeric failure stops it early and the last finite rate is held.

    Args:
        cash_flows: Monthly cash flows
        guess: Initial annual rate (decimal)
        max_iterations: Iteration cap
        tolerance: Absolute NPV tolerance

    Returns:
        IRRResult with the annual rate in percent
    """
    rate = guess

    for iteration in range(max_iterations):
        try:
            npv_at_rate = 0.0
            derivative = 0.0
            for i, cf in enumerate(cash_flows):
                period = i + 1
                npv_at_rate += cf / (1 + rate / 12) ** period
                derivative -= period * cf / (12 * (1 + rate / 12) ** (period + 1))
        except (ZeroDivisionError, OverflowError, ValueError):
            return IRRResult(rate_pct=rate * 100, converged=False, iterations=iteration)

        if abs(npv_at_rate) < tolerance:
            return IRRResult(rate_pct=rate * 100, converged=True, iterations=iteration)

        if derivative == 0:
            return IRRResult(rate_pct=rate * 100, converged=False, iterations=iteration)

        new_rate = rate - npv_at_rate / derivative
        if not math.isfinite(new_rate):
            return IRRResult(rate_pct=rate * 100, converged=False, iterations=iteration)
        rate = new_rate

    return IRRResult(rate_pct=rate * 100, converged=False, iterations=max_iterations)


def calculate_payback_period(cash_flows: Sequence[float]) -> int:
    """
    Calculate payback period in months.

    Returns the first 1-based month where cumulative cash flow > 0, or the
    series length when it never turns positive.
    """
    cumulative = 0.0
    for i, cf in enumerate(cash_flows):
        cumulative += cf
        if cumulative > 0:
            return i + 1
    return len(cash_flows)


def calculate_break_even_month(net_incomes: Sequence[float]) -> int:
    """First 1-based month where cumulative net income > 0, else series length."""
    return calculate_payback_period(net_incomes)


def calculate_discounted_payback(
    cash_flows: Sequence[float],
    initial_investment: float,
    wacc: float = 0.12
) -> DiscountedPayback:
    """
    Calculate the discounted payback period (DRCI).

    The recovery month is the first month where cumulative discounted cash
    flow exceeds the initial investment. `years` interpolates linearly
    inside that month.
    """
    monthly = 1 + wacc / 12
    cumulative = 0.0

    for i, cf in enumerate(cash_flows):
        discounted = cf / monthly ** (i + 1)
        previous = cumulative
        cumulative += discounted
        if cumulative > initial_investment:
            remaining = initial_investment - previous
            fraction = remaining / discounted if discounted > 0 else 0.0
            fraction = min(max(fraction, 0.0), 1.0)
            return DiscountedPayback(month=i + 1, years=(i + fraction) / 12, recovered=True)

    horizon = len(cash_flows)
    return DiscountedPayback(month=horizon, years=horizon / 12, recovered=False)


def calculate_roi(net_profit: float, total_costs: float) -> float:
    """
    Calculate return on costs.

    Formula: ROI = net_profit / total_costs * 100 (0 when total_costs = 0)
    """
    if total_costs == 0:
        return 0.0
    return net_profit / total_costs * 100


def calculate_profitability_index(npv: float, initial_investment: float) -> float:
    """
    Calculate profitability index.

    Formula: PI = (NPV + I0) / I0 (0 when I0 <= 0)
    """
    if initial_investment <= 0:
        return 0.0
    return (npv + initial_investment) / initial_investment


def rate_npv(npv: float) -> str:
    for threshold, label in NPV_RATINGS:
        if npv >= threshold:
            return label
    return POOR_RATING


def rate_irr(irr_pct: float) -> str:
    for threshold, label in IRR_RATINGS:
        if irr_pct >= threshold:
            return label
    return POOR_RATING


def rate_drci(years: float) -> str:
    for threshold, label in DRCI_RATINGS:
        if years <= threshold:
            return label
    return POOR_RATING


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def valuation_engine(
    outputs: Sequence[MonthlyFinancialOutput],
    params: Optional[ValuationParams] = None,
    initial_investment: Optional[float] = None
) -> ValuationOutput:
    """
    Main valuation engine.

    Args:
        outputs: Monthly series in chronological order
        params: Valuation parameters (defaults when None)
        initial_investment: Run capex total, used when params carry none

    Returns:
        ValuationOutput with summary, ratios, cash metrics and DRCI
    """
    params = params or ValuationParams()
    output = ValuationOutput()

    if not outputs:
        output.warnings.append("No monthly outputs to value")
        return output

    cash_flows = [row.cash_flow for row in outputs]

    # 1. Summary
    output.total_revenue = sum(row.revenue for row in outputs)
    output.total_costs = sum(row.cogs + row.opex_total for row in outputs)
    output.net_profit = sum(row.net_income for row in outputs)
    output.roi = calculate_roi(output.net_profit, output.total_costs)
    output.payback_period = calculate_payback_period(cash_flows)
    output.npv = calculate_npv(cash_flows, params.wacc)

    irr = calculate_irr(
        cash_flows, params.irr_guess, params.irr_max_iterations, params.irr_tolerance
    )
    output.irr = irr.rate_pct
    output.irr_converged = irr.converged
    if not irr.converged:
        message = f"IRR did not converge after {irr.iterations} iterations (held {irr.rate_pct:.2f}%)"
        logger.warning(message)
        output.warnings.append(message)

    # 2. Ratios
    output.gross_margin_avg = _mean([row.gross_margin_percent for row in outputs])
    output.ebitda_margin_avg = _mean([row.ebitda_margin for row in outputs])
    output.debt_to_equity_avg = _mean([row.debt_to_equity for row in outputs])
    output.current_ratio_avg = _mean([row.current_ratio for row in outputs])
    serviced = [row.dscr for row in outputs if row.dscr is not None]
    output.dscr_min = min(serviced) if serviced else None

    # 3. Cash metrics
    cash_balances = [row.cash_balance for row in outputs]
    output.peak_funding_need = abs(min(0.0, min(cash_balances)))
    output.cash_generation_start = next(
        (i + 1 for i, balance in enumerate(cash_balances) if balance > 0), None
    )
    output.break_even_month = calculate_break_even_month([row.net_income for row in outputs])

    # 4. Investment analysis
    if params.initial_investment is not None:
        output.initial_investment = params.initial_investment
    else:
        output.initial_investment = initial_investment or 0.0

    output.drci = calculate_discounted_payback(cash_flows, output.initial_investment, params.wacc)
    output.profitability_index = calculate_profitability_index(output.npv, output.initial_investment)
    output.ratings = {
        "npv": rate_npv(output.npv),
        "irr": rate_irr(output.irr),
        "drci": rate_drci(output.drci.years),
    }

    if output.peak_funding_need > 0:
        output.warnings.append(f"Peak funding need of {output.peak_funding_need:,.0f}")

    logger.debug(
        "Valuation: npv=%.2f irr=%.2f%% payback=%d drci=%d",
        output.npv, output.irr, output.payback_period, output.drci.month,
    )
    return output


def validate_valuation_output(output: ValuationOutput) -> List[str]:
    """Validate valuation output."""
    errors = []

    if not math.isfinite(output.npv):
        errors.append(f"NPV is not finite: {output.npv}")

    if output.irr_converged and (output.irr < -100 or output.irr > 1000):
        errors.append(f"IRR out of reasonable range: {output.irr}")

    if output.peak_funding_need < 0:
        errors.append(f"Negative peak funding need: {output.peak_funding_need}")

    return errors


# =============================================================================
# END OF VALUATION ANALYZER
# =============================================================================
