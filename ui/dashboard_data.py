"""Transform monthly financial outputs into dashboard-ready structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from finplan.projection import MonthlyFinancialOutput
from finplan.risk import RiskThresholds, risk_engine

TREND_THRESHOLD = 0.05

MONTHLY_COLUMNS = [
    "period",
    "year",
    "month",
    "period_index",
    "revenue",
    "cogs",
    "gross_margin",
    "gross_margin_percent",
    "opex_total",
    "depreciation",
    "ebitda",
    "ebit",
    "net_income",
    "loan_payments",
    "interest_paid",
    "principal_repaid",
    "cash_flow",
    "cash_balance",
    "debt_balance",
    "net_fixed_assets",
    "ebitda_margin",
    "net_margin",
    "dscr",
    "debt_to_equity",
    "current_ratio",
]

ANNUAL_COLUMNS = [
    "year",
    "months",
    "revenue",
    "cogs",
    "gross_margin",
    "opex_total",
    "depreciation",
    "ebitda",
    "net_income",
    "loan_payments",
    "cash_flow",
    "cash_balance",
    "debt_balance",
    "gross_margin_pct",
    "ebitda_margin_pct",
    "net_margin_pct",
]


@dataclass
class DashboardSnapshot:
    monthly: pd.DataFrame
    annual: pd.DataFrame
    cards: pd.DataFrame
    charts: pd.DataFrame
    alerts: pd.DataFrame
    risks: pd.DataFrame
    risk_level: str = "unknown"
    kpis: Dict[str, float] = field(default_factory=dict)


def _safe_pct(num: float, den: float) -> float:
    return (num / den * 100) if den else 0.0


def to_monthly_df(outputs: Sequence[MonthlyFinancialOutput]) -> pd.DataFrame:
    if not outputs:
        return pd.DataFrame(columns=MONTHLY_COLUMNS)
    rows = []
    for row in outputs:
        record = row.to_dict()
        record["period"] = row.period
        rows.append(record)
    return pd.DataFrame(rows)[MONTHLY_COLUMNS].sort_values(["year", "month"]).reset_index(drop=True)


def to_annual_df(monthly: pd.DataFrame) -> pd.DataFrame:
    if monthly.empty:
        return pd.DataFrame(columns=ANNUAL_COLUMNS)

    grouped = (
        monthly.groupby("year", as_index=False)
        .agg(
            months=("month", "count"),
            revenue=("revenue", "sum"),
            cogs=("cogs", "sum"),
            gross_margin=("gross_margin", "sum"),
            opex_total=("opex_total", "sum"),
            depreciation=("depreciation", "sum"),
            ebitda=("ebitda", "sum"),
            net_income=("net_income", "sum"),
            loan_payments=("loan_payments", "sum"),
            cash_flow=("cash_flow", "sum"),
            cash_balance=("cash_balance", "last"),
            debt_balance=("debt_balance", "last"),
        )
        .sort_values("year")
        .reset_index(drop=True)
    )
    grouped["gross_margin_pct"] = grouped.apply(
        lambda row: _safe_pct(float(row["gross_margin"]), float(row["revenue"])), axis=1
    )
    grouped["ebitda_margin_pct"] = grouped.apply(
        lambda row: _safe_pct(float(row["ebitda"]), float(row["revenue"])), axis=1
    )
    grouped["net_margin_pct"] = grouped.apply(
        lambda row: _safe_pct(float(row["net_income"]), float(row["revenue"])), axis=1
    )
    return grouped[ANNUAL_COLUMNS]


def calculate_trend(values: Sequence[float]) -> str:
    """Compare the average of the second half of a series with the first half."""
    values = list(values)
    if len(values) < 2:
        return "neutral"

    middle = len(values) // 2
    first_avg = sum(values[:middle]) / middle
    second_avg = sum(values[middle:]) / (len(values) - middle)

    if first_avg == 0:
        if second_avg > 0:
            return "positive"
        if second_avg < 0:
            return "negative"
        return "neutral"

    change = (second_avg - first_avg) / abs(first_avg)
    if change > TREND_THRESHOLD:
        return "positive"
    if change < -TREND_THRESHOLD:
        return "negative"
    return "neutral"


def build_cards(monthly: pd.DataFrame) -> pd.DataFrame:
    columns = ["title", "value", "format", "trend"]
    if monthly.empty:
        return pd.DataFrame(columns=columns)

    last_cash = float(monthly["cash_balance"].iloc[-1])
    rows = [
        {
            "title": "Total revenue",
            "value": float(monthly["revenue"].sum()),
            "format": "currency",
            "trend": calculate_trend(monthly["revenue"].tolist()),
        },
        {
            "title": "Total net income",
            "value": float(monthly["net_income"].sum()),
            "format": "currency",
            "trend": calculate_trend(monthly["net_income"].tolist()),
        },
        {
            "title": "Average EBITDA margin",
            "value": float(monthly["ebitda_margin"].mean()),
            "format": "percentage",
            "trend": "neutral",
        },
        {
            "title": "Current cash balance",
            "value": last_cash,
            "format": "currency",
            "trend": "positive" if last_cash > 0 else "negative",
        },
    ]
    return pd.DataFrame(rows, columns=columns)


def build_chart_series(monthly: pd.DataFrame) -> pd.DataFrame:
    """Long-format chart data: one row per (chart, period)."""
    columns = ["chart", "type", "x", "y"]
    if monthly.empty:
        return pd.DataFrame(columns=columns)

    frames = []
    for chart, chart_type, metric in (
        ("Revenue", "line", "revenue"),
        ("Cash balance", "line", "cash_balance"),
        ("Monthly net income", "bar", "net_income"),
    ):
        frames.append(pd.DataFrame({
            "chart": chart,
            "type": chart_type,
            "x": monthly["period"],
            "y": monthly[metric].astype(float),
        }))
    return pd.concat(frames, ignore_index=True)[columns]


def calculate_growth_rate(values: Sequence[float]) -> float:
    """
    Compound per-period growth between the first and last value.

    Formula: (last / first)^(1 / (n - 1)) - 1 (0 when undefined)
    """
    values = list(values)
    if len(values) < 2 or values[0] == 0:
        return 0.0
    ratio = values[-1] / values[0]
    if ratio < 0:
        return 0.0
    return ratio ** (1 / (len(values) - 1)) - 1


def calculate_burn_rate(cash_flows: Sequence[float]) -> float:
    """Average absolute cash flow over months with negative cash flow."""
    negative = [abs(value) for value in cash_flows if value < 0]
    if not negative:
        return 0.0
    return sum(negative) / len(negative)


def filter_period(monthly: pd.DataFrame, period: Optional[str] = None) -> pd.DataFrame:
    """Restrict to a year ("2026") or a month ("2026-03")."""
    if not period or monthly.empty:
        return monthly
    parts = str(period).split("-")
    mask = monthly["year"] == int(parts[0])
    if len(parts) > 1 and parts[1]:
        mask &= monthly["month"] == int(parts[1])
    return monthly[mask].reset_index(drop=True)


def calculate_kpis(monthly: pd.DataFrame, period: Optional[str] = None) -> Dict[str, float]:
    data = filter_period(monthly, period)
    if data.empty:
        return {}

    total_revenue = float(data["revenue"].sum())
    serviced = data["dscr"].dropna()
    return {
        "revenue_growth_rate": calculate_growth_rate(data["revenue"].tolist()),
        "gross_margin": _safe_pct(total_revenue - float(data["cogs"].sum()), total_revenue),
        "operating_margin": _safe_pct(float(data["ebitda"].sum()), total_revenue),
        "net_margin": _safe_pct(float(data["net_income"].sum()), total_revenue),
        "debt_service_coverage": float(serviced.mean()) if not serviced.empty else 0.0,
        "burn_rate": calculate_burn_rate(data["cash_flow"].tolist()),
    }


def build_snapshot(
    outputs: Sequence[MonthlyFinancialOutput],
    thresholds: Optional[RiskThresholds] = None
) -> DashboardSnapshot:
    monthly = to_monthly_df(outputs)
    risk = risk_engine(outputs, thresholds)

    alerts: List[Dict] = [vars(alert) for alert in risk.alerts]
    risks: List[Dict] = [vars(indicator) for indicator in risk.indicators]

    return DashboardSnapshot(
        monthly=monthly,
        annual=to_annual_df(monthly),
        cards=build_cards(monthly),
        charts=build_chart_series(monthly),
        alerts=pd.DataFrame(alerts, columns=["type", "title", "message", "severity"]),
        risks=pd.DataFrame(risks, columns=["type", "level", "message", "value"]),
        risk_level=risk.risk_level,
        kpis=calculate_kpis(monthly),
    )
