# =============================================================================
# FINPLAN ENGINE - RISK & ALERT DETECTOR
# =============================================================================
# Scans a monthly series for threshold breaches.
#
# INDICATORS:
# - dscr_risk: min DSCR < 1.2 (medium), < 1.0 (high)
# - cash_risk: any negative cash balance (always high)
# - profitability_risk: share of loss months > 0.5 (medium), > 0.8 (high)
#
# RISK LEVEL:
# high if any high indicator; medium if more than one medium; else low
# =============================================================================

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from .projection import MonthlyFinancialOutput

logger = logging.getLogger(__name__)


@dataclass
class RiskThresholds:
    """Risk thresholds."""
    dscr_medium: float = 1.2
    dscr_high: float = 1.0
    loss_share_medium: float = 0.5
    loss_share_high: float = 0.8
    consecutive_losses_alert: int = 3


@dataclass(frozen=True)
class RiskIndicator:
    type: str
    level: str  # medium | high
    message: str
    value: float


@dataclass(frozen=True)
class Alert:
    type: str  # warning | error
    title: str
    message: str
    severity: str  # medium | high


@dataclass
class RiskOutput:
    """Output structure for the risk detector."""
    risk_level: str = "unknown"
    indicators: List[RiskIndicator] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)

    @property
    def high_risk(self) -> int:
        return sum(1 for indicator in self.indicators if indicator.level == "high")

    @property
    def medium_risk(self) -> int:
        return sum(1 for indicator in self.indicators if indicator.level == "medium")

    def to_dict(self) -> Dict:
        return {
            "risk_level": self.risk_level,
            "indicators": [vars(indicator) for indicator in self.indicators],
            "alerts": [vars(alert) for alert in self.alerts],
            "summary": {
                "total_indicators": len(self.indicators),
                "high_risk": self.high_risk,
                "medium_risk": self.medium_risk,
            },
        }


def load_risk_thresholds(settings: Mapping) -> RiskThresholds:
    """Load risk thresholds from the merged engine settings."""
    risk_config = settings.get("risk", {}) or {}
    return RiskThresholds(
        dscr_medium=float(risk_config.get("dscr_medium", 1.2)),
        dscr_high=float(risk_config.get("dscr_high", 1.0)),
        loss_share_medium=float(risk_config.get("loss_share_medium", 0.5)),
        loss_share_high=float(risk_config.get("loss_share_high", 0.8)),
        consecutive_losses_alert=int(risk_config.get("consecutive_losses_alert", 3)),
    )


def min_dscr(outputs: Sequence[MonthlyFinancialOutput]) -> Optional[float]:
    """Minimum DSCR over months with debt service; None when there are none."""
    values = [row.dscr for row in outputs if row.dscr is not None]
    return min(values) if values else None


def max_consecutive_losses(outputs: Sequence[MonthlyFinancialOutput]) -> int:
    """Longest run of months with negative net income."""
    streak = 0
    longest = 0
    for row in outputs:
        if row.net_income < 0:
            streak += 1
            longest = max(longest, streak)
        else:
            streak = 0
    return longest


def classify_risk_level(indicators: Sequence[RiskIndicator]) -> str:
    high = sum(1 for indicator in indicators if indicator.level == "high")
    medium = sum(1 for indicator in indicators if indicator.level == "medium")
    if high > 0:
        return "high"
    if medium > 1:
        return "medium"
    return "low"


def calculate_risk_indicators(
    outputs: Sequence[MonthlyFinancialOutput],
    thresholds: Optional[RiskThresholds] = None
) -> List[RiskIndicator]:
    """Evaluate threshold rules over the full monthly series."""
    thresholds = thresholds or RiskThresholds()
    indicators: List[RiskIndicator] = []

    if not outputs:
        return indicators

    # DSCR risk
    dscr = min_dscr(outputs)
    if dscr is not None and dscr < thresholds.dscr_medium:
        indicators.append(RiskIndicator(
            type="dscr_risk",
            level="high" if dscr < thresholds.dscr_high else "medium",
            message=f"Minimum DSCR of {dscr:.2f} below the recommended threshold",
            value=dscr,
        ))

    # Cash risk
    min_cash = min(row.cash_balance for row in outputs)
    if min_cash < 0:
        indicators.append(RiskIndicator(
            type="cash_risk",
            level="high",
            message=f"Negative cash balance with a minimum of {min_cash:.0f}",
            value=min_cash,
        ))

    # Profitability risk
    loss_share = sum(1 for row in outputs if row.net_income < 0) / len(outputs)
    if loss_share > thresholds.loss_share_medium:
        indicators.append(RiskIndicator(
            type="profitability_risk",
            level="high" if loss_share > thresholds.loss_share_high else "medium",
            message=f"{round(loss_share * 100)}% of months with a net loss",
            value=loss_share,
        ))

    return indicators


def generate_alerts(
    outputs: Sequence[MonthlyFinancialOutput],
    thresholds: Optional[RiskThresholds] = None
) -> List[Alert]:
    """Build the dashboard alert stream."""
    thresholds = thresholds or RiskThresholds()
    alerts: List[Alert] = []

    negative_cash = [row for row in outputs if row.cash_balance < 0]
    if negative_cash:
        alerts.append(Alert(
            type="warning",
            title="Negative cash balance",
            message=f"{len(negative_cash)} months with a negative cash balance",
            severity="high",
        ))

    low_dscr = [row for row in outputs if row.dscr is not None and row.dscr < thresholds.dscr_medium]
    if low_dscr:
        alerts.append(Alert(
            type="warning",
            title="Low DSCR",
            message=f"{len(low_dscr)} months with a DSCR below {thresholds.dscr_medium}",
            severity="medium",
        ))

    streak = max_consecutive_losses(outputs)
    if streak >= thresholds.consecutive_losses_alert:
        alerts.append(Alert(
            type="error",
            title="Consecutive losses",
            message=f"{streak} consecutive months of losses",
            severity="high",
        ))

    return alerts


def risk_engine(
    outputs: Sequence[MonthlyFinancialOutput],
    thresholds: Optional[RiskThresholds] = None
) -> RiskOutput:
    """
    Main risk engine.

    An empty series yields risk_level "unknown" with no indicators.
    """
    output = RiskOutput()
    if not outputs:
        return output

    output.indicators = calculate_risk_indicators(outputs, thresholds)
    output.alerts = generate_alerts(outputs, thresholds)
    output.risk_level = classify_risk_level(output.indicators)

    logger.debug(
        "Risk level %s (%d high, %d medium, %d alerts)",
        output.risk_level, output.high_risk, output.medium_risk, len(output.alerts),
    )
    return output


# =============================================================================
# END OF RISK & ALERT DETECTOR
# =============================================================================
