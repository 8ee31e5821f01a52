# =============================================================================
# FINPLAN ENGINE - RISK & ALERT DETECTOR TESTS
# =============================================================================

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from finplan.risk import (
    RiskIndicator, RiskThresholds, classify_risk_level, generate_alerts,
    load_risk_thresholds, max_consecutive_losses, min_dscr, risk_engine
)


def indicator_types(output):
    return {indicator.type: indicator.level for indicator in output.indicators}


class TestIndicators:
    """Tests for risk indicators."""

    def test_dscr_high(self, make_series):
        """Minimum DSCR 0.9 is below 1.0: high risk."""
        outputs = make_series([
            {"dscr": 1.5, "cash_balance": 100, "net_income": 10},
            {"dscr": 0.9, "cash_balance": 100, "net_income": 10},
        ])
        output = risk_engine(outputs)
        assert indicator_types(output) == {"dscr_risk": "high"}
        assert output.risk_level == "high"

    def test_dscr_medium_alone_is_low(self, make_series):
        """A single medium indicator does not raise the level."""
        outputs = make_series([{"dscr": 1.1, "cash_balance": 100, "net_income": 10}])
        output = risk_engine(outputs)
        assert indicator_types(output) == {"dscr_risk": "medium"}
        assert output.risk_level == "low"

    def test_months_without_debt_service_ignored(self, make_series):
        outputs = make_series([{"dscr": None, "cash_balance": 100, "net_income": 10}] * 3)
        assert min_dscr(outputs) is None
        assert risk_engine(outputs).indicators == []

    def test_cash_risk_always_high(self, make_series):
        outputs = make_series([
            {"cash_balance": -1, "net_income": 10},
            {"cash_balance": 50, "net_income": 10},
        ])
        output = risk_engine(outputs)
        assert indicator_types(output) == {"cash_risk": "high"}
        assert output.indicators[0].value == -1

    def test_profitability_risk(self, make_series):
        # 3 of 5 loss months = 60% -> medium
        medium = make_series([{"net_income": v, "cash_balance": 1} for v in (-1, -1, -1, 1, 1)])
        assert indicator_types(risk_engine(medium)) == {"profitability_risk": "medium"}
        # 9 of 10 = 90% -> high
        high = make_series([{"net_income": -1, "cash_balance": 1}] * 9 + [{"net_income": 1, "cash_balance": 1}])
        assert indicator_types(risk_engine(high)) == {"profitability_risk": "high"}

    def test_half_losses_is_not_a_risk(self, make_series):
        outputs = make_series([{"net_income": v, "cash_balance": 1} for v in (-1, 1)])
        assert risk_engine(outputs).indicators == []

    def test_two_mediums_make_medium(self, make_series):
        outputs = make_series(
            [{"net_income": -1, "cash_balance": 1, "dscr": 1.1}] * 3
            + [{"net_income": 1, "cash_balance": 1, "dscr": 1.1}] * 2
        )
        output = risk_engine(outputs)
        assert output.medium_risk == 2
        assert output.risk_level == "medium"


class TestRiskLevel:
    """Tests for risk level classification."""

    def test_empty_series_is_unknown(self):
        output = risk_engine([])
        assert output.risk_level == "unknown"
        assert output.indicators == []
        assert output.alerts == []

    def test_no_indicators_is_low(self):
        assert classify_risk_level([]) == "low"

    def test_high_wins(self):
        indicators = [
            RiskIndicator("a", "medium", "", 0.0),
            RiskIndicator("b", "high", "", 0.0),
        ]
        assert classify_risk_level(indicators) == "high"


class TestAlerts:
    """Tests for the alert stream."""

    def test_one_alert_per_kind(self, make_series):
        outputs = make_series([
            {"cash_balance": -10, "net_income": -5, "dscr": 0.5},
            {"cash_balance": -20, "net_income": -5, "dscr": 0.7},
            {"cash_balance": -30, "net_income": -5, "dscr": None},
        ])
        alerts = generate_alerts(outputs)
        titles = [alert.title for alert in alerts]
        assert titles == ["Negative cash balance", "Low DSCR", "Consecutive losses"]
        assert alerts[0].severity == "high"
        assert "3 months" in alerts[0].message
        assert alerts[1].severity == "medium"
        assert "2 months" in alerts[1].message
        assert alerts[2].type == "error"

    def test_loss_streak_resets(self, make_series):
        outputs = make_series([{"net_income": v, "cash_balance": 1} for v in (-1, -1, 0, -1, -1)])
        assert max_consecutive_losses(outputs) == 2
        assert generate_alerts(outputs) == []

    def test_healthy_series_has_no_alerts(self, make_series):
        outputs = make_series([{"net_income": 10, "cash_balance": 10, "dscr": 2.0}] * 4)
        assert generate_alerts(outputs) == []


class TestThresholds:
    """Tests for threshold configuration."""

    def test_defaults(self):
        thresholds = load_risk_thresholds({})
        assert thresholds == RiskThresholds()

    def test_overrides(self, make_series):
        thresholds = load_risk_thresholds({"risk": {"dscr_medium": 2.0, "dscr_high": 1.5}})
        outputs = make_series([{"dscr": 1.6, "cash_balance": 1, "net_income": 1}])
        output = risk_engine(outputs, thresholds)
        assert indicator_types(output) == {"dscr_risk": "medium"}

    def test_to_dict(self, make_series):
        outputs = make_series([{"cash_balance": -1, "net_income": 1}])
        data = risk_engine(outputs).to_dict()
        assert data["risk_level"] == "high"
        assert data["summary"]["high_risk"] == 1
        assert data["indicators"][0]["type"] == "cash_risk"
