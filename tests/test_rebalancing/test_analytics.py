"""Tests for projected-return, risk and model-comparison analytics."""

from __future__ import annotations

import pytest

from src.core.enums import RiskLevel, YieldProtocol
from src.rebalancing.analytics import (
    DEFAULT_PROTOCOL_RISK,
    classify_risk,
    compare_plans,
    project_returns,
    protocol_risk,
    risk_metrics,
    weighted_apr,
)
from src.rebalancing.models import AllocationPlan

S = YieldProtocol.STAKING
L = YieldProtocol.LENDING


def _plan(weights: dict, model: str = "markowitz", confidence: int = 60) -> AllocationPlan:
    return AllocationPlan.from_weights(weights, confidence=confidence, model=model)


# ---------------------------------------------------------------------------
# Tests: Returns
# ---------------------------------------------------------------------------
class TestProjectedReturns:

    def test_weighted_apr(self, two_protocol_signals) -> None:
        plan = _plan({S: 6000, L: 4000})
        assert weighted_apr(plan, two_protocol_signals.apr) == pytest.approx(0.08)

    def test_missing_apr_counts_zero(self, two_protocol_signals) -> None:
        plan = _plan({S: 5000, YieldProtocol.PERPS_HEDGE: 5000})
        assert weighted_apr(plan, two_protocol_signals.apr) == pytest.approx(0.05)

    def test_thirty_day_projection(self, two_protocol_signals) -> None:
        projection = project_returns(_plan({S: 6000, L: 4000}), two_protocol_signals, 1_000_000)
        assert projection.monthly_return == pytest.approx(0.08 / 12)
        assert projection.projected_value == pytest.approx(1_006_666.6667)
        assert projection.expected_gain == pytest.approx(6_666.6667)

        data = projection.to_dict()
        assert data["weighted_apr_pct"] == 8.0
        assert data["monthly_return_pct"] == 0.67
        assert data["projected_value"] == 1_006_667
        assert data["expected_gain"] == 6_667
        assert data["time_horizon"] == "30d"

    def test_empty_plan_projects_no_gain(self, two_protocol_signals) -> None:
        projection = project_returns(AllocationPlan.empty("rl"), two_protocol_signals, 500.0)
        assert projection.weighted_apr == 0.0
        assert projection.projected_value == 500.0


# ---------------------------------------------------------------------------
# Tests: Risk
# ---------------------------------------------------------------------------
class TestRiskMetrics:

    def test_protocol_risk_table(self) -> None:
        assert protocol_risk(S) == 20.0
        assert protocol_risk("LP") == 55.0
        assert protocol_risk("PerpsHedge") == 70.0
        assert protocol_risk("Restaking") == DEFAULT_PROTOCOL_RISK

    @pytest.mark.parametrize(
        "score,level",
        [(0, RiskLevel.LOW), (29.9, RiskLevel.LOW), (30, RiskLevel.MEDIUM),
         (59.9, RiskLevel.MEDIUM), (60, RiskLevel.HIGH)],
    )
    def test_classify_risk(self, score: float, level: RiskLevel) -> None:
        assert classify_risk(score) is level

    def test_weighted_risk_and_diversification(self) -> None:
        metrics = risk_metrics(_plan({S: 6000, L: 4000}))
        assert metrics.portfolio_risk == pytest.approx(26.0)
        assert metrics.risk_level is RiskLevel.LOW
        assert metrics.diversification_score == pytest.approx(-10.0)
        assert metrics.max_drawdown == pytest.approx(20.8)
        assert metrics.volatility == pytest.approx(31.2)

    def test_four_equal_legs_diversification(self) -> None:
        plan = _plan({
            S: 2500, L: 2500, YieldProtocol.LIQUIDITY_PROVISION: 2500,
            YieldProtocol.PERPS_HEDGE: 2500,
        })
        assert risk_metrics(plan).diversification_score == pytest.approx(75.0)

    def test_empty_plan(self) -> None:
        metrics = risk_metrics(AllocationPlan.empty("rl"))
        assert metrics.portfolio_risk == 0.0
        assert metrics.diversification_score == 0.0
        assert metrics.risk_level is RiskLevel.LOW


# ---------------------------------------------------------------------------
# Tests: Comparison
# ---------------------------------------------------------------------------
class TestComparePlans:
    """Recommendation by projected APR / (risk + 1)."""

    def test_recommends_best_ratio(self, two_protocol_signals) -> None:
        report = compare_plans(
            {
                "markowitz": _plan({S: 6667, L: 3333}),
                "bandit": _plan({S: 7000, L: 3000}, model="bandit"),
                "rl": _plan({S: 6500, L: 3500}, model="rl"),
            },
            two_protocol_signals,
        )
        assert report.recommended == "bandit"
        assert report.reasoning.startswith("Best risk-adjusted return: 8.50% APR with ")
        assert report.reasoning.endswith(" risk score")
        assert report.plan_for("rl").weights() == {S: 6500, L: 3500}

        data = report.to_dict()
        assert [m["model"] for m in data["models"]] == ["markowitz", "bandit", "rl"]
        assert data["models"][1]["projected_apr_pct"] == 8.5
        assert data["recommended"] == "bandit"

    def test_tie_keeps_earlier(self, two_protocol_signals) -> None:
        same = {S: 6000, L: 4000}
        report = compare_plans(
            {"markowitz": _plan(same), "bandit": _plan(same, model="bandit")},
            two_protocol_signals,
        )
        assert report.recommended == "markowitz"

    def test_empty_plan_scores_zero(self, two_protocol_signals) -> None:
        report = compare_plans(
            {"rl": AllocationPlan.empty("rl"), "bandit": _plan({S: 10_000}, model="bandit")},
            two_protocol_signals,
        )
        assert report.comparisons[0].score == 0.0
        assert report.recommended == "bandit"

    def test_requires_plans(self, two_protocol_signals) -> None:
        with pytest.raises(ValueError):
            compare_plans({}, two_protocol_signals)

    def test_unknown_plan_lookup(self, two_protocol_signals) -> None:
        report = compare_plans({"rl": _plan({S: 10_000})}, two_protocol_signals)
        with pytest.raises(KeyError):
            report.plan_for("bandit")
