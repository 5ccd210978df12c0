"""Projected-return and risk analytics for allocation plans.

Used by the model comparison and the what-if tool:
- project_returns: weighted APR and a 30-day value projection.
- risk_metrics: weighted protocol risk and diversification score.
- compare_plans: rank plans by projected APR / (risk score + 1).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from src.core.enums import RiskLevel, YieldProtocol
from src.rebalancing.bps import TOTAL_BPS, round_half_up
from src.rebalancing.models import AllocationPlan, MarketSignals

# Protocol risk scores (0-100)
PROTOCOL_RISK: dict[YieldProtocol, float] = {
    YieldProtocol.STAKING: 20.0,
    YieldProtocol.LENDING: 35.0,
    YieldProtocol.LIQUIDITY_PROVISION: 55.0,
    YieldProtocol.PERPS_HEDGE: 70.0,
}
DEFAULT_PROTOCOL_RISK = 50.0

MONTHS_PER_YEAR = 12
PROJECTION_HORIZON = "30d"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ProjectedReturns:
    """30-day projection of a plan.

    Attributes:
        weighted_apr: Allocation-weighted APR (fraction).
        monthly_return: weighted_apr / 12.
        portfolio_value: Starting notional.
        projected_value: portfolio_value * (1 + monthly_return).
        expected_gain: projected_value - portfolio_value.
    """

    weighted_apr: float
    monthly_return: float
    portfolio_value: float
    projected_value: float
    expected_gain: float

    def to_dict(self) -> dict:
        return {
            "weighted_apr_pct": round(self.weighted_apr * 100, 2),
            "monthly_return_pct": round(self.monthly_return * 100, 2),
            "projected_value": round_half_up(self.projected_value),
            "expected_gain": round_half_up(self.expected_gain),
            "time_horizon": PROJECTION_HORIZON,
        }


@dataclass(frozen=True)
class RiskMetrics:
    """Risk profile of a plan.

    max_drawdown and volatility are coarse estimates scaled off the
    portfolio risk score, not statistical measures.
    """

    portfolio_risk: float
    diversification_score: float
    risk_level: RiskLevel
    max_drawdown: float
    volatility: float

    def to_dict(self) -> dict:
        return {
            "portfolio_risk": round_half_up(self.portfolio_risk),
            "diversification_score": round_half_up(self.diversification_score),
            "risk_level": self.risk_level.value,
            "max_drawdown": round_half_up(self.max_drawdown),
            "volatility": round_half_up(self.volatility),
        }


@dataclass(frozen=True)
class ModelComparison:
    """One model's plan with its projected return and risk."""

    model: str
    plan: AllocationPlan
    projected_apr: float  # fraction
    risk_score: float
    diversification: float

    @property
    def score(self) -> float:
        """Return-to-risk ratio used for the recommendation."""
        return self.projected_apr * 100 / (self.risk_score + 1)

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "plan": self.plan.to_dict(),
            "confidence": self.plan.confidence,
            "projected_apr_pct": round(self.projected_apr * 100, 2),
            "risk_score": round_half_up(self.risk_score),
            "diversification": round_half_up(self.diversification),
        }


@dataclass(frozen=True)
class ComparisonReport:
    """All compared models plus the recommendation."""

    comparisons: list[ModelComparison]
    recommended: str
    reasoning: str

    def plan_for(self, model: str) -> AllocationPlan:
        for comparison in self.comparisons:
            if comparison.model == model:
                return comparison.plan
        raise KeyError(model)

    def to_dict(self) -> dict:
        return {
            "models": [c.to_dict() for c in self.comparisons],
            "recommended": self.recommended,
            "reasoning": self.reasoning,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def protocol_risk(protocol: YieldProtocol | str) -> float:
    """Fixed risk score of a protocol, 50 for anything unknown."""
    try:
        return PROTOCOL_RISK[YieldProtocol.parse(protocol)]
    except (KeyError, ValueError):
        return DEFAULT_PROTOCOL_RISK


def _leg_fractions(plan: AllocationPlan) -> np.ndarray:
    return np.array([leg.target_bps for leg in plan.legs], dtype=np.float64) / TOTAL_BPS


def weighted_apr(plan: AllocationPlan, apr: Mapping[YieldProtocol, float]) -> float:
    """sum(leg_bps / 10000 * apr[protocol]); protocols without APR count 0."""
    if plan.is_empty:
        return 0.0
    aprs = np.array([apr.get(leg.protocol, 0.0) for leg in plan.legs], dtype=np.float64)
    return float(_leg_fractions(plan) @ aprs)


def project_returns(
    plan: AllocationPlan,
    signals: MarketSignals,
    portfolio_value: float,
) -> ProjectedReturns:
    """Project a plan's value 30 days out at its weighted APR."""
    w_apr = weighted_apr(plan, signals.apr)
    monthly = w_apr / MONTHS_PER_YEAR
    projected = portfolio_value * (1 + monthly)
    return ProjectedReturns(
        weighted_apr=w_apr,
        monthly_return=monthly,
        portfolio_value=portfolio_value,
        projected_value=projected,
        expected_gain=projected - portfolio_value,
    )


def classify_risk(portfolio_risk: float) -> RiskLevel:
    if portfolio_risk < 30:
        return RiskLevel.LOW
    if portfolio_risk < 60:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def risk_metrics(plan: AllocationPlan) -> RiskMetrics:
    """Weighted protocol risk and diversification score of a plan.

    diversification = min(100, n_legs * 25 - max_leg_bps / 100), 0 for an
    empty plan.
    """
    if plan.is_empty:
        portfolio_risk = 0.0
        diversification = 0.0
    else:
        risks = np.array([protocol_risk(leg.protocol) for leg in plan.legs], dtype=np.float64)
        portfolio_risk = float(_leg_fractions(plan) @ risks)
        max_leg = max(leg.target_bps for leg in plan.legs)
        diversification = min(100.0, len(plan.legs) * 25 - max_leg / 100)

    return RiskMetrics(
        portfolio_risk=portfolio_risk,
        diversification_score=diversification,
        risk_level=classify_risk(portfolio_risk),
        max_drawdown=portfolio_risk * 0.8,
        volatility=portfolio_risk * 1.2,
    )


def compare_plans(
    plans: Mapping[str, AllocationPlan],
    signals: MarketSignals,
) -> ComparisonReport:
    """Rank plans by projected APR / (risk score + 1).

    Ties keep the earlier plan in iteration order.

    Raises:
        ValueError: If ``plans`` is empty.
    """
    if not plans:
        raise ValueError("compare_plans needs at least one plan")

    comparisons = []
    for model, plan in plans.items():
        metrics = risk_metrics(plan)
        comparisons.append(
            ModelComparison(
                model=model,
                plan=plan,
                projected_apr=weighted_apr(plan, signals.apr),
                risk_score=metrics.portfolio_risk,
                diversification=metrics.diversification_score,
            )
        )

    best = comparisons[0]
    for candidate in comparisons[1:]:
        if candidate.score > best.score:
            best = candidate

    reasoning = (
        f"Best risk-adjusted return: {best.projected_apr * 100:.2f}% APR "
        f"with {round_half_up(best.risk_score)} risk score"
    )
    return ComparisonReport(
        comparisons=comparisons,
        recommended=best.model,
        reasoning=reasoning,
    )
