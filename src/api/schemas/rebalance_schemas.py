"""Pydantic v2 request schemas for the rebalancing API.

Request bodies mirror the core operations (plan, compare, what-if, execute,
dry-run, batch) and convert into the core's validated value types. Shape
errors surface as 422 from FastAPI; value errors raised by the core
(unknown protocol, risk out of range) are mapped to 422 by the routes.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.rebalancing.models import AllocationConstraints, MarketSignals, RebalanceRequest


# =====================================================================
# SHARED PAYLOADS
# =====================================================================


class SignalsPayload(BaseModel):
    """Market signals: prices, APR and risk are required."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "prices": {"SEI": 0.42, "USDC": 1.0},
                "apr": {"Staking": 0.12, "Lending": 0.08, "LP": 0.15, "PerpsHedge": 0.05},
                "risk": 45,
                "volatility": {"Staking": 0.1, "Lending": 0.05, "LP": 0.3, "PerpsHedge": 0.4},
            }
        }
    )

    prices: dict[str, float]
    apr: dict[str, float]
    risk: float = Field(..., description="Portfolio risk score, 0-100")
    volatility: Optional[dict[str, float]] = None
    liquidity: Optional[dict[str, float]] = None

    def to_signals(self) -> MarketSignals:
        return MarketSignals.from_dict(self.model_dump())


class ConstraintsPayload(BaseModel):
    """Optional constraint overrides; omitted fields take configured defaults."""

    max_single_allocation_bps: Optional[int] = Field(default=None, gt=0, le=10_000)
    min_diversification: Optional[int] = Field(default=None, ge=1)
    risk_tolerance: Optional[float] = Field(default=None, ge=0, le=100)

    def to_constraints(self) -> AllocationConstraints:
        return AllocationConstraints.from_dict(self.model_dump())


def _constraints_or_none(payload: ConstraintsPayload | None) -> AllocationConstraints | None:
    return payload.to_constraints() if payload is not None else None


# =====================================================================
# REQUEST MODELS
# =====================================================================


class PlanRequest(BaseModel):
    """Request body for POST /rebalance/plan."""

    signals: SignalsPayload
    model: Optional[str] = Field(default=None, description="markowitz, bandit or rl")
    constraints: Optional[ConstraintsPayload] = None

    def to_constraints(self) -> AllocationConstraints | None:
        return _constraints_or_none(self.constraints)


class CompareRequest(BaseModel):
    """Request body for POST /rebalance/compare."""

    signals: SignalsPayload
    constraints: Optional[ConstraintsPayload] = None

    def to_constraints(self) -> AllocationConstraints | None:
        return _constraints_or_none(self.constraints)


class WhatIfRequest(BaseModel):
    """Request body for POST /rebalance/what-if."""

    signals: SignalsPayload
    model: Optional[str] = None
    portfolio_value: Optional[float] = Field(default=None, gt=0)
    constraints: Optional[ConstraintsPayload] = None

    def to_constraints(self) -> AllocationConstraints | None:
        return _constraints_or_none(self.constraints)


class RebalanceRequestBody(BaseModel):
    """Request body for POST /rebalance/execute and /rebalance/dry-run."""

    vault_id: int = Field(..., ge=0)
    signals: SignalsPayload
    model: Optional[str] = None
    constraints: Optional[ConstraintsPayload] = None

    def to_request(self) -> RebalanceRequest:
        return RebalanceRequest(
            vault_id=self.vault_id,
            signals=self.signals.to_signals(),
            model=self.model,
            constraints=_constraints_or_none(self.constraints),
        )


class BatchRebalanceRequest(BaseModel):
    """Request body for POST /rebalance/batch."""

    requests: list[RebalanceRequestBody] = Field(..., min_length=1)

