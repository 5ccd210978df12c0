"""Optimizer facade: strategy dispatch followed by constraint enforcement.

AllocationOptimizer is the single entry point the orchestrator, the API and
the CLI use to turn signals into an enforced AllocationPlan. No other
component computes weights directly.

Pure computation.
"""

from __future__ import annotations

import numpy as np
import structlog

from src.core.config import settings
from src.core.enums import AllocationModel
from src.rebalancing import strategies
from src.rebalancing.constraint_enforcer import ConstraintEnforcer
from src.rebalancing.models import (
    DEFAULT_VOLATILITY,
    AllocationConstraints,
    AllocationPlan,
    MarketSignals,
)
from src.rebalancing.strategies import bandit, markowitz, rl

log = structlog.get_logger(__name__)


def resolve_model(name: str | AllocationModel | None) -> AllocationModel:
    """Map a model name to an AllocationModel.

    Matching is case-insensitive. None uses the configured default; unknown
    names fall back to the most refined strategy (rl).
    """
    if isinstance(name, AllocationModel):
        return name
    if name is None:
        name = settings.default_model
    try:
        return AllocationModel(str(name).strip().lower())
    except ValueError:
        log.warning("model_fallback", requested=name, fallback=AllocationModel.RL.value)
        return AllocationModel.RL


class AllocationOptimizer:
    """Select a strategy by name, run it, then enforce constraints.

    Args:
        rng: Random source for the bandit explore/exploit draw. Defaults to an
            unseeded numpy Generator.
        exploration_rate: Probability of the explore branch. Defaults to
            settings.exploration_rate.
        default_constraints: Constraints used when a call passes none.
    """

    def __init__(
        self,
        rng: np.random.Generator | None = None,
        exploration_rate: float | None = None,
        default_constraints: AllocationConstraints | None = None,
    ) -> None:
        self.rng = rng if rng is not None else np.random.default_rng()
        self.exploration_rate = (
            settings.exploration_rate if exploration_rate is None else exploration_rate
        )
        self.default_constraints = default_constraints or AllocationConstraints()

    def draft(
        self,
        signals: MarketSignals,
        model: str | AllocationModel | None = None,
    ) -> AllocationPlan:
        """Run the selected strategy without enforcement."""
        resolved = resolve_model(model)
        if resolved is AllocationModel.MARKOWITZ:
            return markowitz(signals)
        if resolved is AllocationModel.BANDIT:
            return bandit(signals, rng=self.rng, exploration_rate=self.exploration_rate)
        return rl(signals, rng=self.rng, exploration_rate=self.exploration_rate)

    def optimize(
        self,
        signals: MarketSignals,
        model: str | AllocationModel | None = None,
        constraints: AllocationConstraints | None = None,
    ) -> AllocationPlan:
        """Generate an enforced allocation plan.

        Args:
            signals: Validated market signals.
            model: Strategy name (markowitz / bandit / rl). None = default.
            constraints: Constraint set. None = default_constraints.

        Returns:
            Enforced AllocationPlan. Empty (total 0, confidence 0) when no
            protocol has a usable APR.
        """
        draft = self.draft(signals, model)
        enforcer = ConstraintEnforcer(constraints or self.default_constraints)
        plan = enforcer.enforce(draft, signals)

        log.info(
            "plan_generated",
            model=plan.model,
            n_legs=len(plan.legs),
            total_bps=plan.total_bps,
            confidence=plan.confidence,
            draft_confidence=draft.confidence,
        )
        return plan

    def describe(self) -> dict:
        """Available models, defaults and live strategy parameters."""
        return {
            "available": [m.value for m in AllocationModel],
            "default": resolve_model(None).value,
            "constraints": self.default_constraints.to_dict(),
            "configurations": {
                AllocationModel.MARKOWITZ.value: {
                    "max_risk_penalty": strategies.MAX_RISK_PENALTY,
                    "default_volatility": DEFAULT_VOLATILITY,
                    "max_confidence": strategies.MAX_BASELINE_CONFIDENCE,
                },
                AllocationModel.BANDIT.value: {
                    "exploration_rate": self.exploration_rate,
                    "boost_fraction": strategies.BANDIT_BOOST_FRACTION,
                    "boost_cap_bps": strategies.BANDIT_BOOST_CAP_BPS,
                    "leg_cap_bps": strategies.BANDIT_LEG_CAP_BPS,
                },
                AllocationModel.RL.value: {
                    "high_regime_above": strategies.HIGH_REGIME_ABOVE,
                    "low_regime_below": strategies.LOW_REGIME_BELOW,
                    "high_regime_leg_cap_bps": strategies.HIGH_REGIME_LEG_CAP_BPS,
                    "low_regime_boost_cap_bps": strategies.LOW_REGIME_BOOST_CAP_BPS,
                    "low_regime_leg_cap_bps": strategies.LOW_REGIME_LEG_CAP_BPS,
                },
            },
        }
