"""Allocation strategies: MarketSignals -> draft AllocationPlan.

Three pure functions ordered by increasing sophistication, each defined as a
refinement of the one below it:

1. markowitz: risk-adjusted mean-variance baseline.
2. bandit: exploration/exploitation boost of the highest-APR protocol.
3. rl: volatility-regime refinement of the bandit plan. A fixed heuristic,
   not a learned policy.

Drafts may contain zero-weight legs; the ConstraintEnforcer prunes them.
Randomness is injected through a numpy Generator (anything with ``random()``)
so tests can force either bandit branch.

Pure computation; nothing here touches the network or a vault.
"""

from __future__ import annotations

import numpy as np
import structlog

from src.core.enums import AllocationModel, MarketRegime, YieldProtocol
from src.rebalancing.bps import TOTAL_BPS, round_half_up, settle_residual
from src.rebalancing.models import AllocationPlan, MarketSignals

log = structlog.get_logger(__name__)

# Baseline
MAX_RISK_PENALTY = 0.5
MAX_BASELINE_CONFIDENCE = 90

# Bandit
EXPLORATION_RATE = 0.10
BANDIT_BOOST_FRACTION = 0.30
BANDIT_BOOST_CAP_BPS = 2000
BANDIT_LEG_CAP_BPS = 7000
BANDIT_CONFIDENCE_DISCOUNT = 10
BANDIT_CONFIDENCE_FLOOR = 30

# Regime refinement
HIGH_REGIME_ABOVE = 0.7
LOW_REGIME_BELOW = 0.3
HIGH_REGIME_LEG_CAP_BPS = 4000
LOW_REGIME_BOOST_FRACTION = 0.20
LOW_REGIME_BOOST_CAP_BPS = 1500
LOW_REGIME_LEG_CAP_BPS = 6500
RL_CONFIDENCE_BONUS = 5
RL_CONFIDENCE_CEILING = 95


def classify_regime(risk: float) -> MarketRegime:
    """Bucket a 0-100 risk score into a market regime."""
    market_volatility = risk / 100
    if market_volatility > HIGH_REGIME_ABOVE:
        return MarketRegime.HIGH
    if market_volatility < LOW_REGIME_BELOW:
        return MarketRegime.LOW
    return MarketRegime.MODERATE


def _best_apr_protocol(
    signals: MarketSignals, among: list[YieldProtocol] | None = None,
) -> YieldProtocol | None:
    """Highest raw APR; ties keep the earliest protocol."""
    candidates = among if among is not None else list(signals.apr)
    best: YieldProtocol | None = None
    for proto in candidates:
        if best is None or signals.apr.get(proto, 0.0) > signals.apr.get(best, 0.0):
            best = proto
    return best


# ---------------------------------------------------------------------------
# 1. Baseline
# ---------------------------------------------------------------------------
def markowitz(signals: MarketSignals) -> AllocationPlan:
    """Risk-adjusted mean-variance baseline.

    adjusted_p = max(apr_p - min(vol_p * risk / 100, 0.5), 0), weights
    proportional to adjusted returns, rounding drift settled on the first leg.
    Confidence grows with the APR spread: min(90, 50 + 100 * spread).
    """
    model = AllocationModel.MARKOWITZ.value
    if not signals.apr:
        return AllocationPlan.empty(model)

    adjusted: dict[YieldProtocol, float] = {}
    for proto, apr in signals.apr.items():
        penalty = min(signals.volatility_of(proto) * signals.risk / 100, MAX_RISK_PENALTY)
        adjusted[proto] = max(apr - penalty, 0.0)

    total_adjusted = sum(adjusted.values())
    divisor = total_adjusted or 1.0
    weights = {
        proto: max(0, round_half_up(value / divisor * TOTAL_BPS))
        for proto, value in adjusted.items()
    }
    if total_adjusted > 0:
        settle_residual(weights)

    aprs = list(signals.apr.values())
    spread = max(aprs) - min(aprs)
    confidence = round_half_up(min(MAX_BASELINE_CONFIDENCE, 50 + spread * 100))

    return AllocationPlan.from_weights(
        {p: bps for p, bps in weights.items() if bps > 0},
        confidence=confidence,
        model=model,
    )


# ---------------------------------------------------------------------------
# 2. Exploration / exploitation
# ---------------------------------------------------------------------------
def bandit(
    signals: MarketSignals,
    rng: np.random.Generator | None = None,
    exploration_rate: float = EXPLORATION_RATE,
) -> AllocationPlan:
    """Multi-armed-bandit refinement of the baseline.

    With probability ``exploration_rate`` the baseline is kept as is. Otherwise
    the highest-APR protocol is boosted by min(2000, 30% of its bps), capped at
    7000 bps, and the boost is taken evenly (floor division) from every other
    leg.
    """
    model = AllocationModel.BANDIT.value
    base = markowitz(signals)
    if base.is_empty:
        return AllocationPlan(legs=base.legs, confidence=base.confidence, model=model)

    rng = rng if rng is not None else np.random.default_rng()
    weights = base.weights()
    best = _best_apr_protocol(signals)
    explore = float(rng.random()) < exploration_rate

    if not explore and best in weights:
        current = weights[best]
        boost = min(BANDIT_BOOST_CAP_BPS, round_half_up(current * BANDIT_BOOST_FRACTION))
        weights[best] = min(BANDIT_LEG_CAP_BPS, current + boost)

        excess = sum(weights.values()) - TOTAL_BPS
        others = [p for p in weights if p != best]
        if excess > 0 and others:
            reduction = excess // len(others)
            for proto in others:
                weights[proto] = max(0, weights[proto] - reduction)

    settle_residual(weights)
    log.debug(
        "bandit_branch",
        explore=explore,
        best=best.value if best else None,
        exploration_rate=exploration_rate,
    )
    return AllocationPlan.from_weights(
        weights,
        confidence=max(base.confidence - BANDIT_CONFIDENCE_DISCOUNT, BANDIT_CONFIDENCE_FLOOR),
        model=model,
    )


# ---------------------------------------------------------------------------
# 3. Regime-aware refinement
# ---------------------------------------------------------------------------
def rl(
    signals: MarketSignals,
    rng: np.random.Generator | None = None,
    exploration_rate: float = EXPLORATION_RATE,
) -> AllocationPlan:
    """Volatility-regime refinement of the bandit plan.

    - HIGH regime: clamp legs at 4000 bps, spread the freed bps evenly over
      all legs (remainder on the first leg).
    - LOW regime: boost the highest-APR leg by min(1500, 20%), capped at
      6500 bps, and rescale the other legs to fill the rest.
    - MODERATE: unchanged.
    """
    model = AllocationModel.RL.value
    base = bandit(signals, rng=rng, exploration_rate=exploration_rate)
    if base.is_empty:
        return AllocationPlan(legs=base.legs, confidence=base.confidence, model=model)

    weights = base.weights()
    regime = classify_regime(signals.risk)

    if regime is MarketRegime.HIGH:
        for proto in weights:
            weights[proto] = min(weights[proto], HIGH_REGIME_LEG_CAP_BPS)
        freed = TOTAL_BPS - sum(weights.values())
        if freed > 0:
            per_leg, remainder = divmod(freed, len(weights))
            for i, proto in enumerate(weights):
                weights[proto] += per_leg + (remainder if i == 0 else 0)

    elif regime is MarketRegime.LOW:
        top = _best_apr_protocol(signals, among=list(weights))
        current = weights[top]
        boost = min(LOW_REGIME_BOOST_CAP_BPS, round_half_up(current * LOW_REGIME_BOOST_FRACTION))
        weights[top] = min(LOW_REGIME_LEG_CAP_BPS, current + boost)

        others = [p for p in weights if p != top]
        total_other = sum(weights[p] for p in others)
        target_other = TOTAL_BPS - weights[top]
        if total_other > 0:
            for proto in others:
                weights[proto] = round_half_up(weights[proto] / total_other * target_other)

    settle_residual(weights)
    log.debug("rl_regime", regime=regime.value, risk=signals.risk)
    return AllocationPlan.from_weights(
        weights,
        confidence=min(base.confidence + RL_CONFIDENCE_BONUS, RL_CONFIDENCE_CEILING),
        model=model,
    )
