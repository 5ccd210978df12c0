"""Tests for the markowitz, bandit and rl allocation strategies.

Randomness is pinned with FixedRandom so each bandit branch is exercised
deterministically. Expected weights are derived by hand from the formulas.
"""

from __future__ import annotations

import pytest

from src.core.enums import MarketRegime, YieldProtocol
from src.rebalancing.models import MarketSignals
from src.rebalancing.strategies import bandit, classify_regime, markowitz, rl

S = YieldProtocol.STAKING
L = YieldProtocol.LENDING
LP = YieldProtocol.LIQUIDITY_PROVISION


def _signals(apr: dict, risk: float = 0, volatility: dict | None = None) -> MarketSignals:
    return MarketSignals.from_dict(
        {"prices": {"SEI": 0.5}, "apr": apr, "risk": risk, "volatility": volatility}
    )


# ---------------------------------------------------------------------------
# Tests: Regime classification
# ---------------------------------------------------------------------------
class TestClassifyRegime:

    @pytest.mark.parametrize(
        "risk,expected",
        [
            (0, MarketRegime.LOW),
            (29, MarketRegime.LOW),
            (30, MarketRegime.MODERATE),
            (70, MarketRegime.MODERATE),
            (71, MarketRegime.HIGH),
            (100, MarketRegime.HIGH),
        ],
    )
    def test_thresholds(self, risk: float, expected: MarketRegime) -> None:
        assert classify_regime(risk) is expected


# ---------------------------------------------------------------------------
# Tests: Markowitz baseline
# ---------------------------------------------------------------------------
class TestMarkowitz:
    """Risk-adjusted proportional weights."""

    def test_proportional_to_apr_at_zero_risk(self, two_protocol_signals) -> None:
        plan = markowitz(two_protocol_signals)
        assert plan.weights() == {S: 6667, L: 3333}
        assert plan.confidence == 55
        assert plan.model == "markowitz"

    def test_volatility_penalty(self, high_risk_signals) -> None:
        plan = markowitz(high_risk_signals)
        # adjusted = apr - 0.05 * 0.8 -> 0.26 / 0.04 / 0.02
        assert plan.weights() == {S: 8125, L: 1250, LP: 625}
        assert plan.confidence == 74

    def test_penalty_capped_at_half(self) -> None:
        plan = markowitz(_signals({"Staking": 0.9, "Lending": 0.6}, risk=100,
                                  volatility={"Staking": 2.0, "Lending": 2.0}))
        # penalty = min(2.0, 0.5) -> adjusted 0.4 / 0.1
        assert plan.weights() == {S: 8000, L: 2000}

    def test_fully_penalized_protocol_dropped(self) -> None:
        plan = markowitz(_signals({"Staking": 0.10, "Lending": 0.01}, risk=100,
                                  volatility={"Staking": 0.05, "Lending": 0.2}))
        assert plan.weights() == {S: 10_000}

    def test_all_zero_apr_gives_empty_legs(self) -> None:
        plan = markowitz(_signals({"Staking": 0.0, "Lending": 0.0}))
        assert plan.is_empty

    def test_confidence_capped(self) -> None:
        plan = markowitz(_signals({"Staking": 0.60, "Lending": 0.01}))
        assert plan.confidence == 90

    def test_residual_on_first_leg(self) -> None:
        plan = markowitz(_signals({"Staking": 0.1, "Lending": 0.1, "LP": 0.1}))
        assert plan.weights() == {S: 3334, L: 3333, LP: 3333}
        assert plan.total_bps == 10_000


# ---------------------------------------------------------------------------
# Tests: Bandit
# ---------------------------------------------------------------------------
class TestBandit:
    """Explore keeps the baseline, exploit boosts the best-APR protocol."""

    def test_exploit_boosts_best_and_caps(self, two_protocol_signals, exploit_rng) -> None:
        plan = bandit(two_protocol_signals, rng=exploit_rng)
        assert plan.weights() == {S: 7000, L: 3000}
        assert plan.confidence == 45
        assert plan.model == "bandit"
        assert exploit_rng.calls == 1

    def test_explore_keeps_baseline(self, two_protocol_signals, explore_rng) -> None:
        plan = bandit(two_protocol_signals, rng=explore_rng)
        assert plan.weights() == {S: 6667, L: 3333}
        assert plan.confidence == 45

    def test_reduction_split_evenly(self, exploit_rng) -> None:
        signals = _signals({"Staking": 0.10, "Lending": 0.05, "LP": 0.05})
        plan = bandit(signals, rng=exploit_rng)
        # 5000 + min(2000, 1500) -> 6500, others lose 750 each
        assert plan.weights() == {S: 6500, L: 1750, LP: 1750}

    def test_tie_prefers_first_protocol(self, exploit_rng) -> None:
        plan = bandit(_signals({"Staking": 0.1, "Lending": 0.1}), rng=exploit_rng)
        assert plan.weights() == {S: 6500, L: 3500}

    def test_confidence_floor(self, exploit_rng) -> None:
        # spread 0 -> baseline 50, bandit 40; the floor only binds below 40
        plan = bandit(_signals({"Staking": 0.1, "Lending": 0.1}), rng=exploit_rng)
        assert plan.confidence == 40

    def test_already_capped_best_is_unchanged(self, high_risk_signals, exploit_rng) -> None:
        plan = bandit(high_risk_signals, rng=exploit_rng)
        assert plan.weights() == {S: 8125, L: 1250, LP: 625}
        assert plan.confidence == 64

    def test_explore_probability_zero_never_explores(self, two_protocol_signals, fixed_random) -> None:
        plan = bandit(two_protocol_signals, rng=fixed_random(0.0), exploration_rate=0.0)
        assert plan.weights() == {S: 7000, L: 3000}

    def test_empty_baseline(self, exploit_rng) -> None:
        plan = bandit(_signals({"Staking": 0.0}), rng=exploit_rng)
        assert plan.is_empty
        assert plan.model == "bandit"


# ---------------------------------------------------------------------------
# Tests: RL regime refinement
# ---------------------------------------------------------------------------
class TestRl:
    """Regime-dependent reshaping of the bandit plan."""

    def test_low_regime_boost(self, two_protocol_signals, exploit_rng) -> None:
        plan = rl(two_protocol_signals, rng=exploit_rng)
        assert plan.weights() == {S: 6500, L: 3500}
        assert plan.confidence == 50
        assert plan.model == "rl"

    def test_low_regime_boost_after_explore(self, two_protocol_signals, explore_rng) -> None:
        plan = rl(two_protocol_signals, rng=explore_rng)
        assert plan.weights() == {S: 6500, L: 3500}
        assert plan.confidence == 50

    def test_high_regime_clamps_and_spreads(self, high_risk_signals, exploit_rng) -> None:
        plan = rl(high_risk_signals, rng=exploit_rng)
        # clamp 8125 -> 4000, freed 4125 spread as 1375 per leg
        assert plan.weights() == {S: 5375, L: 2625, LP: 2000}
        assert plan.confidence == 69

    def test_moderate_regime_unchanged(self, exploit_rng, fixed_random) -> None:
        signals = _signals({"Staking": 0.10, "Lending": 0.05}, risk=50,
                           volatility={"Staking": 0.0, "Lending": 0.0})
        base = bandit(signals, rng=fixed_random(0.5))
        plan = rl(signals, rng=exploit_rng)
        assert plan.weights() == base.weights()
        assert plan.confidence == base.confidence + 5

    def test_confidence_ceiling(self, exploit_rng) -> None:
        signals = _signals({"Staking": 0.9, "Lending": 0.05}, risk=50,
                           volatility={"Staking": 0.0, "Lending": 0.0})
        plan = rl(signals, rng=exploit_rng)
        # 90 -> bandit 80 -> rl 85
        assert plan.confidence == 85
        assert plan.confidence <= 95

    @pytest.mark.parametrize("risk", [0, 20, 50, 75, 100])
    def test_always_sums_to_total(self, risk: float, fixed_random) -> None:
        signals = _signals({"Staking": 0.07, "Lending": 0.11, "LP": 0.23, "PerpsHedge": 0.04},
                           risk=risk)
        for value in (0.0, 0.5):
            plan = rl(signals, rng=fixed_random(value))
            assert plan.total_bps == 10_000
            assert all(leg.target_bps >= 0 for leg in plan.legs)
