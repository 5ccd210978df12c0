"""Constraint enforcement and exact-sum normalization for allocation plans.

ConstraintEnforcer takes any draft AllocationPlan, whichever strategy produced
it, and returns a plan that satisfies the hard constraints:

1. Clamp legs above max_single_allocation_bps and collect the excess.
2. Water-fill the excess into legs below the cap.
3. Add 100 bps stub legs for unused positive-APR protocols until
   min_diversification is met (undistributed excess goes to the stubs first).
4. Normalize proportionally to exactly 10000 bps, residual on the first leg,
   re-clamping anything the normalization pushed over the cap and spilling
   the overflow into legs with headroom or unused positive-APR protocols.
5. Drop zero-weight legs.
6. Penalize confidence by 15 (floor 20) when step 1 had to bite.

When fewer eligible protocols exist than the cap requires
(n * cap < 10000) the exact sum wins and the first leg stays above the cap.
"""

from __future__ import annotations

import structlog

from src.core.enums import YieldProtocol
from src.rebalancing.bps import TOTAL_BPS, round_half_up, settle_residual
from src.rebalancing.models import AllocationConstraints, AllocationPlan, MarketSignals

log = structlog.get_logger(__name__)

STUB_ALLOCATION_BPS = 100
CONSTRAINT_CONFIDENCE_PENALTY = 15
CONSTRAINT_CONFIDENCE_FLOOR = 20


class ConstraintEnforcer:
    """Enforce allocation constraints and the exact-sum invariant.

    Args:
        constraints: Constraint set. Defaults to AllocationConstraints().
    """

    def __init__(self, constraints: AllocationConstraints | None = None) -> None:
        self.constraints = constraints or AllocationConstraints()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def enforce(self, plan: AllocationPlan, signals: MarketSignals) -> AllocationPlan:
        """Return a constrained copy of ``plan``.

        Args:
            plan: Draft plan from a strategy.
            signals: Signals the draft was built from; source of stub protocols.

        Returns:
            AllocationPlan summing to exactly 10000 bps when non-empty, with
            no zero-weight legs.
        """
        cap = self.constraints.max_single_allocation_bps
        violations: list[str] = []
        weights = plan.weights()

        # Step 1: Max single allocation
        total_reduction = self._clamp_to_cap(weights, cap, violations)

        # Step 2: Redistribute freed bps below the cap
        undistributed = self._water_fill(weights, total_reduction, cap)

        # Step 3: Minimum diversification
        stubs = self._add_diversification_stubs(weights, signals, violations)
        if stubs and undistributed > 0:
            # Stub bps come out of the excess that found no headroom
            undistributed -= min(undistributed, STUB_ALLOCATION_BPS * len(stubs))
            undistributed = self._water_fill(weights, undistributed, cap)

        # Step 4: Exact-sum normalization (zero legs cannot carry the residual)
        weights = {p: bps for p, bps in weights.items() if bps > 0}
        self._normalize(weights, signals, cap, violations)

        # Step 5: Prune zero-weight legs
        weights = {p: bps for p, bps in weights.items() if bps > 0}

        # Step 6: Confidence penalty
        confidence = plan.confidence
        if total_reduction > 0:
            confidence = max(
                confidence - CONSTRAINT_CONFIDENCE_PENALTY, CONSTRAINT_CONFIDENCE_FLOOR,
            )
        if not weights:
            confidence = 0

        if violations:
            log.info(
                "constraints_enforced",
                model=plan.model,
                total_reduction=total_reduction,
                stubs=[p.value for p in stubs],
                violations=violations,
            )
        return AllocationPlan.from_weights(weights, confidence=confidence, model=plan.model)

    # ------------------------------------------------------------------
    # Internal: steps
    # ------------------------------------------------------------------
    @staticmethod
    def _clamp_to_cap(
        weights: dict[YieldProtocol, int], cap: int, violations: list[str],
    ) -> int:
        """Clamp legs to ``cap`` in place; return the total excess removed."""
        excess_total = 0
        for proto, bps in weights.items():
            if bps > cap:
                excess_total += bps - cap
                violations.append(
                    f"{proto.value}: {bps} bps clamped to {cap} "
                    f"(max_single_allocation_bps={cap})"
                )
                weights[proto] = cap
        return excess_total

    @staticmethod
    def _water_fill(weights: dict[YieldProtocol, int], amount: int, cap: int) -> int:
        """Spread ``amount`` bps over legs below ``cap``; return what did not fit.

        Each round splits the remainder evenly (floor division) over legs with
        headroom, never past the cap. Once the split rounds to zero, single
        units go to legs in order.
        """
        remaining = amount
        while remaining > 0:
            eligible = [p for p, bps in weights.items() if bps < cap]
            if not eligible:
                break
            share = remaining // len(eligible)
            if share == 0:
                for proto in eligible:
                    if remaining == 0:
                        break
                    weights[proto] += 1
                    remaining -= 1
                continue
            for proto in eligible:
                add = min(share, cap - weights[proto])
                weights[proto] += add
                remaining -= add
        return remaining

    def _add_diversification_stubs(
        self,
        weights: dict[YieldProtocol, int],
        signals: MarketSignals,
        violations: list[str],
    ) -> list[YieldProtocol]:
        """Add 100 bps legs for unused positive-APR protocols, in enum order."""
        minimum = self.constraints.min_diversification
        active = sum(1 for bps in weights.values() if bps > 0)
        if active >= minimum:
            return []

        unused = [p for p in signals.eligible_protocols() if weights.get(p, 0) <= 0]
        added: list[YieldProtocol] = []
        while active < minimum and unused:
            proto = unused.pop(0)
            weights[proto] = STUB_ALLOCATION_BPS
            added.append(proto)
            active += 1

        if added:
            violations.append(
                f"diversification: added {[p.value for p in added]} at "
                f"{STUB_ALLOCATION_BPS} bps (min_diversification={minimum})"
            )
        if active < minimum:
            violations.append(
                f"diversification: only {active} eligible protocols for "
                f"min_diversification={minimum}"
            )
        return added

    def _normalize(
        self,
        weights: dict[YieldProtocol, int],
        signals: MarketSignals,
        cap: int,
        violations: list[str],
    ) -> None:
        """Scale proportionally to exactly 10000 bps, residual on the first leg.

        Scaling up can push legs over the cap; the overflow is water-filled
        into legs with headroom, then into unused positive-APR protocols.
        """
        current_total = sum(weights.values())
        if current_total <= 0 or current_total == TOTAL_BPS:
            return

        diff = TOTAL_BPS - current_total
        for proto in weights:
            weights[proto] += round_half_up(diff * weights[proto] / current_total)
        settle_residual(weights)

        if diff < 0:
            return

        overflow = self._clamp_to_cap(weights, cap, [])
        leftover = self._water_fill(weights, overflow, cap)
        for proto in signals.eligible_protocols():
            if leftover == 0:
                break
            if proto in weights:
                continue
            weights[proto] = min(leftover, cap)
            leftover -= weights[proto]
        if leftover > 0:
            violations.append(
                f"infeasible cap: {leftover} bps kept on first leg above "
                f"{cap} to preserve the {TOTAL_BPS} bps total"
            )
            settle_residual(weights)
