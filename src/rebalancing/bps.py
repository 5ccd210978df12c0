"""Basis-point arithmetic shared by the strategies and the constraint enforcer.

Every stage of the pipeline works on integer basis points and restores the
exact-sum invariant the same way: whatever rounding drift is left after a
stage is settled entirely on the first leg.
"""

from __future__ import annotations

import math
from typing import TypeVar

K = TypeVar("K")

TOTAL_BPS = 10_000


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from -inf (0.5 -> 1, -0.5 -> 0)."""
    return int(math.floor(value + 0.5))


def settle_residual(
    weights: dict[K, int],
    total: int = TOTAL_BPS,
    floor_at_zero: bool = True,
) -> dict[K, int]:
    """Add ``total - sum(weights)`` to the first entry, in place.

    Args:
        weights: Ordered key -> bps mapping. Empty mappings are left untouched.
        total: Target sum.
        floor_at_zero: Clamp the first entry at 0 after the correction. The
            sum can then differ from ``total``; later stages settle it again.

    Returns:
        The same mapping, for chaining.
    """
    if not weights:
        return weights
    diff = total - sum(weights.values())
    if diff == 0:
        return weights
    first = next(iter(weights))
    corrected = weights[first] + diff
    weights[first] = max(0, corrected) if floor_at_zero else corrected
    return weights


def bps_to_fraction(bps: int) -> float:
    """Convert basis points to a fraction of capital (2500 -> 0.25)."""
    return bps / TOTAL_BPS
