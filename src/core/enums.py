"""Shared enumerations used across the rebalancing core and the API.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with JSON payloads and vault snapshots.
"""

from enum import Enum


class YieldProtocol(str, Enum):
    """Closed set of yield venues a vault can allocate capital to."""

    STAKING = "Staking"
    LENDING = "Lending"
    LIQUIDITY_PROVISION = "LP"
    PERPS_HEDGE = "PerpsHedge"

    @classmethod
    def parse(cls, value: "str | YieldProtocol") -> "YieldProtocol":
        """Resolve a wire value ("LP") or member name ("LIQUIDITY_PROVISION").

        Raises:
            ValueError: If the value matches no protocol.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            pass
        key = str(value).strip().upper()
        for member in cls:
            if key in (member.name, member.value.upper()):
                return member
        raise ValueError(f"Unknown yield protocol: {value!r}")


class AllocationModel(str, Enum):
    """Allocation strategies, ordered by increasing sophistication.

    - MARKOWITZ: risk-adjusted mean-variance baseline.
    - BANDIT: exploration/exploitation refinement of MARKOWITZ.
    - RL: volatility-regime refinement of BANDIT (a fixed heuristic).
    """

    MARKOWITZ = "markowitz"
    BANDIT = "bandit"
    RL = "rl"


class MarketRegime(str, Enum):
    """Market-risk bucket derived from the portfolio risk score.

    Thresholds (risk / 100):
    - HIGH: > 0.7
    - LOW: < 0.3
    - MODERATE: otherwise
    """

    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class RebalanceStatus(str, Enum):
    """Terminal states of a rebalance request."""

    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"


class RiskLevel(str, Enum):
    """Coarse bucket for a portfolio risk score (0-100)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
