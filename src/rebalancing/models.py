"""Value types for the rebalancing core.

- MarketSignals: immutable market state per optimization call.
- Leg / AllocationPlan: integer basis-point allocation across yield protocols.
- AllocationConstraints: hard limits applied by the ConstraintEnforcer.
- VaultSnapshot: read model returned by the vault collaborator.
- RebalanceRequest: one vault's rebalance input.

Signals and constraints are validated on construction, so invalid input is
rejected before any strategy runs. No I/O happens here.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from src.core.config import settings
from src.core.enums import YieldProtocol
from src.rebalancing.bps import TOTAL_BPS

DEFAULT_VOLATILITY = 0.20


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------
class InvalidSignalsError(ValueError):
    """Raised when a signal payload is missing fields or carries bad values."""


class InvalidConstraintsError(ValueError):
    """Raised when a constraint set cannot be satisfied by construction."""


def _as_number(value: Any, what: str) -> float:
    """Coerce a JSON scalar to float, rejecting bools, NaN and non-numerics."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidSignalsError(f"{what} must be numeric, got {value!r}")
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        raise InvalidSignalsError(f"{what} must be finite, got {value!r}")
    return number


def _protocol_map(
    raw: Mapping[Any, Any] | None, what: str,
) -> Mapping[YieldProtocol, float] | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise InvalidSignalsError(f"{what} must be a mapping of protocol -> number")
    parsed: dict[YieldProtocol, float] = {}
    for key, value in raw.items():
        try:
            proto = YieldProtocol.parse(key)
        except ValueError as exc:
            raise InvalidSignalsError(f"{what}: {exc}") from exc
        parsed[proto] = _as_number(value, f"{what}[{proto.value}]")
    return MappingProxyType(parsed)


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MarketSignals:
    """Market state per protocol for one optimization call.

    Attributes:
        prices: Protocol-or-asset -> price. Informational.
        apr: Protocol -> fractional annual return (0.12 = 12%). Key order is
            significant: the first protocol receives rounding residuals.
        risk: Portfolio-level risk score in [0, 100].
        volatility: Optional protocol -> fractional volatility (default 0.20).
        liquidity: Optional protocol -> liquidity score. Informational.
    """

    prices: Mapping[str, float]
    apr: Mapping[YieldProtocol, float]
    risk: float
    volatility: Mapping[YieldProtocol, float] | None = None
    liquidity: Mapping[YieldProtocol, float] | None = None

    def __post_init__(self) -> None:
        if self.prices is None or not isinstance(self.prices, Mapping):
            raise InvalidSignalsError("signals must include a prices mapping")
        if self.apr is None:
            raise InvalidSignalsError("signals must include an apr mapping")
        prices = {
            str(k): _as_number(v, f"prices[{k}]") for k, v in self.prices.items()
        }
        object.__setattr__(self, "prices", MappingProxyType(prices))
        object.__setattr__(self, "apr", _protocol_map(self.apr, "apr"))
        object.__setattr__(self, "volatility", _protocol_map(self.volatility, "volatility"))
        object.__setattr__(self, "liquidity", _protocol_map(self.liquidity, "liquidity"))

        risk = _as_number(self.risk, "risk")
        if not 0.0 <= risk <= 100.0:
            raise InvalidSignalsError(f"risk must be within [0, 100], got {risk}")
        object.__setattr__(self, "risk", risk)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> MarketSignals:
        """Build signals from a JSON-shaped payload.

        Raises:
            InvalidSignalsError: If prices/apr are missing or values are invalid.
        """
        if not isinstance(payload, Mapping):
            raise InvalidSignalsError("signals payload must be an object")
        missing = [k for k in ("prices", "apr", "risk") if payload.get(k) is None]
        if missing:
            raise InvalidSignalsError(
                f"Invalid signals: must include prices, apr, and risk (missing {missing})"
            )
        return cls(
            prices=payload["prices"],
            apr=payload["apr"],
            risk=payload["risk"],
            volatility=payload.get("volatility"),
            liquidity=payload.get("liquidity"),
        )

    def volatility_of(self, protocol: YieldProtocol) -> float:
        """Volatility estimate for a protocol, 0.20 when not supplied."""
        if self.volatility is None:
            return DEFAULT_VOLATILITY
        return self.volatility.get(protocol, DEFAULT_VOLATILITY)

    def eligible_protocols(self) -> list[YieldProtocol]:
        """Protocols with a strictly positive APR, in enumeration order."""
        return [p for p in YieldProtocol if self.apr.get(p, 0.0) > 0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "prices": dict(self.prices),
            "apr": {p.value: v for p, v in self.apr.items()},
            "risk": self.risk,
            "volatility": (
                {p.value: v for p, v in self.volatility.items()}
                if self.volatility is not None else None
            ),
            "liquidity": (
                {p.value: v for p, v in self.liquidity.items()}
                if self.liquidity is not None else None
            ),
        }


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Leg:
    """One protocol's target allocation in basis points."""

    protocol: YieldProtocol
    target_bps: int

    def __post_init__(self) -> None:
        if not 0 <= self.target_bps <= TOTAL_BPS:
            raise ValueError(
                f"{self.protocol.value}: target_bps {self.target_bps} outside [0, {TOTAL_BPS}]"
            )

    def to_dict(self) -> dict[str, Any]:
        return {"proto": self.protocol.value, "target_bps": self.target_bps}


@dataclass(frozen=True)
class AllocationPlan:
    """Allocation across protocols produced by a strategy.

    Drafts straight out of a strategy may hold zero-weight legs; plans that
    went through the ConstraintEnforcer never do and always sum to exactly
    10000 bps when non-empty.

    Attributes:
        legs: Ordered legs, one protocol each.
        confidence: Trust in the plan, 0-100.
        model: Name of the strategy that produced the plan.
    """

    legs: tuple[Leg, ...]
    confidence: int
    model: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "legs", tuple(self.legs))
        seen = [leg.protocol for leg in self.legs]
        if len(seen) != len(set(seen)):
            raise ValueError(f"duplicate protocols in plan: {[p.value for p in seen]}")

    @classmethod
    def from_weights(
        cls,
        weights: Mapping[YieldProtocol, int],
        confidence: int,
        model: str,
    ) -> AllocationPlan:
        return cls(
            legs=tuple(Leg(p, int(bps)) for p, bps in weights.items()),
            confidence=int(confidence),
            model=model,
        )

    @classmethod
    def empty(cls, model: str) -> AllocationPlan:
        return cls(legs=(), confidence=0, model=model)

    @property
    def total_bps(self) -> int:
        return sum(leg.target_bps for leg in self.legs)

    @property
    def is_empty(self) -> bool:
        return not self.legs

    def weights(self) -> dict[YieldProtocol, int]:
        """Ordered protocol -> bps working copy."""
        return {leg.protocol: leg.target_bps for leg in self.legs}

    def to_dict(self) -> dict[str, Any]:
        return {
            "legs": [leg.to_dict() for leg in self.legs],
            "total_bps": self.total_bps,
            "confidence": self.confidence,
            "model": self.model,
        }


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AllocationConstraints:
    """Hard limits for the ConstraintEnforcer.

    Attributes:
        max_single_allocation_bps: Upper bound per leg (default 7000 = 70%).
        min_diversification: Minimum number of legs (default 2).
        risk_tolerance: Informational risk tolerance, 0-100.
    """

    max_single_allocation_bps: int = field(
        default_factory=lambda: settings.max_single_allocation_bps
    )
    min_diversification: int = field(default_factory=lambda: settings.min_diversification)
    risk_tolerance: float | None = None

    def __post_init__(self) -> None:
        if not 0 < self.max_single_allocation_bps <= TOTAL_BPS:
            raise InvalidConstraintsError(
                f"max_single_allocation_bps must be within (0, {TOTAL_BPS}], "
                f"got {self.max_single_allocation_bps}"
            )
        if self.min_diversification < 1:
            raise InvalidConstraintsError(
                f"min_diversification must be >= 1, got {self.min_diversification}"
            )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> AllocationConstraints:
        """Build constraints from a partial payload; missing keys take defaults."""
        if not payload:
            return cls()
        overrides = {
            k: payload[k]
            for k in ("max_single_allocation_bps", "min_diversification", "risk_tolerance")
            if payload.get(k) is not None
        }
        return cls(**overrides)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_single_allocation_bps": self.max_single_allocation_bps,
            "min_diversification": self.min_diversification,
            "risk_tolerance": self.risk_tolerance,
        }


# ---------------------------------------------------------------------------
# Vault read model and requests
# ---------------------------------------------------------------------------
def _canonical_allocation(allocation: Mapping[str, int]) -> dict[str, int]:
    """Key holdings by protocol wire value; aliases of one protocol are summed.

    Keys that name no known protocol are kept as given.
    """
    canonical: dict[str, int] = {}
    for key, bps in allocation.items():
        try:
            name = YieldProtocol.parse(key).value
        except ValueError:
            name = str(key)
        canonical[name] = canonical.get(name, 0) + int(bps)
    return canonical


@dataclass(frozen=True)
class VaultSnapshot:
    """Current state of a vault as reported by the vault collaborator."""

    vault_id: int
    total_value: float
    current_allocation: Mapping[str, int]
    last_rebalance_time: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "current_allocation", _canonical_allocation(self.current_allocation),
        )

    def current_bps(self, protocol: YieldProtocol) -> int:
        """Current bps held in a protocol, 0 when absent."""
        return int(self.current_allocation.get(protocol.value, 0))


@dataclass(frozen=True)
class RebalanceRequest:
    """Input for one vault's rebalance.

    Attributes:
        vault_id: Vault identifier understood by the vault collaborator.
        signals: Validated market signals.
        model: Strategy name; None uses the configured default.
        constraints: Constraint set; None uses defaults.
    """

    vault_id: int
    signals: MarketSignals
    model: str | None = None
    constraints: AllocationConstraints | None = None
