"""Root pytest configuration and shared fixtures.

Provides common test fixtures used across all test modules:
- FixedRandom: stand-in random source that forces a bandit branch
- two_protocol_signals / high_risk_signals: reusable MarketSignals
- exploit_rng / explore_rng: FixedRandom instances for each branch
- fixed_random: the FixedRandom class, for other values
- in_memory_vaults: InMemoryVaultClient seeded with vault 1
"""

from __future__ import annotations

import pytest

from src.rebalancing.models import MarketSignals, VaultSnapshot
from src.rebalancing.vault_client import InMemoryVaultClient


class FixedRandom:
    """Random source whose ``random()`` always returns the same value.

    0.5 is above the 10% exploration rate (exploit); 0.0 is below it (explore).
    """

    def __init__(self, value: float) -> None:
        self.value = value
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.value


@pytest.fixture
def fixed_random() -> type[FixedRandom]:
    return FixedRandom


@pytest.fixture
def exploit_rng() -> FixedRandom:
    return FixedRandom(0.5)


@pytest.fixture
def explore_rng() -> FixedRandom:
    return FixedRandom(0.0)


@pytest.fixture
def two_protocol_signals() -> MarketSignals:
    """Staking 10% / Lending 5% APR at zero risk (LOW regime)."""
    return MarketSignals.from_dict({
        "prices": {"SEI": 0.5},
        "apr": {"Staking": 0.10, "Lending": 0.05},
        "risk": 0,
    })


@pytest.fixture
def high_risk_signals() -> MarketSignals:
    """Three protocols with low volatility at risk 80 (HIGH regime)."""
    return MarketSignals.from_dict({
        "prices": {"SEI": 0.5},
        "apr": {"Staking": 0.30, "Lending": 0.08, "LP": 0.06},
        "risk": 80,
        "volatility": {"Staking": 0.05, "Lending": 0.05, "LP": 0.05},
    })


@pytest.fixture
def in_memory_vaults() -> InMemoryVaultClient:
    """Vault 1 split evenly between Staking and Lending."""
    return InMemoryVaultClient(
        snapshots={
            1: VaultSnapshot(
                vault_id=1,
                total_value=1_000_000.0,
                current_allocation={"Staking": 5000, "Lending": 5000},
            ),
        }
    )
