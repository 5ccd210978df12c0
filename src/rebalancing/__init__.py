"""Portfolio rebalancing optimizer and orchestrator.

Provides the signals-to-vault pipeline:
- Strategies (markowitz / bandit / rl): MarketSignals -> draft AllocationPlan.
- ConstraintEnforcer: cap, redistribution, diversification, exact 10000 bps.
- AllocationOptimizer: strategy dispatch + enforcement, the single entry point.
- RebalanceOrchestrator: materiality-gated single, batch, dry-run, compare.
"""

from src.rebalancing.constraint_enforcer import ConstraintEnforcer
from src.rebalancing.models import (
    AllocationConstraints,
    AllocationPlan,
    InvalidConstraintsError,
    InvalidSignalsError,
    Leg,
    MarketSignals,
    RebalanceRequest,
    VaultSnapshot,
)
from src.rebalancing.optimizer import AllocationOptimizer, resolve_model
from src.rebalancing.orchestrator import (
    BatchSummary,
    DryRunResult,
    RebalanceOrchestrator,
    RebalanceResult,
    WhatIfReport,
)
from src.rebalancing.vault_client import (
    HttpVaultClient,
    InMemoryVaultClient,
    VaultError,
    VaultExecutionError,
    VaultSnapshotError,
)

__all__ = [
    "AllocationConstraints",
    "AllocationOptimizer",
    "AllocationPlan",
    "BatchSummary",
    "ConstraintEnforcer",
    "DryRunResult",
    "HttpVaultClient",
    "InMemoryVaultClient",
    "InvalidConstraintsError",
    "InvalidSignalsError",
    "Leg",
    "MarketSignals",
    "RebalanceOrchestrator",
    "RebalanceRequest",
    "RebalanceResult",
    "VaultError",
    "VaultExecutionError",
    "VaultSnapshot",
    "VaultSnapshotError",
    "WhatIfReport",
    "resolve_model",
]
