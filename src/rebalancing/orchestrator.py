"""Rebalance orchestration against a vault collaborator.

RebalanceOrchestrator drives every workflow on top of AllocationOptimizer:

- rebalance: fetch snapshot -> plan -> materiality check -> execute.
  Terminal states: executed, skipped, failed.
- dry_run: plan only, the vault collaborator is never called.
- rebalance_batch: one concurrent rebalance per vault; every vault's success
  or error is captured independently, a failure never aborts the batch.
- compare / what_if: run all strategies on the same signals and rank them
  by projected return per unit of risk.

No retries happen here; a failed execution is reported, not repeated.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from src.core.config import settings
from src.core.enums import AllocationModel, RebalanceStatus
from src.rebalancing.analytics import (
    ComparisonReport,
    ProjectedReturns,
    RiskMetrics,
    compare_plans,
    project_returns,
    risk_metrics,
)
from src.rebalancing.models import (
    AllocationConstraints,
    AllocationPlan,
    MarketSignals,
    RebalanceRequest,
    VaultSnapshot,
)
from src.rebalancing.optimizer import AllocationOptimizer, resolve_model
from src.rebalancing.vault_client import (
    ExecutionReceipt,
    VaultClient,
    VaultError,
    VaultExecutionError,
    VaultSnapshotError,
    snapshot_from_payload,
)

log = structlog.get_logger(__name__)

SKIP_NO_SIGNIFICANT_CHANGE = "no-significant-change"
SKIP_EMPTY_PLAN = "empty-plan"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RebalanceResult:
    """Outcome of a single rebalance request.

    Attributes:
        vault_id: Vault the request targeted.
        status: executed, skipped or failed.
        model: Resolved strategy name.
        plan: Enforced plan; None when the request failed before planning.
        reason: Skip reason (no-significant-change / empty-plan).
        max_drift_bps: Largest |target - current| over the plan's legs.
        tx_reference: Transaction reference when executed.
        error: Error message when failed.
    """

    vault_id: int
    status: RebalanceStatus
    model: str
    plan: AllocationPlan | None
    reason: str | None = None
    max_drift_bps: int = 0
    tx_reference: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "vault_id": self.vault_id,
            "status": self.status.value,
            "model": self.model,
            "plan": self.plan.to_dict() if self.plan is not None else None,
            "detail": {
                "reason": self.reason,
                "max_drift_bps": self.max_drift_bps,
                "tx_reference": self.tx_reference,
                "error": self.error,
            },
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class DryRunResult:
    """Plan preview for a vault; nothing was read from or sent to the vault."""

    vault_id: int
    model: str
    plan: AllocationPlan
    signals: MarketSignals
    constraints: AllocationConstraints
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": True,
            "vault_id": self.vault_id,
            "model": self.model,
            "plan": self.plan.to_dict(),
            "signals": self.signals.to_dict(),
            "constraints": self.constraints.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class BatchItemResult:
    """One vault's entry in a batch summary."""

    vault_id: int
    success: bool
    result: RebalanceResult | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "vault_id": self.vault_id,
            "success": self.success,
            "result": self.result.to_dict() if self.result is not None else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class BatchSummary:
    """Per-vault results of a batch rebalance, in request order."""

    results: list[BatchItemResult]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "total": self.total,
                "successful": self.successful,
                "failed": self.failed,
            },
        }


@dataclass(frozen=True)
class WhatIfReport:
    """Scenario analysis of one model plus the cross-model comparison."""

    model: str
    signals: MarketSignals
    portfolio_value: float
    plan: AllocationPlan
    projections: ProjectedReturns
    risk: RiskMetrics
    comparison: ComparisonReport
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": {
                "model": self.model,
                "signals": self.signals.to_dict(),
                "portfolio_value": self.portfolio_value,
            },
            "allocation": {
                "plan": [leg.to_dict() for leg in self.plan.legs],
                "total_bps": self.plan.total_bps,
                "confidence": self.plan.confidence,
            },
            "projections": self.projections.to_dict(),
            "risk": self.risk.to_dict(),
            "comparison": self.comparison.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
def max_drift_bps(plan: AllocationPlan, snapshot: VaultSnapshot) -> int:
    """Largest |target - current| over the plan's legs (absent = 0 bps)."""
    return max(
        (abs(leg.target_bps - snapshot.current_bps(leg.protocol)) for leg in plan.legs),
        default=0,
    )


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Invoke a sync or async collaborator method without blocking the loop."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


class RebalanceOrchestrator:
    """Decide whether vaults should be repositioned and drive execution.

    Args:
        vault_client: Vault collaborator (sync or async methods). Only
            rebalance and rebalance_batch need one.
        optimizer: AllocationOptimizer. Defaults to a fresh one.
        materiality_threshold_bps: Minimum drift on any leg that justifies
            execution (strictly greater than). Defaults to settings.
        portfolio_value: Notional for compare/what-if projections.
    """

    def __init__(
        self,
        vault_client: VaultClient | None = None,
        optimizer: AllocationOptimizer | None = None,
        materiality_threshold_bps: int | None = None,
        portfolio_value: float | None = None,
    ) -> None:
        self.vault_client = vault_client
        self.optimizer = optimizer or AllocationOptimizer()
        self.materiality_threshold_bps = (
            settings.materiality_threshold_bps
            if materiality_threshold_bps is None
            else materiality_threshold_bps
        )
        self.portfolio_value = (
            settings.whatif_portfolio_value if portfolio_value is None else portfolio_value
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def rebalance(
        self,
        request: RebalanceRequest,
        raise_on_error: bool = True,
    ) -> RebalanceResult:
        """Run the single-vault flow: fetch, plan, check materiality, execute.

        Args:
            request: Vault id, signals, model and constraints.
            raise_on_error: Re-raise vault collaborator errors (default). When
                False a failed RebalanceResult is returned instead.

        Raises:
            VaultSnapshotError: Snapshot read failed.
            VaultExecutionError: Execution failed or was rejected.
        """
        model = resolve_model(request.model)
        vlog = log.bind(vault_id=request.vault_id, model=model.value)
        vlog.info("rebalance_started")

        plan: AllocationPlan | None = None
        try:
            snapshot = await self._fetch_snapshot(request.vault_id)
            plan = self.optimizer.optimize(request.signals, model, request.constraints)

            if plan.is_empty:
                vlog.info("rebalance_skipped", reason=SKIP_EMPTY_PLAN)
                return RebalanceResult(
                    vault_id=request.vault_id,
                    status=RebalanceStatus.SKIPPED,
                    model=model.value,
                    plan=plan,
                    reason=SKIP_EMPTY_PLAN,
                )

            drift = max_drift_bps(plan, snapshot)
            if drift <= self.materiality_threshold_bps:
                vlog.info(
                    "rebalance_skipped",
                    reason=SKIP_NO_SIGNIFICANT_CHANGE,
                    max_drift_bps=drift,
                    threshold_bps=self.materiality_threshold_bps,
                )
                return RebalanceResult(
                    vault_id=request.vault_id,
                    status=RebalanceStatus.SKIPPED,
                    model=model.value,
                    plan=plan,
                    reason=SKIP_NO_SIGNIFICANT_CHANGE,
                    max_drift_bps=drift,
                )

            receipt = await self._execute(request.vault_id, plan)
        except VaultError as exc:
            vlog.error("rebalance_failed", error=str(exc), error_type=type(exc).__name__)
            if raise_on_error:
                raise
            return RebalanceResult(
                vault_id=request.vault_id,
                status=RebalanceStatus.FAILED,
                model=model.value,
                plan=plan,
                error=str(exc),
            )

        vlog.info(
            "rebalance_executed",
            max_drift_bps=drift,
            tx_reference=receipt.tx_reference,
            confidence=plan.confidence,
        )
        return RebalanceResult(
            vault_id=request.vault_id,
            status=RebalanceStatus.EXECUTED,
            model=model.value,
            plan=plan,
            max_drift_bps=drift,
            tx_reference=receipt.tx_reference,
        )

    async def rebalance_batch(self, requests: Sequence[RebalanceRequest]) -> BatchSummary:
        """Rebalance every vault concurrently with isolated failures."""
        log.info("batch_rebalance_started", n_vaults=len(requests))
        outcomes = await asyncio.gather(
            *(self.rebalance(request) for request in requests),
            return_exceptions=True,
        )

        results: list[BatchItemResult] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, BaseException):
                results.append(
                    BatchItemResult(
                        vault_id=request.vault_id,
                        success=False,
                        error=str(outcome) or type(outcome).__name__,
                    )
                )
            else:
                results.append(
                    BatchItemResult(vault_id=request.vault_id, success=True, result=outcome)
                )

        summary = BatchSummary(results=results)
        log.info(
            "batch_rebalance_complete",
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
        )
        return summary

    def dry_run(self, request: RebalanceRequest) -> DryRunResult:
        """Generate the plan a rebalance would target, without touching the vault."""
        model = resolve_model(request.model)
        constraints = request.constraints or self.optimizer.default_constraints
        plan = self.optimizer.optimize(request.signals, model, constraints)
        log.info("dry_run", vault_id=request.vault_id, model=model.value, n_legs=len(plan.legs))
        return DryRunResult(
            vault_id=request.vault_id,
            model=model.value,
            plan=plan,
            signals=request.signals,
            constraints=constraints,
        )

    def compare(
        self,
        signals: MarketSignals,
        constraints: AllocationConstraints | None = None,
    ) -> ComparisonReport:
        """Run every strategy on the same signals and recommend one."""
        plans = {
            model.value: self.optimizer.optimize(signals, model, constraints)
            for model in AllocationModel
        }
        report = compare_plans(plans, signals)
        log.info("models_compared", recommended=report.recommended)
        return report

    def what_if(
        self,
        signals: MarketSignals,
        model: str | None = None,
        portfolio_value: float | None = None,
        constraints: AllocationConstraints | None = None,
    ) -> WhatIfReport:
        """Project returns and risk of one model's plan, plus the comparison."""
        resolved = resolve_model(model)
        value = self.portfolio_value if portfolio_value is None else portfolio_value
        plan = self.optimizer.optimize(signals, resolved, constraints)
        return WhatIfReport(
            model=resolved.value,
            signals=signals,
            portfolio_value=value,
            plan=plan,
            projections=project_returns(plan, signals, value),
            risk=risk_metrics(plan),
            comparison=self.compare(signals, constraints),
        )

    # ------------------------------------------------------------------
    # Internal: collaborator calls
    # ------------------------------------------------------------------
    async def _fetch_snapshot(self, vault_id: int) -> VaultSnapshot:
        if self.vault_client is None:
            raise VaultSnapshotError("no vault client configured", vault_id=vault_id)
        try:
            snapshot = await _call(self.vault_client.get_vault_snapshot, vault_id)
        except VaultError:
            raise
        except Exception as exc:
            raise VaultSnapshotError(
                f"vault {vault_id}: snapshot fetch failed ({exc})", vault_id=vault_id,
            ) from exc
        if isinstance(snapshot, Mapping):
            snapshot = snapshot_from_payload(vault_id, snapshot)
        return snapshot

    async def _execute(self, vault_id: int, plan: AllocationPlan) -> ExecutionReceipt:
        try:
            receipt = await _call(self.vault_client.execute_rebalance, vault_id, plan)
        except VaultError:
            raise
        except Exception as exc:
            raise VaultExecutionError(
                f"vault {vault_id}: rebalance failed ({exc})", vault_id=vault_id,
            ) from exc
        if isinstance(receipt, Mapping):
            receipt = ExecutionReceipt(
                vault_id=vault_id,
                success=bool(receipt.get("success", False)),
                tx_reference=receipt.get("tx_reference", receipt.get("txHash")),
            )
        if not receipt.success:
            raise VaultExecutionError(f"vault {vault_id}: rebalance rejected", vault_id=vault_id)
        return receipt
