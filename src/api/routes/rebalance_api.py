"""Rebalancing endpoints.

Provides:
- POST /rebalance/plan           enforced allocation plan for one model
- POST /rebalance/compare        all models side by side, with a recommendation
- POST /rebalance/what-if        projected returns and risk of a scenario
- POST /rebalance/execute        fetch snapshot, plan, execute if material
- POST /rebalance/dry-run        plan a vault rebalance without touching the vault
- POST /rebalance/batch          rebalance many vaults with isolated failures
- GET  /rebalance/models/config  available models and their parameters
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Union

from fastapi import APIRouter, Body, Depends, HTTPException

from src.api.deps import get_optimizer, get_vault_client
from src.api.schemas.rebalance_schemas import (
    BatchRebalanceRequest,
    CompareRequest,
    PlanRequest,
    RebalanceRequestBody,
    WhatIfRequest,
)
from src.core.enums import RebalanceStatus
from src.rebalancing.models import InvalidConstraintsError, InvalidSignalsError
from src.rebalancing.optimizer import AllocationOptimizer, resolve_model
from src.rebalancing.orchestrator import RebalanceOrchestrator
from src.rebalancing.vault_client import VaultClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rebalance", tags=["Rebalancing"])


# ---------------------------------------------------------------------------
# Response envelope
# ---------------------------------------------------------------------------
def _envelope(data: Any) -> dict:
    return {
        "status": "ok",
        "data": data,
        "meta": {"timestamp": datetime.now(timezone.utc).isoformat()},
    }


def _invalid_input(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=422, detail=str(exc))


# ---------------------------------------------------------------------------
# Planning (no vault access)
# ---------------------------------------------------------------------------
@router.post("/plan")
async def generate_plan(
    body: PlanRequest,
    optimizer: AllocationOptimizer = Depends(get_optimizer),
) -> dict:
    """Generate an enforced allocation plan for the requested model."""
    try:
        signals = body.signals.to_signals()
        constraints = body.to_constraints()
    except (InvalidSignalsError, InvalidConstraintsError) as exc:
        raise _invalid_input(exc) from exc

    model = resolve_model(body.model)
    plan = optimizer.optimize(signals, model, constraints)
    return _envelope({"model": model.value, "plan": plan.to_dict()})


@router.post("/compare")
async def compare_models(
    body: CompareRequest,
    optimizer: AllocationOptimizer = Depends(get_optimizer),
) -> dict:
    """Run every model on the same signals and recommend the best ratio."""
    try:
        signals = body.signals.to_signals()
        constraints = body.to_constraints()
    except (InvalidSignalsError, InvalidConstraintsError) as exc:
        raise _invalid_input(exc) from exc

    orchestrator = RebalanceOrchestrator(vault_client=None, optimizer=optimizer)
    return _envelope(orchestrator.compare(signals, constraints).to_dict())


@router.post("/what-if")
async def what_if(
    body: WhatIfRequest,
    optimizer: AllocationOptimizer = Depends(get_optimizer),
) -> dict:
    """Scenario analysis: plan, 30-day projection, risk and model comparison."""
    try:
        signals = body.signals.to_signals()
        constraints = body.to_constraints()
    except (InvalidSignalsError, InvalidConstraintsError) as exc:
        raise _invalid_input(exc) from exc

    orchestrator = RebalanceOrchestrator(vault_client=None, optimizer=optimizer)
    report = orchestrator.what_if(
        signals,
        model=body.model,
        portfolio_value=body.portfolio_value,
        constraints=constraints,
    )
    return _envelope(report.to_dict())


@router.get("/models/config")
async def models_config(
    optimizer: AllocationOptimizer = Depends(get_optimizer),
) -> dict:
    """Available models, the default model and their parameters."""
    return _envelope(optimizer.describe())


# ---------------------------------------------------------------------------
# Vault workflows
# ---------------------------------------------------------------------------
@router.post("/dry-run")
async def dry_run(
    body: RebalanceRequestBody,
    optimizer: AllocationOptimizer = Depends(get_optimizer),
) -> dict:
    """Preview the plan a rebalance would target; the vault is not contacted."""
    try:
        request = body.to_request()
    except (InvalidSignalsError, InvalidConstraintsError) as exc:
        raise _invalid_input(exc) from exc

    orchestrator = RebalanceOrchestrator(vault_client=None, optimizer=optimizer)
    return _envelope(orchestrator.dry_run(request).to_dict())


@router.post("/execute")
async def execute_rebalance(
    body: RebalanceRequestBody,
    vault_client: VaultClient = Depends(get_vault_client),
    optimizer: AllocationOptimizer = Depends(get_optimizer),
) -> dict:
    """Rebalance one vault. A vault failure returns 502 with the failed result."""
    try:
        request = body.to_request()
    except (InvalidSignalsError, InvalidConstraintsError) as exc:
        raise _invalid_input(exc) from exc

    orchestrator = RebalanceOrchestrator(vault_client=vault_client, optimizer=optimizer)
    result = await orchestrator.rebalance(request, raise_on_error=False)
    if result.status is RebalanceStatus.FAILED:
        logger.warning("Rebalance of vault %d failed: %s", request.vault_id, result.error)
        raise HTTPException(status_code=502, detail=result.to_dict())
    return _envelope(result.to_dict())


@router.post("/batch")
async def batch_rebalance(
    body: Union[list[RebalanceRequestBody], BatchRebalanceRequest] = Body(...),
    vault_client: VaultClient = Depends(get_vault_client),
    optimizer: AllocationOptimizer = Depends(get_optimizer),
) -> dict:
    """Rebalance several vaults concurrently; one failure never aborts the rest.

    Accepts either a bare JSON array of requests or ``{"requests": [...]}``.
    """
    items = body.requests if isinstance(body, BatchRebalanceRequest) else body
    if not items:
        raise HTTPException(status_code=422, detail="batch must contain at least one request")
    try:
        requests = [item.to_request() for item in items]
    except (InvalidSignalsError, InvalidConstraintsError) as exc:
        raise _invalid_input(exc) from exc

    orchestrator = RebalanceOrchestrator(vault_client=vault_client, optimizer=optimizer)
    summary = await orchestrator.rebalance_batch(requests)
    return _envelope(summary.to_dict())
