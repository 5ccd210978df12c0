"""Vault collaborator: the external component that owns the capital.

The rebalancing core only decides *what* a vault's allocation should be; a
vault client reads the current state and executes the change. Two
implementations are provided:

- InMemoryVaultClient: seedable in-process vaults for demos, the CLI and tests.
- HttpVaultClient: async httpx client for a vault service over HTTP, with
  tenacity retries on idempotent snapshot reads only.

Any object with ``get_vault_snapshot`` and ``execute_rebalance`` methods,
sync or async, can stand in for a vault client.

Exception hierarchy:
- VaultError: base for all vault collaborator errors
- VaultSnapshotError: snapshot read failed or vault unknown
- VaultExecutionError: execution raised or reported success = false
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from src.core.config import settings
from src.rebalancing.models import AllocationPlan, VaultSnapshot

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class VaultError(Exception):
    """Base exception for all vault collaborator errors."""

    def __init__(self, message: str, vault_id: int | None = None) -> None:
        super().__init__(message)
        self.vault_id = vault_id


class VaultSnapshotError(VaultError):
    """Raised when a vault snapshot cannot be read."""


class VaultExecutionError(VaultError):
    """Raised when a rebalance execution fails or is rejected."""


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ExecutionReceipt:
    """Result of a successful rebalance execution."""

    vault_id: int
    success: bool
    tx_reference: str | None
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "vault_id": self.vault_id,
            "success": self.success,
            "tx_reference": self.tx_reference,
            "executed_at": self.executed_at.isoformat(),
        }


@runtime_checkable
class VaultClient(Protocol):
    """What the orchestrator needs from a vault collaborator."""

    def get_vault_snapshot(
        self, vault_id: int,
    ) -> VaultSnapshot | Awaitable[VaultSnapshot]: ...

    def execute_rebalance(
        self, vault_id: int, plan: AllocationPlan,
    ) -> ExecutionReceipt | Awaitable[ExecutionReceipt]: ...


def _parse_time(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def snapshot_from_payload(vault_id: int, payload: Mapping[str, Any]) -> VaultSnapshot:
    """Parse a vault service JSON body (snake_case or camelCase keys).

    Raises:
        VaultSnapshotError: If the body is missing the allocation or has bad values.
    """
    try:
        allocation = payload.get("current_allocation", payload.get("currentAllocation"))
        if allocation is None:
            raise KeyError("current_allocation")
        return VaultSnapshot(
            vault_id=int(payload.get("vault_id", payload.get("vaultId", vault_id))),
            total_value=float(payload.get("total_value", payload.get("totalValue", 0.0))),
            current_allocation={str(k): int(v) for k, v in allocation.items()},
            last_rebalance_time=_parse_time(
                payload.get("last_rebalance_time", payload.get("lastRebalance"))
            ),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise VaultSnapshotError(
            f"vault {vault_id}: malformed snapshot ({exc})", vault_id=vault_id,
        ) from exc


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------
class InMemoryVaultClient:
    """In-process vaults keyed by id.

    Execution records the plan, moves the vault to the new allocation and
    returns a generated ``0x...`` transaction reference.

    Args:
        snapshots: Initial vault states.
        default_allocation: When set, unknown vault ids are created on first
            read with this allocation and ``default_total_value``.
        default_total_value: Notional for vaults created from the default.
    """

    def __init__(
        self,
        snapshots: Mapping[int, VaultSnapshot] | None = None,
        default_allocation: Mapping[str, int] | None = None,
        default_total_value: float = 1_000_000.0,
    ) -> None:
        self._vaults: dict[int, VaultSnapshot] = dict(snapshots or {})
        self._default_allocation = dict(default_allocation) if default_allocation else None
        self._default_total_value = default_total_value
        self.executions: list[tuple[int, AllocationPlan]] = []

    def add_vault(self, snapshot: VaultSnapshot) -> None:
        self._vaults[snapshot.vault_id] = snapshot

    async def get_vault_snapshot(self, vault_id: int) -> VaultSnapshot:
        if vault_id not in self._vaults:
            if self._default_allocation is None:
                raise VaultSnapshotError(f"vault {vault_id} not found", vault_id=vault_id)
            self._vaults[vault_id] = VaultSnapshot(
                vault_id=vault_id,
                total_value=self._default_total_value,
                current_allocation=dict(self._default_allocation),
                last_rebalance_time=None,
            )
        return self._vaults[vault_id]

    async def execute_rebalance(self, vault_id: int, plan: AllocationPlan) -> ExecutionReceipt:
        current = await self.get_vault_snapshot(vault_id)
        receipt = ExecutionReceipt(
            vault_id=vault_id,
            success=True,
            tx_reference=f"0x{uuid.uuid4().hex}",
        )
        self._vaults[vault_id] = VaultSnapshot(
            vault_id=vault_id,
            total_value=current.total_value,
            current_allocation={leg.protocol.value: leg.target_bps for leg in plan.legs},
            last_rebalance_time=receipt.executed_at,
        )
        self.executions.append((vault_id, plan))
        log.info(
            "vault_rebalanced",
            vault_id=vault_id,
            tx_reference=receipt.tx_reference,
            allocation=self._vaults[vault_id].current_allocation,
        )
        return receipt


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------
def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500


class HttpVaultClient:
    """Vault collaborator over HTTP.

    Endpoints (relative to ``base_url``):
        GET  /vaults/{vault_id}            -> snapshot JSON
        POST /vaults/{vault_id}/rebalance  -> {"success": bool, "tx_reference": str}

    Snapshot reads are retried with exponential backoff + jitter on transport
    errors and 5xx responses. Executions are never retried.

    Usage::

        async with HttpVaultClient() as vaults:
            snapshot = await vaults.get_vault_snapshot(7)
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self.base_url = base_url or settings.vault_api_url
        self.timeout_seconds = timeout_seconds or settings.vault_api_timeout_seconds
        self.max_retries = max_retries or settings.vault_api_max_retries
        self.retry_wait = retry_wait or wait_exponential_jitter(initial=1, max=30, jitter=5)
        self._client: httpx.AsyncClient | None = None
        self.log = structlog.get_logger().bind(vault_api=self.base_url)

    async def __aenter__(self) -> "HttpVaultClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the active httpx client.

        Raises:
            VaultError: If the client has not been initialized via __aenter__.
        """
        if self._client is None:
            raise VaultError(
                "HttpVaultClient not initialized. Use 'async with HttpVaultClient():'."
            )
        return self._client

    async def get_vault_snapshot(self, vault_id: int) -> VaultSnapshot:
        url = f"/vaults/{vault_id}"
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.max_retries),
                wait=self.retry_wait,
                reraise=True,
            ):
                with attempt:
                    self.log.debug(
                        "vault_request",
                        method="GET",
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = await self.client.get(url)
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            raise VaultSnapshotError(
                f"vault {vault_id}: snapshot fetch failed ({exc})", vault_id=vault_id,
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise VaultSnapshotError(
                f"vault {vault_id}: snapshot is not JSON", vault_id=vault_id,
            ) from exc
        return snapshot_from_payload(vault_id, body)

    async def execute_rebalance(self, vault_id: int, plan: AllocationPlan) -> ExecutionReceipt:
        url = f"/vaults/{vault_id}/rebalance"
        self.log.debug("vault_request", method="POST", url=url, n_legs=len(plan.legs))
        try:
            response = await self.client.post(url, json=plan.to_dict())
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise VaultExecutionError(
                f"vault {vault_id}: rebalance failed ({exc})", vault_id=vault_id,
            ) from exc

        if not body.get("success", False):
            raise VaultExecutionError(
                f"vault {vault_id}: rebalance rejected ({body.get('error', 'no reason given')})",
                vault_id=vault_id,
            )
        return ExecutionReceipt(
            vault_id=vault_id,
            success=True,
            tx_reference=body.get("tx_reference", body.get("txHash")),
        )
