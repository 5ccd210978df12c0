"""FastAPI dependency injection for the vault collaborator and optimizer."""

from collections.abc import AsyncGenerator

from src.rebalancing.optimizer import AllocationOptimizer
from src.rebalancing.vault_client import HttpVaultClient, VaultClient


async def get_vault_client() -> AsyncGenerator[VaultClient, None]:
    """Yield an HTTP vault client; the connection pool closes after the request."""
    async with HttpVaultClient() as client:
        yield client


def get_optimizer() -> AllocationOptimizer:
    """Fresh optimizer with configured defaults and an unseeded random source."""
    return AllocationOptimizer()
