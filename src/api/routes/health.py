"""Health-check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic liveness probe."""
    return {
        "status": "ok",
        "service": "rebalancer",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
