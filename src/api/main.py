"""FastAPI application entry-point for the rebalancer API.

Configures logging, CORS, rate limiting and mounts the route modules.
Run with:  uvicorn src.api.main:app --reload --host 0.0.0.0 --port 8000
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from src.api.routes import health
from src.api.routes.rebalance_api import router as rebalance_router
from src.core.config import settings
from src.core.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: runs once at startup and shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(
        logging.DEBUG if settings.debug else logging.INFO,
        json_output=settings.log_json,
    )
    logger.info(
        "Rebalancer API starting (default model=%s, vault api=%s)",
        settings.default_model,
        settings.vault_api_url,
    )
    yield
    logger.info("Rebalancer API stopped")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
openapi_tags = [
    {"name": "Health", "description": "Health check endpoints"},
    {
        "name": "Rebalancing",
        "description": "Allocation plans, model comparison, what-if and vault rebalancing",
    },
]

app = FastAPI(
    title=settings.project_name,
    version="0.1.0",
    description=(
        "REST API for the DeFi vault rebalancer. Turns market signals into "
        "constrained basis-point allocation plans and drives vault rebalances."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=openapi_tags,
)

# Rate limiting
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
# Health endpoints live at the root (no prefix)
app.include_router(health.router)

# Rebalancing endpoints sit under /api/v1
app.include_router(rebalance_router, prefix="/api/v1")
