"""
YarnOps API - FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from reconciliation.plan import plan_registry_from_settings

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("YarnOps API starting up", version=settings.app_version)
    app.state.plan_registry = plan_registry_from_settings(settings)
    yield
    pending = len(app.state.plan_registry)
    if pending:
        logger.info("Discarding unconfirmed reconciliation plans", pending=pending)
    logger.info("YarnOps API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Factory yarn stock ledger: snapshot reconciliation and allocation maintenance",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import yarn_inventory

app.include_router(yarn_inventory.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run / load balancers."""
    return {"status": "healthy", "version": settings.app_version}
