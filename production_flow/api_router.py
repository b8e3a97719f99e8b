from fastapi import APIRouter
from .api import production_orders, stages, lots, status_logs, catalog

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(production_orders.router, prefix="/api", tags=["Production Orders"])
api_router.include_router(stages.router, prefix="/api", tags=["Stages"])
api_router.include_router(lots.router, prefix="/api", tags=["Lot Ledger"])
api_router.include_router(status_logs.router, prefix="/api", tags=["Status Logs"])
api_router.include_router(catalog.router, prefix="/api", tags=["Workflow Catalog"])
