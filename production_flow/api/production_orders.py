from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from .base import get_db, server_error, FlowEngineError
from .. import crud, schemas
from ..services.production_flow import ProductionFlowService
from ..services.progress_aggregator import ProductionOrderProgressAggregator

router = APIRouter()

# ============================================================================
# PRODUCTION ORDER ENDPOINTS
# ============================================================================

@router.post("/production-orders", response_model=schemas.ProductionOrder, status_code=status.HTTP_201_CREATED)
def create_production_order(
    order: schemas.ProductionOrderCreate,
    db: Session = Depends(get_db)
):
    """Register a production order the engine can track"""
    try:
        return crud.production_order.create_order(db=db, order_in=order)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error("creating production order", e)

@router.get("/production-orders/{order_id}", response_model=schemas.ProductionOrder)
def get_production_order(
    order_id: UUID,
    db: Session = Depends(get_db)
):
    try:
        return crud.production_order.get_or_404(db, order_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching production order {order_id}", e)

@router.get("/production-orders/{order_id}/stages", response_model=List[schemas.StageInstance])
def get_production_order_stages(
    order_id: UUID,
    db: Session = Depends(get_db)
):
    """Stages of an order in pipeline order"""
    try:
        crud.production_order.get_or_404(db, order_id)
        return crud.stage_instance.get_by_order(db, order_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching stages of production order {order_id}", e)

@router.get("/production-orders/{order_id}/progress", response_model=schemas.ProgressSummary)
def get_production_order_progress(
    order_id: UUID,
    db: Session = Depends(get_db)
):
    """Completion percentage and counters derived from the order's stages"""
    try:
        return ProductionOrderProgressAggregator(db).progress(order_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"computing progress of production order {order_id}", e)

@router.get("/production-orders/{order_id}/flow-status", response_model=schemas.FlowStatus)
def get_production_flow_status(
    order_id: UUID,
    db: Session = Depends(get_db)
):
    """Progress plus the current and next stage"""
    try:
        return ProductionOrderProgressAggregator(db).flow_status(order_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"computing flow status of production order {order_id}", e)

@router.post(
    "/production-orders/{order_id}/initialize-flow",
    response_model=List[schemas.StageInstance],
    status_code=status.HTTP_201_CREATED
)
def initialize_production_flow(
    order_id: UUID,
    request: schemas.InitializeFlowRequest,
    db: Session = Depends(get_db)
):
    """Create the ten standard stages for an order"""
    try:
        service = ProductionFlowService(db)
        return service.initialize_production_flow(
            order_id, request.lot_number, actor_id=request.actor_id, unit=request.unit
        )
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"initializing production flow for order {order_id}", e)
