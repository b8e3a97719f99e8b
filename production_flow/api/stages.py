from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from .base import get_db, server_error, FlowEngineError
from .. import crud, schemas
from ..services.transition_validator import StageTransitionValidator

router = APIRouter()
logger = logging.getLogger(__name__)

# ============================================================================
# STAGE INSTANCE ENDPOINTS
# ============================================================================

@router.post("/stages", response_model=schemas.StageInstance, status_code=status.HTTP_201_CREATED)
def create_stage(
    stage: schemas.StageInstanceCreate,
    db: Session = Depends(get_db)
):
    """Register a single pending stage for a lot, optionally under a production order"""
    try:
        return crud.stage_instance.register_stage(db=db, stage_in=stage)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error("creating stage", e)

@router.get("/stages", response_model=List[schemas.StageInstance])
def get_stages(
    lot_number: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    try:
        if lot_number:
            return crud.stage_instance.get_by_lot(db, lot_number)
        return crud.stage_instance.get_multi(db, skip=skip, limit=limit)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error("fetching stages", e)

@router.get("/stages/{stage_id}", response_model=schemas.StageInstance)
def get_stage(
    stage_id: UUID,
    db: Session = Depends(get_db)
):
    try:
        return crud.stage_instance.get_or_404(db, stage_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching stage {stage_id}", e)

@router.get("/stages/{stage_id}/allowed-transitions", response_model=schemas.AllowedTransitions)
def get_allowed_transitions(
    stage_id: UUID,
    db: Session = Depends(get_db)
):
    """Statuses the stage may move to next"""
    try:
        return StageTransitionValidator(db).allowed_transitions(stage_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching allowed transitions of stage {stage_id}", e)

@router.post("/stages/{stage_id}/transition", response_model=schemas.StageInstance)
def transition_stage(
    stage_id: UUID,
    request: schemas.StageTransitionRequest,
    db: Session = Depends(get_db)
):
    """Move a stage to a new status"""
    try:
        logger.info(f"Transition requested for stage {stage_id}: -> {request.to_status.value} by {request.actor_id}")
        return StageTransitionValidator(db).request_transition(
            stage_id,
            request.to_status,
            request.actor_id,
            notes=request.notes,
            process_data=request.process_data,
            produced_quantity=request.produced_quantity,
            defect_quantity=request.defect_quantity,
            loss_quantity=request.loss_quantity,
            input_quantity=request.input_quantity,
            quality_grade=request.quality_grade,
            quality_notes=request.quality_notes
        )
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"transitioning stage {stage_id}", e)

@router.get("/stages/{stage_id}/history", response_model=List[schemas.StageStatusLog])
def get_stage_history(
    stage_id: UUID,
    db: Session = Depends(get_db)
):
    """Every status change of the stage, oldest first"""
    try:
        crud.stage_instance.get_or_404(db, stage_id)
        return crud.stage_status_log.history(db, stage_instance_id=stage_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching history of stage {stage_id}", e)
