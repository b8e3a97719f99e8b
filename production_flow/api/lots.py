from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from decimal import Decimal
from uuid import UUID

from .base import get_db, server_error, FlowEngineError
from .. import crud, schemas
from ..services.lot_ledger import LotMaterialLedger

router = APIRouter()

# ============================================================================
# LOT LEDGER ENDPOINTS
# ============================================================================

@router.post(
    "/lots/{lot_number}/allocations",
    response_model=schemas.LotLedgerEntry,
    status_code=status.HTTP_201_CREATED
)
def allocate_lot_material(
    lot_number: str,
    request: schemas.AllocationRequest,
    db: Session = Depends(get_db)
):
    """Claim part of a source stage's output for a downstream stage"""
    try:
        return LotMaterialLedger(db).allocate(
            lot_number,
            request.source_stage_instance_id,
            request.consuming_stage_instance_id,
            request.quantity,
            actor_id=request.actor_id,
            unit=request.unit.value if request.unit else None
        )
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"allocating material of lot {lot_number}", e)

@router.post("/allocations/{entry_id}/release", response_model=schemas.LotLedgerEntry)
def release_allocation(
    entry_id: UUID,
    request: schemas.ReleaseRequest,
    db: Session = Depends(get_db)
):
    """Return an allocation to its source"""
    try:
        return LotMaterialLedger(db).release(entry_id, actor_id=request.actor_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"releasing allocation {entry_id}", e)

@router.get("/lots/{lot_number}/sources/{source_id}/balance", response_model=schemas.LotBalance)
def get_available_balance(
    lot_number: str,
    source_id: UUID,
    db: Session = Depends(get_db)
):
    try:
        available = LotMaterialLedger(db).available_balance(lot_number, source_id)
        source = crud.stage_instance.get_or_404(db, source_id)
        return {
            "lot_number": lot_number,
            "source_stage_instance_id": source_id,
            "available_quantity": available,
            "unit": source.unit,
        }
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching balance of lot {lot_number}", e)

@router.get("/lots/{lot_number}/summary", response_model=schemas.LotSummary)
def get_lot_summary(
    lot_number: str,
    db: Session = Depends(get_db)
):
    """Produced, allocated and available quantity per source stage"""
    try:
        sources = LotMaterialLedger(db).lot_summary(lot_number)
        return {
            "lot_number": lot_number,
            "sources": sources,
            "total_available_quantity": sum((s["available_quantity"] for s in sources), Decimal("0")),
        }
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching summary of lot {lot_number}", e)

@router.get("/lots/{lot_number}/entries", response_model=List[schemas.LotLedgerEntry])
def get_lot_entries(
    lot_number: str,
    source_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db)
):
    """Ledger entries of a lot, oldest first"""
    try:
        return LotMaterialLedger(db).entries(lot_number, source_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching ledger entries of lot {lot_number}", e)

@router.get("/stages/{stage_id}/allocations", response_model=List[schemas.LotLedgerEntry])
def get_outstanding_allocations(
    stage_id: UUID,
    db: Session = Depends(get_db)
):
    """Allocations a consuming stage still holds"""
    try:
        crud.stage_instance.get_or_404(db, stage_id)
        return LotMaterialLedger(db).outstanding_allocations(stage_id)
    except (HTTPException, FlowEngineError):
        raise
    except Exception as e:
        raise server_error(f"fetching allocations of stage {stage_id}", e)
