"""
API endpoints for stage status logs
"""
from datetime import date
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from uuid import UUID

from .base import get_db, server_error
from .. import schemas
from ..crud.status_logs import stage_status_log
from ..models import StageStatus

router = APIRouter()


@router.get("/status-logs", response_model=Dict[str, Any])
def get_status_logs(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    stage_instance_id: Optional[UUID] = Query(None),
    actor_id: Optional[str] = Query(None),
    to_status: Optional[StageStatus] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db)
):
    """
    Get stage status logs with pagination and filtering
    """
    filters = {
        "stage_instance_id": stage_instance_id,
        "actor_id": actor_id,
        "to_status": to_status.value if to_status else None,
        "start_date": start_date,
        "end_date": end_date,
    }
    try:
        logs = stage_status_log.get_logs(db, skip=skip, limit=limit, **filters)

        # Get total count for pagination
        total_count = stage_status_log.get_logs_count(db, **filters)

        return {
            "logs": [schemas.StageStatusLog.model_validate(log).model_dump(mode="json") for log in logs],
            "total_count": total_count,
            "skip": skip,
            "limit": limit,
            "has_more": total_count > (skip + limit)
        }

    except HTTPException:
        raise
    except Exception as e:
        raise server_error("fetching status logs", e)
