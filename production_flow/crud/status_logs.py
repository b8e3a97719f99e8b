"""
Append-only audit trail of accepted stage status changes.
"""
from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc, func
from datetime import datetime, date
from uuid import UUID
import logging

from ..models import StageStatusLog
from .base import CRUDBase

logger = logging.getLogger(__name__)


class CRUDStageStatusLog(CRUDBase[StageStatusLog, None, None]):

    def append(
        self,
        db: Session,
        *,
        stage_instance_id: UUID,
        from_status: str,
        to_status: str,
        actor_id: str,
        notes: Optional[str] = None,
        process_data: Optional[Dict[str, Any]] = None
    ) -> StageStatusLog:
        """
        Add a log entry to the caller's transaction.

        Only flushes: the entry commits together with the status change it
        records, so a stage update can never be persisted without it.
        """
        last_sequence = (
            db.query(func.max(StageStatusLog.sequence))
            .filter(StageStatusLog.stage_instance_id == stage_instance_id)
            .scalar()
        ) or 0

        log_entry = StageStatusLog(
            stage_instance_id=stage_instance_id,
            sequence=last_sequence + 1,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            notes=notes,
            process_data=dict(process_data) if process_data else None
        )
        db.add(log_entry)
        db.flush()
        return log_entry

    def history(self, db: Session, *, stage_instance_id: UUID) -> List[StageStatusLog]:
        """Every status change of a stage, oldest first"""
        return (
            db.query(StageStatusLog)
            .filter(StageStatusLog.stage_instance_id == stage_instance_id)
            .order_by(StageStatusLog.sequence)
            .all()
        )

    def _filters(
        self,
        *,
        stage_instance_id: Optional[UUID] = None,
        actor_id: Optional[str] = None,
        to_status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> list:
        filters = []
        if stage_instance_id:
            filters.append(StageStatusLog.stage_instance_id == stage_instance_id)
        if actor_id:
            filters.append(StageStatusLog.actor_id == actor_id)
        if to_status:
            filters.append(StageStatusLog.to_status == to_status)
        if start_date:
            filters.append(StageStatusLog.created_at >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            filters.append(StageStatusLog.created_at <= datetime.combine(end_date, datetime.max.time()))
        return filters

    def get_logs(
        self,
        db: Session,
        *,
        skip: int = 0,
        limit: int = 100,
        **filter_args
    ) -> List[StageStatusLog]:
        """Status logs across stages, newest first, with optional filters"""
        query = db.query(StageStatusLog)

        filters = self._filters(**filter_args)
        if filters:
            query = query.filter(and_(*filters))

        return (
            query
            .order_by(desc(StageStatusLog.created_at), desc(StageStatusLog.sequence))
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_logs_count(self, db: Session, **filter_args) -> int:
        """Get count of logs matching filters"""
        query = db.query(StageStatusLog)

        filters = self._filters(**filter_args)
        if filters:
            query = query.filter(and_(*filters))

        return query.count()


# Create instance
stage_status_log = CRUDStageStatusLog(StageStatusLog)
