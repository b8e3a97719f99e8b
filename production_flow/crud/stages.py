from __future__ import annotations
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from .base import CRUDBase
from .. import models, schemas
from ..exceptions import ConcurrencyConflict, NotFound

logger = logging.getLogger(__name__)


def _commit_new(db: Session, label: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        # Two inserts computed the same frontend id
        db.rollback()
        logger.warning(f"Frontend id collision while registering a {label}: {str(e)}")
        raise ConcurrencyConflict(f"Another {label} was registered at the same time; retry")


class CRUDProductionOrder(CRUDBase[models.ProductionOrderMaster, schemas.ProductionOrderCreate, None]):
    def create_order(self, db: Session, *, order_in: schemas.ProductionOrderCreate) -> models.ProductionOrderMaster:
        """Register a production order reference"""
        db_order = models.ProductionOrderMaster(
            customer_name=order_in.customer_name,
            order_quantity=order_in.order_quantity,
            unit=order_in.unit.value
        )
        db.add(db_order)
        _commit_new(db, "production order")
        db.refresh(db_order)
        logger.info(f"Registered production order {db_order.frontend_id} ({db_order.order_quantity} {db_order.unit})")
        return db_order

    def get_or_404(self, db: Session, order_id: UUID) -> models.ProductionOrderMaster:
        db_order = self.get(db, order_id)
        if db_order is None:
            raise NotFound(f"Production order {order_id} not found")
        return db_order


class CRUDStageInstance(CRUDBase[models.StageInstance, schemas.StageInstanceCreate, None]):
    def build_stage(self, stage_in: schemas.StageInstanceCreate) -> models.StageInstance:
        """Build a pending stage without adding it to a session"""
        return models.StageInstance(
            lot_number=stage_in.lot_number,
            production_order_id=stage_in.production_order_id,
            process_type=stage_in.process_type.value,
            stage_number=stage_in.stage_number,
            stage_name=stage_in.stage_name,
            unit=stage_in.unit.value,
            status=models.StageStatus.PENDING.value,
            input_quantity=stage_in.input_quantity,
            planned_start_time=stage_in.planned_start_time,
            planned_end_time=stage_in.planned_end_time,
            created_by=stage_in.created_by
        )

    def register_stage(self, db: Session, *, stage_in: schemas.StageInstanceCreate) -> models.StageInstance:
        """Create a stage in pending for a lot, optionally owned by a production order"""
        if stage_in.production_order_id is not None:
            production_order.get_or_404(db, stage_in.production_order_id)

        db_stage = self.build_stage(stage_in)
        db.add(db_stage)
        _commit_new(db, "stage")
        db.refresh(db_stage)
        logger.info(
            f"Registered {db_stage.process_type} stage {db_stage.frontend_id} for lot {db_stage.lot_number}"
        )
        return db_stage

    def get_or_404(self, db: Session, stage_id: UUID) -> models.StageInstance:
        db_stage = self.get(db, stage_id)
        if db_stage is None:
            raise NotFound(f"Stage instance {stage_id} not found")
        return db_stage

    def get_for_update(self, db: Session, stage_id: UUID) -> Optional[models.StageInstance]:
        """Load a stage with a row lock where the backend supports one"""
        return (
            db.query(models.StageInstance)
            .filter(models.StageInstance.id == stage_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_order(self, db: Session, order_id: UUID) -> List[models.StageInstance]:
        """All stages of a production order in pipeline order"""
        return (
            db.query(models.StageInstance)
            .filter(models.StageInstance.production_order_id == order_id)
            .order_by(models.StageInstance.stage_number, models.StageInstance.created_at)
            .all()
        )

    def get_previous(self, db: Session, stage: models.StageInstance) -> Optional[models.StageInstance]:
        """The stage numbered one lower in the same production order"""
        if stage.production_order_id is None:
            return None
        return (
            db.query(models.StageInstance)
            .filter(
                models.StageInstance.production_order_id == stage.production_order_id,
                models.StageInstance.stage_number == stage.stage_number - 1
            )
            .order_by(models.StageInstance.created_at)
            .first()
        )

    def get_by_lot(self, db: Session, lot_number: str) -> List[models.StageInstance]:
        return (
            db.query(models.StageInstance)
            .filter(models.StageInstance.lot_number == lot_number)
            .order_by(models.StageInstance.stage_number, models.StageInstance.created_at)
            .all()
        )


production_order = CRUDProductionOrder(models.ProductionOrderMaster)
stage_instance = CRUDStageInstance(models.StageInstance)
